#!/usr/bin/env python3
"""
tradedoc CLI

Offline commitment and verification tools over local JSON files.

Usage:
    tradedoc <command> [subcommand] [options]

Commands:
    commit      Salt a raw document and write its wrapped envelope
    root        Recompute the root of a wrapped envelope
    check       Check an envelope against its own recorded root
    verify      Verify an envelope against an authoritative root and state
    unwrap      Strip salts and print the raw document values
    config      Configuration management

Exit codes:
    0  success / verified
    1  verification failed
    2  input error (unreadable file, malformed document, bad argument)
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import yaml

from tradedoc import __version__
from tradedoc.core import HASH_ALGORITHMS, is_hex32, write_json
from tradedoc.errors import TradeDocError

EXIT_OK = 0
EXIT_UNVERIFIED = 1
EXIT_INPUT_ERROR = 2


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = EXIT_INPUT_ERROR):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, sort_keys=True, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=True)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        return str(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:66] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = []
        lines.append(" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _read_json(path: str) -> Any:
    """Read JSON from a file path, or stdin for ``-``."""
    try:
        if path == "-":
            return json.load(sys.stdin)
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise CLIError(f"file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise CLIError(f"invalid JSON in {path}: {e}") from None


class TradedocCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="tradedoc",
            description="Salted Merkle commitments for trade documents",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"tradedoc {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="YAML configuration file",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        # commit
        commit = self.subparsers.add_parser("commit", help="Salt a raw document and wrap it")
        commit.add_argument("raw", help="Raw document JSON file (- for stdin)")
        commit.add_argument("--output", "-o", help="Write the wrapped envelope here")
        commit.add_argument("--algorithm", "-a", choices=HASH_ALGORITHMS, help="Hash algorithm")

        # root
        root = self.subparsers.add_parser("root", help="Recompute the root of a wrapped envelope")
        root.add_argument("wrapped", help="Wrapped envelope JSON file")

        # check
        check = self.subparsers.add_parser("check", help="Check an envelope against its own root")
        check.add_argument("wrapped", help="Wrapped envelope JSON file")

        # verify
        verify = self.subparsers.add_parser("verify", help="Verify against an authoritative root and state")
        verify.add_argument("wrapped", help="Wrapped envelope JSON file")
        verify.add_argument("--root", "-r", help="Authoritative root (hex)")
        verify.add_argument(
            "--state", "-s",
            choices=["issued", "revoked", "none"],
            default="issued",
            help="Authoritative lifecycle state (default: issued)",
        )

        # unwrap
        unwrap = self.subparsers.add_parser("unwrap", help="Strip salts from a wrapped envelope")
        unwrap.add_argument("wrapped", help="Wrapped envelope JSON file")

        # config
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")
        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., merkle.hash_algorithm)")
        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return EXIT_OK

        try:
            self._setup(parsed)
            fmt = OutputFormat(parsed.format)
            result, code = self._dispatch(parsed)
            if result is not None:
                print(format_output(result, fmt))
            return code

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (TradeDocError, ValueError, KeyError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return EXIT_INPUT_ERROR

    def _setup(self, args: argparse.Namespace) -> None:
        from tradedoc.config import ConfigError, get_config_manager
        from tradedoc.observability import configure_logging

        mgr = get_config_manager()
        try:
            if args.config:
                mgr.load_from_file(args.config)
            else:
                mgr.load_defaults()
        except (ConfigError, yaml.YAMLError) as e:
            raise CLIError(f"configuration error: {e}") from None

        obs = mgr.config.observability
        configure_logging(obs.log_level.get(), obs.log_format.get())

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler. Handlers return (result, exit_code)."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}")

        return handler(args)

    # Document handlers
    def _handle_commit(self, args: argparse.Namespace) -> Any:
        from tradedoc.wrapping import commit

        commitment = commit(_read_json(args.raw), algorithm=args.algorithm)
        wrapped = commitment.to_wrapped()
        if not args.output:
            return wrapped, EXIT_OK

        write_json(Path(args.output), wrapped)
        return {
            "root": commitment.root,
            "algorithm": commitment.algorithm,
            "leaf_count": len(commitment.leaves),
            "output": args.output,
        }, EXIT_OK

    def _load_wrapped(self, path: str) -> Any:
        from tradedoc.wrapping import load_wrapped_document
        return load_wrapped_document(_read_json(path))

    def _handle_root(self, args: argparse.Namespace) -> Any:
        from tradedoc.merkle import tree_from_document
        from tradedoc.wrapping import wrapped_algorithm

        wrapped = self._load_wrapped(args.wrapped)
        tree = tree_from_document(wrapped["data"], wrapped_algorithm(wrapped))
        return {
            "root": tree.root,
            "algorithm": tree.algorithm,
            "leaf_count": tree.leaf_count,
            "depth": tree.depth,
        }, EXIT_OK

    def _handle_check(self, args: argparse.Namespace) -> Any:
        from tradedoc.wrapping import check_wrapped_document

        result = check_wrapped_document(_read_json(args.wrapped))
        return result.to_dict(), EXIT_OK if result.ok else EXIT_UNVERIFIED

    def _handle_verify(self, args: argparse.Namespace) -> Any:
        from tradedoc.verify import verify_wrapped

        if args.state != "none" and not args.root:
            raise CLIError("--root is required unless --state none")
        if args.root and not is_hex32(args.root):
            raise CLIError(f"--root must be 64 hex characters: {args.root!r}")
        result = verify_wrapped(self._load_wrapped(args.wrapped), args.root, args.state)
        return result.to_dict(), EXIT_OK if result.verified else EXIT_UNVERIFIED

    def _handle_unwrap(self, args: argparse.Namespace) -> Any:
        from tradedoc.salting import unsalt_document

        return unsalt_document(self._load_wrapped(args.wrapped)["data"]), EXIT_OK

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from tradedoc.config import ConfigError, get_config_manager
        try:
            value = get_config_manager().get(args.path)
        except ConfigError as e:
            raise CLIError(str(e)) from None
        return {"path": args.path, "value": value}, EXIT_OK

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from tradedoc.config import get_config_manager
        return get_config_manager().config.to_dict(), EXIT_OK

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from tradedoc.config import get_config_manager
        errors = get_config_manager().validate()
        return {"valid": not errors, "errors": errors}, EXIT_OK if not errors else EXIT_INPUT_ERROR

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from tradedoc.config import get_config_manager
        return get_config_manager().export_schema(), EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = TradedocCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
