"""
CLI tests.

Run with: pytest tests/test_cli.py -v
"""

import io
import json

import pytest
import yaml

from tradedoc.cli import EXIT_INPUT_ERROR, EXIT_OK, EXIT_UNVERIFIED, main


def _write(path, obj):
    path.write_text(json.dumps(obj), encoding="utf-8")
    return str(path)


def _run(capsys, *argv):
    code = main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


@pytest.fixture
def wrapped_file(tmp_path, capsys):
    raw = _write(tmp_path / "raw.json", {"a": 1, "b": "x"})
    out = tmp_path / "wrapped.json"
    code, stdout, _ = _run(capsys, "commit", raw, "-o", str(out))
    assert code == EXIT_OK
    return out, json.loads(stdout)["root"]


class TestCommitCommands:
    def test_commit_to_stdout(self, tmp_path, capsys):
        raw = _write(tmp_path / "raw.json", {"invoice": "INV-1", "total": 120})
        code, out, _ = _run(capsys, "commit", raw)
        assert code == EXIT_OK
        wrapped = json.loads(out)
        assert wrapped["signature"]["type"] == "SHA256MerkleProof"
        assert wrapped["data"]["invoice"].endswith(":string:INV-1")

    def test_commit_from_stdin(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO('{"a": true}'))
        code, out, _ = _run(capsys, "commit", "-")
        assert code == EXIT_OK
        assert json.loads(out)["data"]["a"].endswith(":boolean:true")

    def test_commit_sha3(self, tmp_path, capsys):
        raw = _write(tmp_path / "raw.json", {"a": 1})
        code, out, _ = _run(capsys, "commit", raw, "--algorithm", "sha3_256")
        assert json.loads(out)["signature"]["type"] == "SHA3MerkleProof"

    def test_commit_output_summary(self, wrapped_file):
        path, root = wrapped_file
        stored = json.loads(path.read_text(encoding="utf-8"))
        assert stored["signature"]["merkleRoot"] == root

    def test_root(self, wrapped_file, capsys):
        path, root = wrapped_file
        code, out, _ = _run(capsys, "root", str(path))
        result = json.loads(out)
        assert code == EXIT_OK
        assert result["root"] == root
        assert result["leaf_count"] == 2

    def test_check(self, wrapped_file, capsys):
        path, _ = wrapped_file
        code, out, _ = _run(capsys, "check", str(path))
        assert code == EXIT_OK
        assert json.loads(out)["ok"] is True

    def test_check_tampered(self, wrapped_file, capsys):
        path, _ = wrapped_file
        wrapped = json.loads(path.read_text(encoding="utf-8"))
        salt, tag, _ = wrapped["data"]["b"].split(":", 2)
        wrapped["data"]["b"] = f"{salt}:{tag}:y"
        _write(path, wrapped)
        code, out, _ = _run(capsys, "check", str(path))
        assert code == EXIT_UNVERIFIED
        assert json.loads(out)["ok"] is False

    def test_unwrap(self, wrapped_file, capsys):
        path, _ = wrapped_file
        code, out, _ = _run(capsys, "unwrap", str(path))
        assert code == EXIT_OK
        assert json.loads(out) == {"a": 1, "b": "x"}


class TestVerifyCommand:
    def test_verified(self, wrapped_file, capsys):
        path, root = wrapped_file
        code, out, _ = _run(capsys, "verify", str(path), "--root", root)
        assert code == EXIT_OK
        result = json.loads(out)
        assert result["verified"] and result["trusted"]

    def test_revoked(self, wrapped_file, capsys):
        path, root = wrapped_file
        code, out, _ = _run(capsys, "verify", str(path), "--root", root, "--state", "revoked")
        assert code == EXIT_OK
        result = json.loads(out)
        assert result["verified"] and not result["trusted"]

    def test_mismatch(self, wrapped_file, capsys):
        path, _ = wrapped_file
        code, out, _ = _run(capsys, "verify", str(path), "--root", "00" * 32)
        assert code == EXIT_UNVERIFIED
        assert json.loads(out)["reason"] == "RootMismatch"

    def test_not_issued(self, wrapped_file, capsys):
        path, _ = wrapped_file
        code, out, _ = _run(capsys, "verify", str(path), "--state", "none")
        assert code == EXIT_UNVERIFIED
        assert json.loads(out)["reason"] == "NotIssued"

    def test_root_required(self, wrapped_file, capsys):
        path, _ = wrapped_file
        code, _, err = _run(capsys, "verify", str(path))
        assert code == EXIT_INPUT_ERROR
        assert "--root" in err

    def test_bad_root(self, wrapped_file, capsys):
        path, _ = wrapped_file
        code, _, _ = _run(capsys, "verify", str(path), "--root", "xyz")
        assert code == EXIT_INPUT_ERROR


class TestInputErrors:
    def test_missing_file(self, tmp_path, capsys):
        code, _, err = _run(capsys, "root", str(tmp_path / "nope.json"))
        assert code == EXIT_INPUT_ERROR
        assert "file not found" in err

    def test_invalid_json(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        code, _, err = _run(capsys, "commit", str(path))
        assert code == EXIT_INPUT_ERROR
        assert "invalid JSON" in err

    def test_malformed_envelope(self, tmp_path, capsys):
        path = _write(tmp_path / "w.json", {"data": {"a": 1}})
        code, _, _ = _run(capsys, "root", path)
        assert code == EXIT_INPUT_ERROR

    def test_quiet(self, tmp_path, capsys):
        code, _, err = _run(capsys, "--quiet", "root", str(tmp_path / "nope.json"))
        assert code == EXIT_INPUT_ERROR
        assert err == ""

    def test_no_command(self, capsys):
        code, out, _ = _run(capsys)
        assert code == EXIT_OK
        assert "usage" in out.lower()


class TestConfigCommands:
    def test_get(self, capsys):
        code, out, _ = _run(capsys, "config", "get", "merkle.hash_algorithm")
        assert code == EXIT_OK
        assert json.loads(out) == {"path": "merkle.hash_algorithm", "value": "sha256"}

    def test_get_invalid_path(self, capsys):
        code, _, _ = _run(capsys, "config", "get", "merkle.nope")
        assert code == EXIT_INPUT_ERROR

    def test_config_file(self, tmp_path, capsys):
        cfg = tmp_path / "cfg.yaml"
        cfg.write_text("merkle:\n  hash_algorithm: sha3_256\n", encoding="utf-8")
        code, out, _ = _run(capsys, "--config", str(cfg), "config", "get", "merkle.hash_algorithm")
        assert json.loads(out)["value"] == "sha3_256"

    def test_missing_config_file(self, tmp_path, capsys):
        code, _, err = _run(capsys, "--config", str(tmp_path / "nope.yaml"), "config", "show")
        assert code == EXIT_INPUT_ERROR
        assert "configuration error" in err

    def test_show_yaml(self, capsys):
        code, out, _ = _run(capsys, "--format", "yaml", "config", "show")
        assert code == EXIT_OK
        assert yaml.safe_load(out)["salting"]["salt_bytes"] == 16

    def test_validate(self, capsys):
        code, out, _ = _run(capsys, "config", "validate")
        assert code == EXIT_OK
        assert json.loads(out) == {"valid": True, "errors": []}

    def test_validate_bad_env(self, monkeypatch, capsys):
        monkeypatch.setenv("TRADEDOC_HASH_ALGORITHM", "md5")
        code, out, _ = _run(capsys, "config", "validate")
        assert code == EXIT_INPUT_ERROR
        assert json.loads(out)["valid"] is False

    def test_schema(self, capsys):
        code, out, _ = _run(capsys, "config", "schema")
        assert "salting" in json.loads(out)["properties"]
