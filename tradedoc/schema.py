"""JSON Schema validation infrastructure.

Provides schema validation for the artifacts tradedoc reads back from
untrusted storage or from other parties:
- Cross-reference registry for all bundled schemas
- Cached validators
- Clear error reporting
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from tradedoc.core import SCHEMA_DIR, load_json

WRAPPED_DOCUMENT_SCHEMA = "wrapped-document.schema.json"
DOCUMENT_RECORD_SCHEMA = "document-record.schema.json"


@lru_cache(maxsize=1)
def _schema_registry(schemas_dir: Path = SCHEMA_DIR) -> Registry:
    """Build a schema registry so $ref resolves across bundled schemas."""
    resources = []
    for schema_path in sorted(schemas_dir.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"https://schemas.tradedoc.dev/{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(schema_name: str, schemas_dir: Path = SCHEMA_DIR) -> Draft202012Validator:
    """Create (and cache) a validator for a bundled schema file."""
    schema = load_json(schemas_dir / schema_name)
    return Draft202012Validator(schema, registry=_schema_registry(schemas_dir))


def validate_against_schema(obj: Any, schema_name: str) -> List[str]:
    """Validate an object against a bundled schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(schema_name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]
