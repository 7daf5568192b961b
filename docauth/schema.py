"""JSON Schema validation for token payloads.

Provides:
- A cross-reference registry over the packaged ``schemas/*.schema.json`` so
  ``$ref`` between token and document schemas resolves offline
- Cached validators per schema name
- Error messages as ``"<json path>: <message>"`` strings
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from docauth.core import PACKAGE_ROOT, load_json

SCHEMAS_DIR = PACKAGE_ROOT / "schemas"
SCHEMA_BASE_URI = "https://schemas.kaec.local/docauth/"


@lru_cache(maxsize=1)
def _schema_registry() -> Registry:
    """Build a registry of every packaged schema, keyed by its ``$id``."""
    resources = []
    for schema_path in sorted(SCHEMAS_DIR.glob("*.schema.json")):
        schema = load_json(schema_path)
        if not isinstance(schema, dict):
            raise ValueError(f"Schema must be an object: {schema_path}")
        schema_id = schema.get("$id") or f"{SCHEMA_BASE_URI}{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Draft202012Validator:
    """Validator for a packaged schema.

    Args:
        name: schema file stem, e.g. ``"quote-resume-token"``
    """
    path = SCHEMAS_DIR / f"{name}.schema.json"
    if not path.exists():
        raise ValueError(f"Unknown schema: {name}")
    return Draft202012Validator(load_json(path), registry=_schema_registry())


def validate_against_schema(obj: Any, name: str) -> List[str]:
    """Validate an object against a packaged schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]
