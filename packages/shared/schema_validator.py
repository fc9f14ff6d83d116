"""
Validate extraction output against schemas/extraction-result.schema.json.

The schema is the contract for consumers that never import the pydantic
models: every list is present (possibly empty), never null.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema

from packages.shared.models import ExtractionResult

SCHEMA_PATH = Path(__file__).resolve().parent.parent.parent / "schemas" / "extraction-result.schema.json"
_validator_cache: jsonschema.Draft202012Validator | None = None


def _get_validator() -> jsonschema.Draft202012Validator:
    global _validator_cache
    if _validator_cache is None:
        with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
            schema = json.load(f)
        jsonschema.Draft202012Validator.check_schema(schema)
        _validator_cache = jsonschema.Draft202012Validator(schema)
    return _validator_cache


def validate_output(data: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate *data* (an ExtractionResult dumped with mode="json").
    Returns (is_valid, messages); messages are "path: reason", ordered by path.
    """
    errors = sorted(_get_validator().iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
    messages = [f"{'.'.join(str(p) for p in e.absolute_path) or '<root>'}: {e.message}" for e in errors]
    return (len(messages) == 0, messages)


def validate_result(result: ExtractionResult) -> tuple[bool, list[str]]:
    return validate_output(result.model_dump(mode="json"))
