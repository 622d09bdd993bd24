# ============================================================================
# INPUT SCHEMA NORMALIZATION
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Schema compilation for function inputs
# PURPOSE: Normalize pydantic models and JSON schemas into one validator
# CREATED: 19 OCT 2026
# ============================================================================
"""
Input Schema Normalization

Functions declare their input either as a pydantic model class or as a
JSON-Schema document (dict or JSON string). Both are compiled once, at
registration time, into a CompiledSchema:

- json_schema / json_schema_str: the canonical document sent to the
  control plane (sorted keys, compact separators)
- validate(value) -> list of error messages (empty when valid)
- coerce(value) -> the value handed to the handler (a model instance for
  pydantic schemas, the plain dict otherwise)
"""

import json
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Type, Union

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, ValidationError

from core.errors import InvalidSchema

logger = logging.getLogger(__name__)

SchemaInput = Union[Type[BaseModel], Dict[str, Any], str]


# ============================================================================
# COMPILED SCHEMA
# ============================================================================

class CompiledSchema:
    """A JSON-Schema document bound to a validate capability."""

    def __init__(
        self,
        json_schema: Dict[str, Any],
        validator: Callable[[Any], List[str]],
        coercer: Optional[Callable[[Any], Any]] = None,
    ):
        self.json_schema = json_schema
        self.json_schema_str = json.dumps(
            json_schema, sort_keys=True, separators=(",", ":")
        )
        self._validator = validator
        self._coercer = coercer

    def validate(self, value: Any) -> List[str]:
        """Return every validation failure for value."""
        return self._validator(value)

    def coerce(self, value: Any) -> Any:
        """Convert an already-validated value for the handler."""
        if self._coercer is None:
            return value
        return self._coercer(value)

    def __repr__(self) -> str:
        return f"CompiledSchema({self.json_schema_str[:80]})"


def is_model_schema(schema: Any) -> bool:
    """True for pydantic model classes."""
    return isinstance(schema, type) and issubclass(schema, BaseModel)


# ============================================================================
# META VALIDATION
# ============================================================================

def _iter_refs(node: Any) -> Iterator[str]:
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "$ref" and isinstance(value, str):
                yield value
            else:
                yield from _iter_refs(value)
    elif isinstance(node, list):
        for item in node:
            yield from _iter_refs(item)


def _resolve_pointer(document: Any, ref: str) -> bool:
    """Resolve a local "#/a/b" pointer, returning whether it exists."""
    if ref == "#":
        return True
    if not ref.startswith("#/"):
        return False

    node = document
    for raw in ref[2:].split("/"):
        part = raw.replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return False
    return True


def check_schema(json_schema: Any) -> List[str]:
    """
    Check a JSON-Schema document against the rules imposed on inputs.

    Rules:
    - must be a valid Draft 7 document
    - root must be an object schema
    - properties, when present, must be an object
    - every $ref must be a local pointer that resolves

    Returns:
        List of failures (empty if valid)
    """
    if not isinstance(json_schema, dict):
        return ["Schema must be a JSON object"]

    failures: List[str] = []

    try:
        Draft7Validator.check_schema(json_schema)
    except SchemaError as e:
        failures.append(f"Invalid JSON schema: {e.message}")

    if json_schema.get("type") != "object":
        failures.append("Root schema must have type 'object'")

    properties = json_schema.get("properties")
    if properties is not None and not isinstance(properties, dict):
        failures.append("'properties' must be an object")

    for ref in _iter_refs(json_schema):
        if not ref.startswith("#"):
            failures.append(f"External $ref is not supported: {ref}")
        elif not _resolve_pointer(json_schema, ref):
            failures.append(f"$ref does not resolve: {ref}")

    return failures


# ============================================================================
# VALIDATORS
# ============================================================================

def _format_path(path) -> str:
    return ".".join(str(p) for p in path) or "<root>"


def _model_validator(model: Type[BaseModel]) -> Callable[[Any], List[str]]:
    def validate(value: Any) -> List[str]:
        try:
            model.model_validate(value)
        except ValidationError as e:
            return [f"{_format_path(err['loc'])}: {err['msg']}" for err in e.errors()]
        return []

    return validate


def _json_schema_validator(json_schema: Dict[str, Any]) -> Callable[[Any], List[str]]:
    validator = Draft7Validator(json_schema)

    def validate(value: Any) -> List[str]:
        errors = sorted(
            validator.iter_errors(value),
            key=lambda e: [str(p) for p in e.absolute_path],
        )
        return [f"{_format_path(e.absolute_path)}: {e.message}" for e in errors]

    return validate


# ============================================================================
# COMPILATION
# ============================================================================

def compile_schema(
    schema: SchemaInput,
    service_name: str = "",
    name: str = "",
) -> CompiledSchema:
    """
    Compile a function's input schema.

    Args:
        schema: pydantic model class, JSON-Schema dict, or JSON string
        service_name: Owning service (for error messages)
        name: Function name (for error messages)

    Returns:
        CompiledSchema

    Raises:
        InvalidSchema if the schema fails meta-validation
    """
    if is_model_schema(schema):
        json_schema = schema.model_json_schema()
        failures = check_schema(json_schema)
        if failures:
            logger.debug(f"Schema {service_name}.{name} failed validation: {failures}")
            raise InvalidSchema(service_name, name, failures)
        return CompiledSchema(
            json_schema,
            _model_validator(schema),
            coercer=schema.model_validate,
        )

    if isinstance(schema, str):
        try:
            schema = json.loads(schema)
        except json.JSONDecodeError as e:
            raise InvalidSchema(service_name, name, [f"Schema is not valid JSON: {e}"])

    failures = check_schema(schema)
    if failures:
        logger.debug(f"Schema {service_name}.{name} failed validation: {failures}")
        raise InvalidSchema(service_name, name, failures)

    return CompiledSchema(schema, _json_schema_validator(schema))


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "SchemaInput",
    "CompiledSchema",
    "is_model_schema",
    "check_schema",
    "compile_schema",
]
