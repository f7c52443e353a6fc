"""
Schemas as first-class values.

A ResponseSchema wraps a pydantic model and is the single authority for one
operation's output shape: the agent forwards ``provider_schema()`` to the model
provider, and both the model client and the agent re-validate parsed output
with ``validate()``. Request models go through ``validate_input()`` so the HTTP
envelope and the agent reject bad input the same way.
"""
import json
from typing import Any, Optional, Type

from pydantic import BaseModel, ValidationError

from agentcore.errors import SchemaViolation, ValidationFailed

# Keywords the provider's OpenAPI-subset schema dialect understands.
_PROVIDER_KEYWORDS = {
    "type", "format", "description", "nullable", "enum", "maxItems", "minItems",
    "minimum", "maximum", "minLength", "maxLength", "required",
}
# String formats the provider accepts; others are dropped.
_PROVIDER_FORMATS = {"date-time", "enum"}


def validation_details(exc: ValidationError) -> list[dict]:
    """Flatten pydantic errors into a stable field-level list."""
    return [
        {
            "path": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]


def validate_input(model: Type[BaseModel], data: Any) -> BaseModel:
    """Validate request data against a pydantic model, raising ValidationFailed."""
    try:
        return model.model_validate(data if data is not None else {})
    except ValidationError as e:
        raise ValidationFailed("Validation failed", details=validation_details(e)) from e


class ResponseSchema:
    """Declared JSON shape of a structured model response."""

    def __init__(self, name: str, model: Type[BaseModel], description: str = "") -> None:
        self.name = name
        self.model = model
        self.description = description or (model.__doc__ or "").strip()
        self._json_schema: Optional[dict] = None
        self._provider_schema: Optional[dict] = None

    def __repr__(self) -> str:
        return f"ResponseSchema({self.name!r}, {self.model.__name__})"

    def json_schema(self) -> dict:
        if self._json_schema is None:
            self._json_schema = self.model.model_json_schema()
        return self._json_schema

    def provider_schema(self) -> dict:
        """Self-contained schema in the provider dialect ($refs inlined)."""
        if self._provider_schema is None:
            schema = self.json_schema()
            self._provider_schema = to_provider_schema(schema, schema.get("$defs", {}))
        return self._provider_schema

    def validate(self, value: Any) -> Any:
        """
        Return the conforming value as plain JSON data or raise SchemaViolation.

        Validation is strict over the JSON form of the value: "yes" is not a
        boolean and "5" is not an integer.
        """
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise SchemaViolation(
                f"Model output for schema '{self.name}' is not JSON data",
                details=[{"path": "", "message": str(e), "type": "json_type"}],
            ) from e
        try:
            parsed = self.model.model_validate_json(raw, strict=True)
        except ValidationError as e:
            raise SchemaViolation(
                f"Model output does not conform to schema '{self.name}'",
                details=validation_details(e),
            ) from e
        return parsed.model_dump(mode="json", exclude_none=True)


def to_provider_schema(schema: dict, defs: dict) -> dict:
    """
    Convert a pydantic JSON schema into the provider's schema dialect.

    - ``$ref`` is inlined from ``$defs``
    - ``anyOf [X, null]`` becomes ``X`` with ``nullable: true``
    - ``const`` becomes a one-element ``enum``
    - unsupported keywords (title, default, additionalProperties, ...) are dropped
    - ``propertyOrdering`` follows the model's field order
    """
    if "$ref" in schema:
        target = schema["$ref"].rsplit("/", 1)[-1]
        resolved = dict(defs.get(target, {}))
        if "description" in schema:
            resolved["description"] = schema["description"]
        return to_provider_schema(resolved, defs)

    if "anyOf" in schema:
        variants = [v for v in schema["anyOf"] if v.get("type") != "null"]
        nullable = len(variants) < len(schema["anyOf"])
        if len(variants) == 1:
            merged = dict(variants[0])
            if "description" in schema:
                merged["description"] = schema["description"]
            out = to_provider_schema(merged, defs)
        else:
            out = {"anyOf": [to_provider_schema(v, defs) for v in variants]}
            if "description" in schema:
                out["description"] = schema["description"]
        if nullable:
            out["nullable"] = True
        return out

    out: dict = {}
    for key, value in schema.items():
        if key == "properties":
            out["properties"] = {name: to_provider_schema(sub, defs) for name, sub in value.items()}
            out["propertyOrdering"] = list(value)
        elif key == "items":
            out["items"] = to_provider_schema(value, defs)
        elif key == "const":
            out["enum"] = [value]
        elif key == "format":
            if value in _PROVIDER_FORMATS:
                out["format"] = value
        elif key in _PROVIDER_KEYWORDS:
            out[key] = value
    if "enum" in out and "type" not in out:
        out["type"] = "string"
    return out
