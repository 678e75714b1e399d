"""
Typed schema descriptors for structured-data generation.

A descriptor is resolved once, when a workflow or node is defined, from a
closed set of field kinds. Unknown shapes are rejected with SchemaError
instead of being widened to "any".
"""

from __future__ import annotations

from typing import Any, Literal, Mapping, get_args

from pydantic import BaseModel, Field

from workflows_ai.errors import SchemaError

FieldKind = Literal["string", "number", "boolean", "array", "object"]
FIELD_KINDS: tuple[str, ...] = get_args(FieldKind)

_JSON_TYPES: dict[str, str] = {
    "string": "string",
    "number": "number",
    "boolean": "boolean",
    "array": "array",
    "object": "object",
}


class SchemaField(BaseModel):
    name: str
    kind: FieldKind
    description: str | None = None
    required: bool = True
    # element kind for arrays; nested fields for objects (or arrays of objects)
    items: FieldKind | None = None
    fields: list["SchemaField"] = Field(default_factory=list)

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": _JSON_TYPES[self.kind]}
        if self.description:
            schema["description"] = self.description
        if self.kind == "array":
            item_kind = self.items or "string"
            if item_kind == "object":
                schema["items"] = _object_schema(self.fields)
            else:
                schema["items"] = {"type": _JSON_TYPES[item_kind]}
        elif self.kind == "object":
            schema.update(_object_schema(self.fields))
        return schema


def _object_schema(fields: list[SchemaField]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {f.name: f.to_json_schema() for f in fields},
        "required": [f.name for f in fields if f.required],
    }


def _kind_of(value: Any, path: str) -> FieldKind:
    # bool before number: bool is an int subclass
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    raise SchemaError(f"Cannot infer a field kind for '{path}' from {type(value).__name__}")


def _field_from_example(name: str, value: Any, path: str) -> SchemaField:
    kind = _kind_of(value, path)
    if kind == "object":
        if not value:
            raise SchemaError(f"Object field '{path}' needs at least one example key")
        return SchemaField(
            name=name,
            kind="object",
            fields=[_field_from_example(k, v, f"{path}.{k}") for k, v in value.items()],
        )
    if kind == "array":
        if not value:
            return SchemaField(name=name, kind="array", items="string")
        item_kind = _kind_of(value[0], f"{path}[0]")
        if item_kind == "array":
            raise SchemaError(f"Nested arrays are not supported ('{path}')")
        nested = []
        if item_kind == "object":
            nested = _field_from_example(name, value[0], f"{path}[0]").fields
        return SchemaField(name=name, kind="array", items=item_kind, fields=nested)
    return SchemaField(name=name, kind=kind)


def _field_from_spec(name: str, spec: Any, path: str) -> SchemaField:
    if isinstance(spec, str):
        if spec not in FIELD_KINDS:
            raise SchemaError(f"Unknown field kind '{spec}' for '{path}'")
        if spec == "object":
            raise SchemaError(f"Object field '{path}' must declare its fields")
        return SchemaField(name=name, kind=spec, items="string" if spec == "array" else None)
    if not isinstance(spec, Mapping):
        raise SchemaError(f"Field '{path}' must be a kind tag or a mapping")

    kind = spec.get("kind") or spec.get("type")
    if kind not in FIELD_KINDS:
        raise SchemaError(f"Unknown field kind '{kind}' for '{path}'")
    unknown = set(spec) - {"kind", "type", "description", "required", "items", "fields"}
    if unknown:
        raise SchemaError(f"Unsupported keys {sorted(unknown)} on field '{path}'")

    nested_spec = spec.get("fields") or {}
    if not isinstance(nested_spec, Mapping):
        raise SchemaError(f"'fields' of '{path}' must be a mapping")
    nested = [_field_from_spec(k, v, f"{path}.{k}") for k, v in nested_spec.items()]

    items = spec.get("items")
    if kind == "array":
        items = items or ("object" if nested else "string")
        if items not in FIELD_KINDS or items == "array":
            raise SchemaError(f"Unsupported array item kind '{items}' for '{path}'")
        if items == "object" and not nested:
            raise SchemaError(f"Array of objects '{path}' must declare its fields")
    elif items is not None:
        raise SchemaError(f"'items' is only valid on array fields ('{path}')")
    if kind == "object" and not nested:
        raise SchemaError(f"Object field '{path}' must declare its fields")

    return SchemaField(
        name=name,
        kind=kind,
        description=spec.get("description"),
        required=bool(spec.get("required", True)),
        items=items,
        fields=nested,
    )


class SchemaDescriptor(BaseModel):
    name: str = "response"
    description: str = "Structured response"
    fields: list[SchemaField]

    @classmethod
    def from_example(cls, name: str, example: Any, description: str | None = None) -> "SchemaDescriptor":
        """Infer field kinds from a JSON example such as {"title": "", "tags": [""]}."""
        if not isinstance(example, Mapping) or not example:
            raise SchemaError("Schema example must be a non-empty JSON object")
        fields = [_field_from_example(k, v, k) for k, v in example.items()]
        return cls(name=name, description=description or "Structured response", fields=fields)

    @classmethod
    def from_spec(cls, name: str, spec: Any, description: str | None = None) -> "SchemaDescriptor":
        """Build from explicit tags: {"keywords": "array", "meta": {"kind": "object", "fields": {...}}}."""
        if not isinstance(spec, Mapping) or not spec:
            raise SchemaError("Schema spec must be a non-empty mapping of field names to kinds")
        fields = [_field_from_spec(k, v, k) for k, v in spec.items()]
        return cls(name=name, description=description or "Structured response", fields=fields)

    def to_json_schema(self) -> dict[str, Any]:
        schema = _object_schema(self.fields)
        schema["description"] = self.description
        return schema

    def validate_object(self, obj: Any) -> list[str]:
        """Return the list of violations; empty means obj conforms."""
        errors: list[str] = []
        _check_object(self.fields, obj, "$", errors)
        return errors


def _check_value(kind: str, item_kind: str | None, nested: list[SchemaField], value: Any, path: str, errors: list[str]) -> None:
    if kind == "string" and not isinstance(value, str):
        errors.append(f"{path}: expected string")
    elif kind == "number" and (isinstance(value, bool) or not isinstance(value, (int, float))):
        errors.append(f"{path}: expected number")
    elif kind == "boolean" and not isinstance(value, bool):
        errors.append(f"{path}: expected boolean")
    elif kind == "array":
        if not isinstance(value, list):
            errors.append(f"{path}: expected array")
            return
        for i, item in enumerate(value):
            _check_value(item_kind or "string", None, nested, item, f"{path}[{i}]", errors)
    elif kind == "object":
        _check_object(nested, value, path, errors)


def _check_object(fields: list[SchemaField], obj: Any, path: str, errors: list[str]) -> None:
    if not isinstance(obj, dict):
        errors.append(f"{path}: expected object")
        return
    for f in fields:
        if f.name not in obj or obj[f.name] is None:
            if f.required:
                errors.append(f"{path}.{f.name}: missing")
            continue
        _check_value(f.kind, f.items, f.fields, obj[f.name], f"{path}.{f.name}", errors)
