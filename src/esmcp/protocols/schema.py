"""Structural argument schemas for tools.

A tool's input contract is an ordered tuple of :class:`FieldSpec`. The same
description is rendered as JSON Schema for ``tools/list`` and walked field by
field to validate ``tools/call`` arguments, so the advertised schema and the
enforced one cannot drift apart.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel

from esmcp.protocols.errors import InvalidArgumentsError


class FieldKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


def matches_kind(value: Any, kind: FieldKind) -> bool:
    """Return whether *value* is compatible with *kind*.

    ``bool`` is a subclass of ``int`` in Python but never counts as a number here.
    """
    if kind is FieldKind.STRING:
        return isinstance(value, str)
    if kind is FieldKind.BOOLEAN:
        return isinstance(value, bool)
    if kind is FieldKind.INTEGER:
        return isinstance(value, int) and not isinstance(value, bool)
    if kind is FieldKind.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind is FieldKind.OBJECT:
        return isinstance(value, dict)
    return isinstance(value, list)


class FieldSpec(BaseModel):
    """One named argument of a tool."""

    model_config = {"frozen": True}

    name: str
    kind: FieldKind
    required: bool = False
    description: str = ""
    items: FieldKind | None = None

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.kind.value}
        if self.description:
            schema["description"] = self.description
        if self.kind is FieldKind.ARRAY and self.items is not None:
            schema["items"] = {"type": self.items.value}
        return schema

    def check(self, value: Any) -> None:
        """Raise :class:`InvalidArgumentsError` if *value* does not fit this field."""
        if not matches_kind(value, self.kind):
            raise InvalidArgumentsError(
                self.name, f"expected {self.kind.value}, got {_describe(value)}"
            )
        if self.kind is FieldKind.ARRAY and self.items is not None:
            for i, item in enumerate(value):
                if not matches_kind(item, self.items):
                    raise InvalidArgumentsError(
                        f"{self.name}[{i}]",
                        f"expected {self.items.value}, got {_describe(item)}",
                    )


def to_json_schema(fields: tuple[FieldSpec, ...]) -> dict[str, Any]:
    """Render fields as an object JSON Schema suitable for ``inputSchema``."""
    return {
        "type": "object",
        "properties": {f.name: f.json_schema() for f in fields},
        "required": [f.name for f in fields if f.required],
    }


def validate_arguments(fields: tuple[FieldSpec, ...], arguments: dict[str, Any]) -> None:
    """Walk *fields* in declaration order and reject the first offending one.

    Unknown extra keys are ignored. An optional field explicitly set to
    ``null`` counts as absent.

    Raises:
        InvalidArgumentsError: Naming the first missing or mistyped field.
    """
    for spec in fields:
        value = arguments.get(spec.name)
        if value is None:
            if spec.required:
                raise InvalidArgumentsError(spec.name, "required field is missing")
            continue
        spec.check(value)


def _describe(value: Any) -> str:
    if value is None:
        return "null"
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
    return type(value).__name__
