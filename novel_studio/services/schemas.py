"""Declared shapes for structured generation requests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

_JSON_TYPES = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
}


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: str = "string"
    description: str = ""

    def __post_init__(self) -> None:
        if self.type not in _JSON_TYPES:
            raise ValueError(f"Unsupported field type '{self.type}' for '{self.name}'.")

    def accepts(self, value: Any) -> bool:
        if self.type in ("integer", "number") and isinstance(value, bool):
            return False
        return isinstance(value, _JSON_TYPES[self.type])

    def to_json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        return schema


@dataclass(frozen=True)
class ShapeSpec:
    """A single object, or an array of objects, whose fields are all required.

    Arrays are sent to the provider wrapped in an object under ``wrapper_key``
    because strict structured output only accepts an object at the top level.
    """

    name: str
    fields: Tuple[FieldSpec, ...]
    many: bool = False
    wrapper_key: Optional[str] = None
    description: str = ""

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    def item_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {spec.name: spec.to_json_schema() for spec in self.fields},
            "required": list(self.field_names),
            "additionalProperties": False,
        }

    def to_json_schema(self) -> Dict[str, Any]:
        if not self.many:
            return self.item_schema()

        array_schema: Dict[str, Any] = {"type": "array", "items": self.item_schema()}
        if self.description:
            array_schema["description"] = self.description
        key = self.wrapper_key or "items"
        return {
            "type": "object",
            "properties": {key: array_schema},
            "required": [key],
            "additionalProperties": False,
        }


CHARACTER_SHAPE = ShapeSpec(
    name="character_profile",
    fields=(
        FieldSpec("name", description="The character's full name."),
        FieldSpec(
            "personality",
            description="A detailed description of the character's personality, quirks, and motivations.",
        ),
        FieldSpec(
            "appearance",
            description="A vivid description of the character's physical appearance, clothing, and style.",
        ),
        FieldSpec(
            "backstory",
            description="A concise summary of the character's history and background relevant to the story.",
        ),
    ),
)

OUTLINE_SHAPE = ShapeSpec(
    name="plot_outline",
    fields=(
        FieldSpec("title", description="The title of the chapter."),
        FieldSpec("summary", description="A detailed summary of the events in this chapter."),
    ),
    many=True,
    wrapper_key="chapters",
    description="An array of chapters that form the plot.",
)
