"""Turn provider payloads into typed artifacts.

Structured payloads are validated against the :class:`ShapeSpec` they were
requested with. Nothing is repaired: a payload either matches completely or the
whole result is rejected with :class:`ParseError`.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, List

from ..models import Character, PlotChapter
from .errors import ParseError
from .schemas import CHARACTER_SHAPE, OUTLINE_SHAPE, ShapeSpec

_CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def load_json_payload(raw_response: Any) -> Any:
    """Decode ``raw_response``, tolerating a surrounding markdown code fence."""

    if not isinstance(raw_response, str) or not raw_response.strip():
        raise ParseError("The provider returned an empty payload.", payload=raw_response)

    text = raw_response.strip()
    fenced = _CODE_FENCE_PATTERN.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"The provider returned invalid JSON: {exc.msg}", payload=raw_response) from exc


def validate_object(item: Any, shape: ShapeSpec, *, payload: Any, position: str = "") -> Dict[str, Any]:
    where = f" {position}" if position else ""
    if not isinstance(item, dict):
        raise ParseError(f"Expected a JSON object{where}.", payload=payload)

    values: Dict[str, Any] = {}
    for spec in shape.fields:
        value = item.get(spec.name)
        if value is None:
            raise ParseError(f"Missing required field '{spec.name}'{where}.", payload=payload)
        if not spec.accepts(value):
            raise ParseError(f"Field '{spec.name}'{where} must be a {spec.type}.", payload=payload)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ParseError(f"Field '{spec.name}'{where} is empty.", payload=payload)
        values[spec.name] = value
    return values


def validate_array(data: Any, shape: ShapeSpec, *, payload: Any) -> List[Dict[str, Any]]:
    if isinstance(data, dict) and shape.wrapper_key and shape.wrapper_key in data:
        data = data[shape.wrapper_key]
    if not isinstance(data, list):
        raise ParseError("Expected a JSON array.", payload=payload)
    return [
        validate_object(item, shape, payload=payload, position=f"in element {index + 1}")
        for index, item in enumerate(data)
    ]


def parse_character(raw_response: Any, new_id: Callable[[], str]) -> Character:
    data = load_json_payload(raw_response)
    values = validate_object(data, CHARACTER_SHAPE, payload=raw_response)
    return Character(id=new_id(), **values)


def parse_outline(raw_response: Any, new_id: Callable[[], str]) -> List[PlotChapter]:
    """Parse a chapter array; ids are assigned in array order once every element is valid."""

    data = load_json_payload(raw_response)
    rows = validate_array(data, OUTLINE_SHAPE, payload=raw_response)
    return [PlotChapter(id=new_id(), **row) for row in rows]
