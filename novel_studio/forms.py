from __future__ import annotations

from typing import Any, Mapping

from wtforms import BooleanField, Form, IntegerField

from .models import NovelSettings

# JSON payload keys -> form field names
SETTINGS_PAYLOAD_KEYS = {
    "hasBranches": "has_branches",
    "chapterCount": "chapter_count",
}


class JSONBooleanField(BooleanField):
    """Boolean field fed from decoded JSON: only ``true`` and ``false`` are accepted."""

    def process_data(self, value):
        if not isinstance(value, bool):
            self.data = None
            raise ValueError(self.gettext("Not a valid boolean value."))
        self.data = value


class JSONIntegerField(IntegerField):
    def process_data(self, value):
        if isinstance(value, bool):
            self.data = None
            raise ValueError(self.gettext("Not a valid integer value."))
        super().process_data(value)


class SettingsForm(Form):
    has_branches = JSONBooleanField(
        "Branching narrative",
        description="Generate outlines with choice points and scenes with player decisions.",
    )
    chapter_count = JSONIntegerField(
        "Target chapter count",
        description="Values below one are stored as one.",
    )


def settings_form_from_payload(payload: Mapping[str, Any], current: NovelSettings) -> SettingsForm:
    """Build a :class:`SettingsForm` from a JSON payload, keeping current values for absent or null keys."""

    values = {
        "has_branches": current.has_branches,
        "chapter_count": current.chapter_count,
    }
    for payload_key, field_name in SETTINGS_PAYLOAD_KEYS.items():
        value = payload.get(payload_key, payload.get(field_name))
        if value is not None:
            values[field_name] = value

    return SettingsForm(data=values)


def form_errors(form: Form) -> str:
    messages = []
    for field_name, errors in form.errors.items():
        label = getattr(form, field_name).label.text if hasattr(form, field_name) else field_name
        messages.extend(f"{label}: {error}" for error in errors)
    return "; ".join(messages)
