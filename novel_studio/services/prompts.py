"""Stage prompt assembly from the JSON prompt configuration."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from ..models import Character, NovelSettings, PlotChapter, Stage

LOGGER = logging.getLogger(__name__)

DEFAULT_PROMPT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "prompt_config.json"

STAGE_PROMPT_KEYS: Dict[Stage, str] = {
    Stage.CONCEPT: "concept_from_idea",
    Stage.CHARACTERS: "character_profile",
    Stage.OUTLINE: "plot_outline",
    Stage.SCENE: "scene_script",
    Stage.IMAGE: "image_description",
}

PORTRAIT_PROMPT_KEY = "character_portrait"

NO_OUTLINE_TEXT = "No outline provided."

_PLACEHOLDER_PATTERN = re.compile(r"\{([a-z_]+)\}")


class PromptConfigError(RuntimeError):
    """Raised when the prompt configuration file is missing or malformed."""


def describe_settings(settings: NovelSettings) -> str:
    if settings.has_branches:
        return "This novel HAS a branching narrative with player choices."
    return "This novel is a linear story with NO branching."


def format_character_list(characters: Iterable[Character]) -> str:
    """Serialise the roster (without ids) for the character designer prompt."""

    payload = [
        {
            "name": character.name,
            "personality": character.personality,
            "appearance": character.appearance,
            "backstory": character.backstory,
        }
        for character in characters
    ]
    return json.dumps(payload, ensure_ascii=False)


def format_character_descriptions(characters: Iterable[Character]) -> str:
    return "\n".join(f"{character.name}: {character.personality}" for character in characters)


def format_character_names(characters: Iterable[Character]) -> str:
    return ", ".join(character.name for character in characters)


def format_outline(chapters: Iterable[PlotChapter]) -> str:
    blocks = [
        f"Chapter {index}: {chapter.title}\nSummary: {chapter.summary}"
        for index, chapter in enumerate(chapters, start=1)
    ]
    if not blocks:
        return NO_OUTLINE_TEXT
    return "\n\n".join(blocks)


def _apply_template(template: str, **values: Any) -> str:
    # Single pass so placeholders inside substituted text stay literal.
    def substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        raw = values[key]
        return raw if isinstance(raw, str) else str(raw)

    return _PLACEHOLDER_PATTERN.sub(substitute, template)


class PromptLibrary:
    """Prompt templates keyed by entry name, as loaded from ``prompt_config.json``."""

    def __init__(self, entries: Mapping[str, Any]) -> None:
        if not isinstance(entries, Mapping):
            raise PromptConfigError("Prompt configuration must be a JSON object.")
        for key in (*STAGE_PROMPT_KEYS.values(), PORTRAIT_PROMPT_KEY):
            entry = entries.get(key)
            if not isinstance(entry, dict):
                raise PromptConfigError(f"Prompt configuration is missing the '{key}' entry.")
            if not entry.get("prompt_template"):
                raise PromptConfigError(f"Prompt configuration entry '{key}' is missing the template text.")
        self._entries = dict(entries)

    @classmethod
    def from_path(cls, config_path: Optional[Union[str, Path]] = None) -> "PromptLibrary":
        path = Path(config_path) if config_path else DEFAULT_PROMPT_CONFIG_PATH
        if not path.exists():
            raise PromptConfigError(f"Prompt configuration file not found at: {path}")

        with path.open("r", encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except json.JSONDecodeError as exc:
                raise PromptConfigError(f"Unable to parse prompt configuration: {exc.msg}") from exc

        LOGGER.debug("Loaded prompt configuration from %s", path)
        return cls(data)

    def entry(self, stage: Stage) -> Dict[str, Any]:
        try:
            return self._entries[STAGE_PROMPT_KEYS[stage]]
        except KeyError as exc:
            raise PromptConfigError(f"No prompt is configured for the '{stage.value}' stage.") from exc

    def character_portrait(self, character: Character) -> str:
        """Default image description for a character sprite."""

        template = self._entries[PORTRAIT_PROMPT_KEY]["prompt_template"]
        return _apply_template(
            template,
            name=character.name.strip(),
            appearance=character.appearance.strip(),
            personality=character.personality.strip(),
        ).strip()

    def _branch_addition(self, stage: Stage, settings: NovelSettings) -> str:
        addition = (self.entry(stage).get("branch_addition") or "").strip()
        if not settings.has_branches or not addition:
            return ""
        return f"\n\n{addition}"

    def build(
        self,
        stage: Stage,
        user_prompt: str,
        *,
        settings: NovelSettings,
        concept: str = "",
        characters: Iterable[Character] = (),
        outline: Iterable[PlotChapter] = (),
    ) -> str:
        """Render the prompt for ``stage``; the same inputs always give the same text."""

        roster = list(characters)
        template = self.entry(stage)["prompt_template"]
        return _apply_template(
            template,
            user_prompt=user_prompt.strip(),
            concept=concept.strip(),
            settings_description=describe_settings(settings),
            chapter_count=settings.chapter_count,
            existing_characters=format_character_list(roster),
            character_descriptions=format_character_descriptions(roster),
            character_names=format_character_names(roster),
            outline=format_outline(outline),
            branch_addition=self._branch_addition(stage, settings),
        ).strip()
