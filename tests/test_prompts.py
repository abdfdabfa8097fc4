import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from novel_studio.models import Character, NovelSettings, PlotChapter, Stage
from novel_studio.services.prompts import (
    NO_OUTLINE_TEXT,
    PromptConfigError,
    PromptLibrary,
    format_character_list,
    format_outline,
)

CHOICE_MARKER = '[CHOICE: "Option A", "Option B"]'
DECISION_MARKER = "key decision points"


@pytest.fixture
def library():
    return PromptLibrary.from_path()


@pytest.fixture
def cast():
    return [
        Character(id="char_1", name="Ava", personality="stoic", appearance="tall", backstory="ex-soldier"),
        Character(id="char_2", name="Bram", personality="cheerful", appearance="short", backstory="baker"),
    ]


@pytest.fixture
def outline():
    return [
        PlotChapter(id="ch_1", title="Arrival", summary="Ava reaches the harbor."),
        PlotChapter(id="ch_2", title="Storm", summary="The lighthouse goes dark."),
    ]


def test_format_outline_blocks():
    text = format_outline(
        [
            PlotChapter(id="ch_1", title="Arrival", summary="Ava reaches the harbor."),
            PlotChapter(id="ch_2", title="Storm", summary="The lighthouse goes dark."),
        ]
    )

    assert text == (
        "Chapter 1: Arrival\nSummary: Ava reaches the harbor."
        "\n\n"
        "Chapter 2: Storm\nSummary: The lighthouse goes dark."
    )
    assert format_outline([]) == NO_OUTLINE_TEXT


def test_character_list_omits_ids(cast):
    payload = json.loads(format_character_list(cast))
    assert payload[0] == {
        "name": "Ava",
        "personality": "stoic",
        "appearance": "tall",
        "backstory": "ex-soldier",
    }


def test_outline_prompt_requests_decision_points_only_with_branches(library, cast):
    linear = library.build(
        Stage.OUTLINE,
        "Keep it cosy",
        settings=NovelSettings(has_branches=False, chapter_count=6),
        concept="Harbor mystery",
        characters=cast,
    )
    branching = library.build(
        Stage.OUTLINE,
        "Keep it cosy",
        settings=NovelSettings(has_branches=True, chapter_count=6),
        concept="Harbor mystery",
        characters=cast,
    )

    assert DECISION_MARKER not in linear
    assert "linear story with NO branching" in linear
    assert DECISION_MARKER in branching
    assert "approximately 6 chapters" in branching
    assert "Ava: stoic\nBram: cheerful" in branching


def test_scene_prompt_requests_choice_only_with_branches(library, cast, outline):
    kwargs = dict(concept="Harbor mystery", characters=cast, outline=outline)
    linear = library.build(Stage.SCENE, "Ava confronts Bram", settings=NovelSettings(), **kwargs)
    branching = library.build(
        Stage.SCENE,
        "Ava confronts Bram",
        settings=NovelSettings(has_branches=True),
        **kwargs,
    )

    assert CHOICE_MARKER not in linear
    assert CHOICE_MARKER in branching
    assert "Ava, Bram" in linear
    assert "Chapter 2: Storm\nSummary: The lighthouse goes dark." in linear


def test_prompts_are_deterministic(library, cast, outline):
    settings = NovelSettings(has_branches=True, chapter_count=4)
    first = library.build(Stage.SCENE, "Ava", settings=settings, concept="c", characters=cast, outline=outline)
    second = library.build(Stage.SCENE, "Ava", settings=settings, concept="c", characters=cast, outline=outline)
    assert first == second


def test_placeholders_in_user_input_stay_literal(library):
    prompt = library.build(
        Stage.CHARACTERS,
        "A rival who says {concept} a lot",
        settings=NovelSettings(),
        concept="Harbor mystery",
    )
    assert "A rival who says {concept} a lot" in prompt


def test_image_prompt_is_the_user_request(library):
    prompt = library.build(Stage.IMAGE, "  Ava on the pier at dusk ", settings=NovelSettings())
    assert prompt == "Ava on the pier at dusk"


def test_character_portrait_uses_the_profile(library, cast):
    assert library.character_portrait(cast[0]) == "A portrait of Ava. Appearance: tall. Personality: stoic"


def test_missing_entry_is_rejected():
    with pytest.raises(PromptConfigError):
        PromptLibrary({"concept_from_idea": {"prompt_template": "{user_prompt}"}})


def test_missing_file_is_rejected(tmp_path):
    with pytest.raises(PromptConfigError):
        PromptLibrary.from_path(tmp_path / "missing.json")


def test_malformed_file_is_rejected(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(PromptConfigError):
        PromptLibrary.from_path(path)
