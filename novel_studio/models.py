from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Stage(str, Enum):
    """Authoring steps in dependency order."""

    SETTINGS = "settings"
    CONCEPT = "concept"
    CHARACTERS = "characters"
    OUTLINE = "outline"
    SCENE = "scene"
    IMAGE = "image"

    @classmethod
    def from_value(cls, value: Any) -> Optional["Stage"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None


class ImageKind(str, Enum):
    CHARACTER = "character"
    BACKGROUND = "background"


ASPECT_RATIOS: Tuple[str, ...] = ("16:9", "4:3", "1:1", "3:4", "9:16")
DEFAULT_ASPECT_RATIO = "9:16"
# Used when an image request names no ratio.
DEFAULT_ASPECT_RATIOS: Dict[ImageKind, str] = {
    ImageKind.CHARACTER: "9:16",
    ImageKind.BACKGROUND: "16:9",
}
DEFAULT_CHAPTER_COUNT = 12


def coerce_chapter_count(value: Any) -> int:
    """Return ``value`` as a chapter count, raising anything below one to one."""

    try:
        count = int(value)
    except (TypeError, ValueError):
        count = DEFAULT_CHAPTER_COUNT
    return max(1, count)


@dataclass
class NovelSettings:
    has_branches: bool = False
    chapter_count: int = DEFAULT_CHAPTER_COUNT

    def __post_init__(self) -> None:
        self.has_branches = bool(self.has_branches)
        self.chapter_count = coerce_chapter_count(self.chapter_count)

    def to_dict(self) -> Dict[str, Any]:
        return {"hasBranches": self.has_branches, "chapterCount": self.chapter_count}


@dataclass
class Character:
    id: str
    name: str
    personality: str
    appearance: str
    backstory: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "personality": self.personality,
            "appearance": self.appearance,
            "backstory": self.backstory,
        }


@dataclass
class PlotChapter:
    id: str
    title: str
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "summary": self.summary}


@dataclass
class Scene:
    id: str
    prompt: str
    content: str

    IMMUTABLE_FIELDS = ("prompt",)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "prompt": self.prompt, "content": self.content}


@dataclass
class ImageAsset:
    id: str
    url: str
    prompt: str
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    kind: ImageKind = ImageKind.CHARACTER

    IMMUTABLE_FIELDS = ("url", "prompt", "aspect_ratio", "kind")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "prompt": self.prompt,
            "aspectRatio": self.aspect_ratio,
            "kind": self.kind.value,
        }


@dataclass(frozen=True)
class StoreSnapshot:
    """Point-in-time copy of every artifact held by the store."""

    settings: NovelSettings
    concept: str
    characters: Tuple[Character, ...] = field(default_factory=tuple)
    outline: Tuple[PlotChapter, ...] = field(default_factory=tuple)
    scenes: Tuple[Scene, ...] = field(default_factory=tuple)
    images: Tuple[ImageAsset, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "settings": self.settings.to_dict(),
            "concept": self.concept,
            "characters": [character.to_dict() for character in self.characters],
            "outline": [chapter.to_dict() for chapter in self.outline],
            "scenes": [scene.to_dict() for scene in self.scenes],
            "images": [image.to_dict() for image in self.images],
        }
