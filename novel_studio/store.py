"""In-memory artifact store shared by the pipeline and the HTTP layer.

Every collection keeps commit order as its only ordering guarantee. Entries are
treated as immutable values: ``update`` swaps in a modified copy, so a tuple
returned by ``list()`` is never changed underneath the caller.
"""
from __future__ import annotations

import dataclasses
import itertools
import logging
import secrets
import threading
import time
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, Tuple, TypeVar

from .models import (
    Character,
    ImageAsset,
    NovelSettings,
    PlotChapter,
    Scene,
    StoreSnapshot,
    coerce_chapter_count,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_ID_COUNTER = itertools.count(1)
_ID_LOCK = threading.Lock()


class ArtifactNotFoundError(KeyError):
    """Raised when an update targets an id that is not in the collection."""


class ArtifactUpdateError(ValueError):
    """Raised when a patch would touch an id, an immutable or an unknown field."""


def new_artifact_id(prefix: str) -> str:
    """Return an opaque id that is unique for the lifetime of the process.

    The counter keeps ids created within the same nanosecond distinguishable and
    ordered; the random tail keeps them opaque.
    """

    with _ID_LOCK:
        sequence = next(_ID_COUNTER)
    return f"{prefix}_{time.time_ns()}_{sequence:06d}_{secrets.token_hex(3)}"


class ArtifactCollection(Generic[T]):
    """Ordered collection of dataclass artifacts keyed by their ``id``."""

    def __init__(self, name: str, item_type: type, id_prefix: str) -> None:
        self.name = name
        self.item_type = item_type
        self.id_prefix = id_prefix
        self._items: List[T] = []
        self._lock = threading.Lock()
        self._editable = {
            item_field.name
            for item_field in dataclasses.fields(item_type)
            if item_field.name != "id"
        } - set(getattr(item_type, "IMMUTABLE_FIELDS", ()))

    def new_id(self) -> str:
        return new_artifact_id(self.id_prefix)

    def build(self, **values: Any) -> T:
        """Instantiate an artifact of this collection's type with a fresh id."""

        return self.item_type(id=self.new_id(), **values)

    # ---------------- reads ----------------
    def list(self) -> Tuple[T, ...]:
        with self._lock:
            return tuple(self._items)

    def get(self, item_id: str) -> Optional[T]:
        with self._lock:
            return next((item for item in self._items if item.id == item_id), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    # ---------------- writes ----------------
    def create(self, item: T, *, prepend: bool = False) -> T:
        if not isinstance(item, self.item_type):
            raise TypeError(f"{self.name} only holds {self.item_type.__name__} entries.")
        with self._lock:
            if any(existing.id == item.id for existing in self._items):
                raise ArtifactUpdateError(f"Duplicate id '{item.id}' in {self.name}.")
            if prepend:
                self._items.insert(0, item)
            else:
                self._items.append(item)
        return item

    def replace_all(self, items: Iterable[T]) -> Tuple[T, ...]:
        new_items = list(items)
        for item in new_items:
            if not isinstance(item, self.item_type):
                raise TypeError(f"{self.name} only holds {self.item_type.__name__} entries.")
        with self._lock:
            self._items = new_items
            return tuple(new_items)

    def update(self, item_id: str, patch: Mapping[str, Any]) -> T:
        if not patch:
            raise ArtifactUpdateError("Provide at least one field to update.")
        rejected = sorted(key for key in patch if key not in self._editable)
        if rejected:
            raise ArtifactUpdateError(
                f"Cannot update {', '.join(rejected)} on {self.name}; "
                f"editable fields are {', '.join(sorted(self._editable))}."
            )
        for key, value in patch.items():
            if not isinstance(value, str):
                raise ArtifactUpdateError(f"Field '{key}' must be a string.")

        with self._lock:
            for index, item in enumerate(self._items):
                if item.id == item_id:
                    updated = dataclasses.replace(item, **dict(patch))
                    self._items[index] = updated
                    return updated
        raise ArtifactNotFoundError(item_id)

    def delete(self, item_id: str) -> bool:
        with self._lock:
            remaining = [item for item in self._items if item.id != item_id]
            removed = len(remaining) != len(self._items)
            self._items = remaining
        if removed:
            LOGGER.debug("Deleted %s from %s", item_id, self.name)
        return removed


class ArtifactStore:
    """Holds the settings and concept singletons plus the artifact collections."""

    def __init__(self, settings: Optional[NovelSettings] = None) -> None:
        self._settings = settings or NovelSettings()
        self._concept = ""
        self._singleton_lock = threading.Lock()
        self.characters: ArtifactCollection[Character] = ArtifactCollection("characters", Character, "char")
        self.outline: ArtifactCollection[PlotChapter] = ArtifactCollection("outline", PlotChapter, "ch")
        self.scenes: ArtifactCollection[Scene] = ArtifactCollection("scenes", Scene, "scene")
        self.images: ArtifactCollection[ImageAsset] = ArtifactCollection("images", ImageAsset, "img")

    @property
    def collections(self) -> Dict[str, ArtifactCollection[Any]]:
        return {
            "characters": self.characters,
            "outline": self.outline,
            "scenes": self.scenes,
            "images": self.images,
        }

    # ---------------- singletons ----------------
    @property
    def settings(self) -> NovelSettings:
        with self._singleton_lock:
            return dataclasses.replace(self._settings)

    def update_settings(
        self,
        *,
        has_branches: Optional[bool] = None,
        chapter_count: Optional[Any] = None,
    ) -> NovelSettings:
        with self._singleton_lock:
            if has_branches is not None:
                self._settings.has_branches = bool(has_branches)
            if chapter_count is not None:
                self._settings.chapter_count = coerce_chapter_count(chapter_count)
            return dataclasses.replace(self._settings)

    @property
    def concept(self) -> str:
        with self._singleton_lock:
            return self._concept

    def set_concept(self, text: str) -> str:
        if not isinstance(text, str):
            raise ArtifactUpdateError("Concept text must be a string.")
        with self._singleton_lock:
            self._concept = text
        return text

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            settings=self.settings,
            concept=self.concept,
            characters=self.characters.list(),
            outline=self.outline.list(),
            scenes=self.scenes.list(),
            images=self.images.list(),
        )


def collection_for(store: ArtifactStore, name: str) -> Optional[ArtifactCollection[Any]]:
    return store.collections.get((name or "").strip().lower())

