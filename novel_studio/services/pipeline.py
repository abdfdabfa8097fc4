"""Staged generation pipeline.

``PipelineCoordinator.advance`` is the single entry point used by callers: it
gates a stage on the artifacts produced by earlier stages, renders the stage
prompt, issues exactly one provider call, parses the response and commits the
result to the :class:`~novel_studio.store.ArtifactStore`. Failures at any step
come back inside the :class:`StageResult` and leave the store untouched.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple

from ..forms import form_errors, settings_form_from_payload
from ..models import (
    ASPECT_RATIOS,
    DEFAULT_ASPECT_RATIOS,
    ImageAsset,
    ImageKind,
    NovelSettings,
    Scene,
    Stage,
    StoreSnapshot,
)
from ..store import ArtifactStore
from .errors import (
    EmptyInputError,
    InvalidOptionError,
    ParseError,
    PipelineError,
    PrerequisiteError,
    ProviderError,
    StageBusyError,
)
from .generation import GenerationClient, GenerationRequest, ImageRequest, StructuredRequest, TextRequest
from .parsing import parse_character, parse_outline
from .prompts import PromptLibrary
from .schemas import CHARACTER_SHAPE, OUTLINE_SHAPE

LOGGER = logging.getLogger(__name__)


def _has_concept(snapshot: StoreSnapshot) -> bool:
    return bool(snapshot.concept.strip())


def _concept_prerequisite(snapshot: StoreSnapshot) -> Optional[str]:
    if not _has_concept(snapshot):
        return "Please generate a concept first."
    return None


def _outline_prerequisite(snapshot: StoreSnapshot) -> Optional[str]:
    if not _has_concept(snapshot) or not snapshot.characters:
        return "Please generate a concept and at least one character first."
    return None


def _scene_prerequisite(snapshot: StoreSnapshot) -> Optional[str]:
    if not _has_concept(snapshot) or not snapshot.characters or not snapshot.outline:
        return "Please complete the Concept, Characters, and Outline sections first."
    return None


def _image_prerequisite(snapshot: StoreSnapshot) -> Optional[str]:
    if not _has_concept(snapshot) and not snapshot.characters:
        return "Please generate a concept or at least one character first."
    return None


PREREQUISITES: Dict[Stage, Callable[[StoreSnapshot], Optional[str]]] = {
    Stage.SETTINGS: lambda snapshot: None,
    Stage.CONCEPT: lambda snapshot: None,
    Stage.CHARACTERS: _concept_prerequisite,
    Stage.OUTLINE: _outline_prerequisite,
    Stage.SCENE: _scene_prerequisite,
    Stage.IMAGE: _image_prerequisite,
}

EMPTY_INPUT_MESSAGES: Dict[Stage, str] = {
    Stage.SETTINGS: "Provide the settings to save.",
    Stage.CONCEPT: "Please enter an idea for your visual novel.",
    Stage.CHARACTERS: "Please describe the character you want to create.",
    Stage.OUTLINE: "Please describe the direction the outline should take.",
    Stage.SCENE: "Please describe the scene you want to write.",
    Stage.IMAGE: "Please enter a description for the image.",
}

IMAGE_OPTIONS = ("image_kind", "aspect_ratio", "character_id")


def unmet_prerequisite(stage: Stage, snapshot: StoreSnapshot) -> Optional[str]:
    """Return a message naming the unmet condition for ``stage``, or ``None`` when ready."""

    return PREREQUISITES[stage](snapshot)


@dataclass
class StageResult:
    """Outcome of one ``advance`` call: exactly one of ``artifact``/``error`` is meaningful."""

    stage: Optional[Stage]
    artifact: Any = None
    error: Optional[PipelineError] = None
    prompt: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PipelineCoordinator:
    def __init__(
        self,
        store: ArtifactStore,
        client: Optional[GenerationClient],
        prompts: PromptLibrary,
    ) -> None:
        self.store = store
        self.client = client
        self.prompts = prompts
        self._in_flight: Set[Stage] = set()
        self._in_flight_lock = threading.Lock()

    # ---------------- status ----------------
    def is_busy(self, stage: Stage) -> bool:
        with self._in_flight_lock:
            return stage in self._in_flight

    def stage_status(self) -> Dict[str, Dict[str, Any]]:
        snapshot = self.store.snapshot()
        status: Dict[str, Dict[str, Any]] = {}
        for stage in Stage:
            unmet = unmet_prerequisite(stage, snapshot)
            status[stage.value] = {
                "ready": unmet is None,
                "unmet": unmet,
                "busy": self.is_busy(stage),
            }
        return status

    def _claim(self, stage: Stage) -> bool:
        with self._in_flight_lock:
            if stage in self._in_flight:
                return False
            self._in_flight.add(stage)
            return True

    def _release(self, stage: Stage) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(stage)

    # ---------------- entry point ----------------
    async def advance(
        self,
        stage: Any,
        user_input: Any,
        settings: Optional[NovelSettings] = None,
        **options: Any,
    ) -> StageResult:
        """Run ``stage`` with ``user_input`` and commit the outcome.

        Parameters
        ----------
        stage:
            A :class:`Stage` or its string value.
        user_input:
            The author's request. For :attr:`Stage.SETTINGS` this is the settings
            payload, either a mapping or a JSON object string.
        settings:
            Generation settings used to build the prompt. Defaults to the store's
            current settings, read once when the call starts.
        options:
            ``image_kind``, ``aspect_ratio`` and ``character_id`` for
            :attr:`Stage.IMAGE`. Without an explicit ratio, character images
            default to 9:16 and backgrounds to 16:9. ``character_id`` fills in
            a portrait description when ``user_input`` is blank.
        """

        resolved = Stage.from_value(stage)
        if resolved is None:
            error = InvalidOptionError(f"Unknown stage '{stage}'.")
            return StageResult(stage=None, error=error)

        if not self._claim(resolved):
            error = StageBusyError(
                "A request for this stage is already in progress.",
                stage=resolved.value,
            )
            LOGGER.debug("Rejected overlapping %s request", resolved.value)
            return StageResult(stage=resolved, error=error)

        try:
            artifact, prompt = await self._run_stage(resolved, user_input, settings, options)
        except PipelineError as exc:
            if exc.stage is None:
                exc.stage = resolved.value
            if isinstance(exc, (ProviderError, ParseError)):
                LOGGER.warning("Stage %s failed (%s): %s", resolved.value, exc.kind, exc)
            else:
                LOGGER.debug("Stage %s rejected (%s): %s", resolved.value, exc.kind, exc)
            return StageResult(stage=resolved, error=exc)
        finally:
            self._release(resolved)

        LOGGER.info("Stage %s committed", resolved.value)
        return StageResult(stage=resolved, artifact=artifact, prompt=prompt)

    # ---------------- stage handlers ----------------
    async def _run_stage(
        self,
        stage: Stage,
        user_input: Any,
        settings: Optional[NovelSettings],
        options: Mapping[str, Any],
    ) -> Tuple[Any, Optional[str]]:
        snapshot = self.store.snapshot()
        effective_settings = settings if settings is not None else snapshot.settings

        unmet = unmet_prerequisite(stage, snapshot)
        if unmet:
            raise PrerequisiteError(unmet, stage=stage.value, unmet=unmet)

        allowed_options = IMAGE_OPTIONS if stage is Stage.IMAGE else ()
        unexpected = sorted(key for key in options if key not in allowed_options)
        if unexpected:
            raise InvalidOptionError(f"Unsupported options for {stage.value}: {', '.join(unexpected)}.")

        if stage is Stage.SETTINGS:
            return self._apply_settings(user_input), None

        cleaned_input = user_input.strip() if isinstance(user_input, str) else ""
        image_request_kwargs: Dict[str, Any] = {}
        if stage is Stage.IMAGE:
            image_request_kwargs = self._image_options(options)
            if not cleaned_input and options.get("character_id"):
                cleaned_input = self._character_portrait(snapshot, options["character_id"])

        if not cleaned_input:
            raise EmptyInputError(EMPTY_INPUT_MESSAGES[stage])

        prompt = self.prompts.build(
            stage,
            cleaned_input,
            settings=effective_settings,
            concept=snapshot.concept,
            characters=snapshot.characters,
            outline=snapshot.outline,
        )

        if stage is Stage.CONCEPT:
            text = await self._call(TextRequest(prompt))
            return self.store.set_concept(text), prompt

        if stage is Stage.CHARACTERS:
            raw = await self._call(StructuredRequest(prompt, CHARACTER_SHAPE))
            character = parse_character(raw, self.store.characters.new_id)
            return self.store.characters.create(character), prompt

        if stage is Stage.OUTLINE:
            raw = await self._call(StructuredRequest(prompt, OUTLINE_SHAPE))
            chapters = parse_outline(raw, self.store.outline.new_id)
            return self.store.outline.replace_all(chapters), prompt

        if stage is Stage.SCENE:
            content = await self._call(TextRequest(prompt))
            scene = Scene(id=self.store.scenes.new_id(), prompt=cleaned_input, content=content)
            return self.store.scenes.create(scene, prepend=True), prompt

        if stage is Stage.IMAGE:
            request = ImageRequest(prompt=prompt, **image_request_kwargs)
            url = await self._call(request)
            image = ImageAsset(
                id=self.store.images.new_id(),
                url=url,
                prompt=cleaned_input,
                aspect_ratio=request.aspect_ratio,
                kind=request.kind,
            )
            return self.store.images.create(image, prepend=True), prompt

        raise InvalidOptionError(f"Unknown stage '{stage}'.")  # pragma: no cover - Stage is exhaustive

    def _apply_settings(self, user_input: Any) -> NovelSettings:
        if isinstance(user_input, str):
            if not user_input.strip():
                raise EmptyInputError(EMPTY_INPUT_MESSAGES[Stage.SETTINGS])
            try:
                payload = json.loads(user_input)
            except json.JSONDecodeError as exc:
                raise ParseError(f"Settings must be a JSON object: {exc.msg}", payload=user_input) from exc
        else:
            payload = user_input

        if payload is None or (isinstance(payload, Mapping) and not payload):
            raise EmptyInputError(EMPTY_INPUT_MESSAGES[Stage.SETTINGS])
        if not isinstance(payload, Mapping):
            raise ParseError("Settings must be a JSON object.", payload=user_input)

        form = settings_form_from_payload(payload, self.store.settings)
        if not form.validate():
            raise ParseError(form_errors(form) or "Settings are invalid.", payload=user_input)

        return self.store.update_settings(
            has_branches=form.has_branches.data,
            chapter_count=form.chapter_count.data,
        )

    @staticmethod
    def _image_options(options: Mapping[str, Any]) -> Dict[str, Any]:
        kind_raw = options.get("image_kind") or ImageKind.CHARACTER.value
        try:
            kind = ImageKind(kind_raw.value if isinstance(kind_raw, ImageKind) else str(kind_raw).strip().lower())
        except ValueError as exc:
            raise InvalidOptionError(f"Unsupported image kind '{kind_raw}'.") from exc

        aspect_ratio = str(options.get("aspect_ratio") or DEFAULT_ASPECT_RATIOS[kind]).strip()
        if aspect_ratio not in ASPECT_RATIOS:
            raise InvalidOptionError(
                f"Unsupported aspect ratio '{aspect_ratio}'. Choose one of {', '.join(ASPECT_RATIOS)}."
            )
        return {"kind": kind, "aspect_ratio": aspect_ratio}

    def _character_portrait(self, snapshot: StoreSnapshot, character_id: Any) -> str:
        character = next((item for item in snapshot.characters if item.id == character_id), None)
        if character is None:
            raise InvalidOptionError(f"Unknown character '{character_id}'.")
        return self.prompts.character_portrait(character)

    async def _call(self, request: GenerationRequest) -> str:
        if self.client is None:
            raise ProviderError("No generation provider is configured. Set OPENAI_API_KEY.")
        try:
            result = await self.client.run(request)
        except PipelineError:
            raise
        except Exception as exc:
            raise ProviderError(f"The provider call failed: {exc}") from exc

        if not isinstance(result, str) or not result.strip():
            raise ProviderError("The provider returned an empty response.")
        return result
