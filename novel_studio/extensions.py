"""Per-application pipeline state: one artifact store and coordinator per Flask app."""
from __future__ import annotations

from typing import Optional

from flask import Flask, current_app

from .models import NovelSettings
from .services.generation import GenerationClient, build_generation_client
from .services.pipeline import PipelineCoordinator
from .services.prompts import PromptLibrary
from .store import ArtifactStore

EXTENSION_KEY = "novel_studio"


def init_pipeline(app: Flask, client: Optional[GenerationClient] = None) -> PipelineCoordinator:
    settings = NovelSettings(
        has_branches=app.config.get("DEFAULT_HAS_BRANCHES", False),
        chapter_count=app.config.get("DEFAULT_CHAPTER_COUNT", 12),
    )
    store = ArtifactStore(settings)
    prompts = PromptLibrary.from_path(app.config.get("PROMPT_CONFIG_PATH"))
    if client is None:
        client = build_generation_client(app.config)

    coordinator = PipelineCoordinator(store, client, prompts)
    app.extensions[EXTENSION_KEY] = coordinator
    return coordinator


def get_coordinator() -> PipelineCoordinator:
    return current_app.extensions[EXTENSION_KEY]


def get_store() -> ArtifactStore:
    return get_coordinator().store
