"""Service layer for the staged generation pipeline."""

from __future__ import annotations

from .errors import (  # noqa: F401
    EmptyInputError,
    InvalidOptionError,
    ParseError,
    PipelineError,
    PrerequisiteError,
    ProviderError,
    StageBusyError,
)
from .generation import GenerationClient, OpenAIGenerationClient, build_generation_client  # noqa: F401
from .pipeline import PipelineCoordinator, StageResult  # noqa: F401
from .prompts import PromptLibrary  # noqa: F401

__all__ = [
    "EmptyInputError",
    "GenerationClient",
    "InvalidOptionError",
    "OpenAIGenerationClient",
    "ParseError",
    "PipelineCoordinator",
    "PipelineError",
    "PrerequisiteError",
    "PromptLibrary",
    "ProviderError",
    "StageBusyError",
    "StageResult",
    "build_generation_client",
]
