from __future__ import annotations

from typing import Any, Optional


class PipelineError(RuntimeError):
    """Base class for failures reported by a pipeline stage."""

    kind = "pipeline"

    def __init__(self, message: str, *, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def to_dict(self) -> dict:
        return {"error": self.message, "kind": self.kind, "stage": self.stage}


class PrerequisiteError(PipelineError):
    """Raised when an earlier stage has not produced what this stage needs."""

    kind = "prerequisite"

    def __init__(self, message: str, *, stage: Optional[str] = None, unmet: str = "") -> None:
        super().__init__(message, stage=stage)
        self.unmet = unmet

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["unmet"] = self.unmet
        return payload


class EmptyInputError(PipelineError):
    """Raised when the stage requires a prompt and none was supplied."""

    kind = "empty_input"


class InvalidOptionError(PipelineError):
    """Raised when a stage option (image kind, aspect ratio, character id, stage name) is unsupported."""

    kind = "invalid_option"


class StageBusyError(PipelineError):
    """Raised when a request for the same stage is still outstanding."""

    kind = "busy"


class ProviderError(PipelineError):
    """Raised when the provider call fails, times out, is refused or returns nothing."""

    kind = "provider"


class ParseError(PipelineError):
    """Raised when a provider payload does not match the expected shape."""

    kind = "parse"

    def __init__(self, message: str, *, payload: Any = None, stage: Optional[str] = None) -> None:
        super().__init__(message, stage=stage)
        self.payload = payload
