"""Generation client contract and the OpenAI-backed implementation.

A client exposes three operations (free text, schema-constrained JSON and
images). Callers either use them directly or describe the call with one of the
request dataclasses below and hand it to :meth:`GenerationClient.run`.

No operation retries: one logical request is exactly one provider call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..models import ASPECT_RATIOS, ImageKind
from .errors import InvalidOptionError, ProviderError
from .schemas import ShapeSpec

try:
    import openai  # type: ignore
except ImportError:  # pragma: no cover
    openai = None  # type: ignore


LOGGER = logging.getLogger(__name__)

IMAGE_STYLE_PREFIX = "High-quality digital art for a visual novel, anime-inspired style."
IMAGE_KIND_STYLES: Dict[ImageKind, str] = {
    ImageKind.CHARACTER: "Full-body character sprite on a pure white background, clean lines.",
    ImageKind.BACKGROUND: "Detailed background art, atmospheric lighting.",
}


def style_image_prompt(prompt: str, kind: ImageKind) -> str:
    """Prefix ``prompt`` with the fixed art direction for ``kind``."""

    return f"{IMAGE_STYLE_PREFIX} {IMAGE_KIND_STYLES[kind]} Description: {prompt.strip()}"


@dataclass(frozen=True)
class TextRequest:
    prompt: str


@dataclass(frozen=True)
class StructuredRequest:
    prompt: str
    shape: ShapeSpec


@dataclass(frozen=True)
class ImageRequest:
    prompt: str
    kind: ImageKind = ImageKind.CHARACTER
    aspect_ratio: str = "9:16"

    def __post_init__(self) -> None:
        if not isinstance(self.kind, ImageKind):
            raise InvalidOptionError(f"Unsupported image kind '{self.kind}'.")
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise InvalidOptionError(
                f"Unsupported aspect ratio '{self.aspect_ratio}'. Choose one of {', '.join(ASPECT_RATIOS)}."
            )


GenerationRequest = Union[TextRequest, StructuredRequest, ImageRequest]


class GenerationClient:
    """Abstract provider client; subclasses implement the three operations."""

    async def generate_text(self, prompt: str) -> str:
        raise NotImplementedError

    async def generate_structured(self, prompt: str, shape: ShapeSpec) -> str:
        raise NotImplementedError

    async def generate_image(self, prompt: str, kind: ImageKind, aspect_ratio: str) -> str:
        raise NotImplementedError

    async def run(self, request: GenerationRequest) -> str:
        if isinstance(request, TextRequest):
            return await self.generate_text(request.prompt)
        if isinstance(request, StructuredRequest):
            return await self.generate_structured(request.prompt, request.shape)
        if isinstance(request, ImageRequest):
            return await self.generate_image(request.prompt, request.kind, request.aspect_ratio)
        raise TypeError(f"Unsupported generation request: {type(request).__name__}")


# Strict size list for gpt-image-1; the closest orientation wins.
_IMAGE_SIZES: Dict[str, str] = {
    "16:9": "1536x1024",
    "4:3": "1536x1024",
    "1:1": "1024x1024",
    "3:4": "1024x1536",
    "9:16": "1024x1536",
}


class OpenAIGenerationClient(GenerationClient):
    """
    Async OpenAI wrapper.

    - free text and structured output → Chat Completions API
    - images → Images API, returned as a ``data:`` URL

    Compatible with OpenAI Python SDK >= 1.0. A fresh ``AsyncOpenAI`` is opened
    per call because Flask runs each async view on its own event loop.
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        *,
        image_model_name: str = "gpt-image-1",
        default_max_tokens: int = 2048,
        timeout: Optional[float] = None,
        client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.model_name = (model_name or "").strip()
        self.image_model_name = (image_model_name or "").strip()
        self.api_key = (api_key or "").strip()
        self.default_max_tokens = int(default_max_tokens or 2048)
        self.timeout = timeout
        if client_factory is None:
            if openai is None:
                raise RuntimeError("Install the 'openai' package to use the API backend.")
            client_cls = getattr(openai, "AsyncOpenAI", None)
            if client_cls is None:
                raise RuntimeError("AsyncOpenAI client not available. Update the 'openai' package.")
            client_factory = lambda: client_cls(  # noqa: E731
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        self._client_factory = client_factory

    def signature(self) -> Tuple[str, str]:
        # Never return raw secrets
        redacted = (self.api_key[:4] + "…" + self.api_key[-4:]) if self.api_key else ""
        return (self.model_name, redacted)

    # ---------------- public API ----------------
    async def generate_text(self, prompt: str) -> str:
        text = await self._chat(prompt)
        if not text:
            raise ProviderError("The provider returned an empty response.")
        return text

    async def generate_structured(self, prompt: str, shape: ShapeSpec) -> str:
        response_format = {
            "type": "json_schema",
            "json_schema": {
                "name": shape.name,
                "strict": True,
                "schema": shape.to_json_schema(),
            },
        }
        text = await self._chat(prompt, response_format=response_format)
        if not text:
            raise ProviderError("The provider returned an empty structured response.")
        return text

    async def generate_image(self, prompt: str, kind: ImageKind, aspect_ratio: str) -> str:
        request = ImageRequest(prompt=prompt, kind=kind, aspect_ratio=aspect_ratio)
        kwargs = {
            "model": self.image_model_name,
            "prompt": style_image_prompt(request.prompt, request.kind),
            "size": _IMAGE_SIZES[request.aspect_ratio],
            "n": 1,
        }
        try:
            async with self._client_factory() as client:
                resp = await client.images.generate(**kwargs)
        except Exception as exc:
            raise ProviderError(
                "Failed to generate image. The model may have refused the prompt."
            ) from exc

        reference = self._extract_image_reference(resp)
        if not reference:
            snippet = self._shorten_debug(str(resp))
            LOGGER.warning("Image generation returned no image. Raw response (truncated): %s", snippet)
            raise ProviderError("Failed to generate image. The model may have refused the prompt.")
        return reference

    # ---------------- internal callers ----------------
    async def _chat(self, prompt: str, *, response_format: Optional[Dict[str, Any]] = None) -> str:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")

        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self.default_max_tokens,
            "n": 1,
        }
        if response_format is not None:
            kwargs["response_format"] = response_format

        try:
            async with self._client_factory() as client:
                resp = await client.chat.completions.create(**kwargs)
        except Exception as exc:
            raise ProviderError(f"The provider call failed: {exc}") from exc

        refusal = self._extract_refusal(resp)
        if refusal:
            raise ProviderError(f"The provider refused the request: {refusal}")
        return self._extract_text_from_chat(resp).strip()

    # ---------------- extractors ----------------
    def _extract_text_from_chat(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        first = choices[0]
        msg = getattr(first, "message", None)
        if isinstance(msg, dict):
            content = msg.get("content")
        else:
            content = getattr(msg, "content", None)
        if isinstance(content, list):
            parts: List[str] = []
            for p in content:
                if isinstance(p, dict) and p.get("type") == "text":
                    parts.append(str(p.get("text") or ""))
            return "\n".join([p for p in parts if p])
        return str(content or "")

    def _extract_refusal(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        msg = getattr(choices[0], "message", None)
        refusal = msg.get("refusal") if isinstance(msg, dict) else getattr(msg, "refusal", None)
        return str(refusal or "").strip()

    def _extract_image_reference(self, resp: Any) -> str:
        data = getattr(resp, "data", None) or []
        if not data:
            return ""
        first = data[0]
        b64 = first.get("b64_json") if isinstance(first, dict) else getattr(first, "b64_json", None)
        if b64:
            return f"data:image/png;base64,{b64}"
        url = first.get("url") if isinstance(first, dict) else getattr(first, "url", None)
        return str(url or "")

    @staticmethod
    def _shorten_debug(s: str, limit: int = 1200) -> str:
        s = s.replace("\n", " ")
        return (s[:limit] + "…") if len(s) > limit else s


def build_generation_client(config: Dict[str, Any]) -> Optional[GenerationClient]:
    """Create the provider client from Flask configuration, or ``None`` when unconfigured."""

    api_key = (config.get("OPENAI_API_KEY") or "").strip()
    if not api_key:
        LOGGER.info("OPENAI_API_KEY not configured; generation stages will report a provider error.")
        return None

    try:
        client = OpenAIGenerationClient(
            model_name=config.get("TEXT_MODEL_NAME") or "gpt-4o-mini",
            api_key=api_key,
            image_model_name=config.get("IMAGE_MODEL_NAME") or "gpt-image-1",
            default_max_tokens=config.get("MAX_OUTPUT_TOKENS") or 2048,
            timeout=config.get("PROVIDER_TIMEOUT"),
        )
    except RuntimeError as exc:
        LOGGER.warning("Failed to initialise the generation client: %s", exc)
        return None

    LOGGER.info("Initialised generation client for model %s", client.signature()[0])
    return client


__all__ = [
    "GenerationClient",
    "GenerationRequest",
    "ImageRequest",
    "OpenAIGenerationClient",
    "StructuredRequest",
    "TextRequest",
    "build_generation_client",
    "style_image_prompt",
]
