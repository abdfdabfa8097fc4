import os
from pathlib import Path

PACKAGE_DIR = Path(__file__).resolve().parent


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")

    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
    TEXT_MODEL_NAME = os.environ.get("TEXT_MODEL_NAME", "gpt-4o-mini")
    IMAGE_MODEL_NAME = os.environ.get("IMAGE_MODEL_NAME", "gpt-image-1")
    MAX_OUTPUT_TOKENS = int(os.environ.get("MAX_OUTPUT_TOKENS", "2048"))
    PROVIDER_TIMEOUT = _env_float("PROVIDER_TIMEOUT", 120.0)

    PROMPT_CONFIG_PATH = os.environ.get("PROMPT_CONFIG_PATH", str(PACKAGE_DIR / "prompt_config.json"))

    DEFAULT_HAS_BRANCHES = _env_flag("DEFAULT_HAS_BRANCHES", False)
    DEFAULT_CHAPTER_COUNT = int(os.environ.get("DEFAULT_CHAPTER_COUNT", "12"))


class TestConfig(Config):
    TESTING = True
    OPENAI_API_KEY = ""
    DEFAULT_HAS_BRANCHES = False
    DEFAULT_CHAPTER_COUNT = 12
