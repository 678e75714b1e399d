"""
Engine configuration.

Settings are read from the environment once (via python-dotenv) and the model
table is built once at startup; both are frozen and handed to the engine
explicitly through EngineConfig rather than read from module state per call.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from workflows_ai.errors import UnknownModelError

logger = logging.getLogger(__name__)

Capability = Literal["text", "structured", "image", "speech", "transcription", "embedding", "search", "tools"]

DEFAULT_CORS_ORIGIN_REGEX = (
    r"^https:\/\/.*\.vercel\.app$|^http:\/\/localhost:\d+$|^http:\/\/127\.0\.0\.1:\d+$"
)


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    gemini_api_key: str | None = None
    default_model: str = "gemini-2.5-flash"
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    log_level: str = "INFO"
    cors_origin_regex: str = DEFAULT_CORS_ORIGIN_REGEX


class ModelInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    provider: str
    label: str
    capabilities: tuple[Capability, ...]


class ModelRegistry(BaseModel):
    """Immutable model-id table. Lookups never fall back silently."""

    model_config = ConfigDict(frozen=True)

    models: tuple[ModelInfo, ...] = Field(default_factory=tuple)

    def get(self, model_id: str) -> ModelInfo | None:
        for info in self.models:
            if info.id == model_id:
                return info
        return None

    def resolve(self, model_id: str, capability: Capability | None = None) -> ModelInfo:
        info = self.get(model_id)
        if info is None:
            raise UnknownModelError(f"Unknown model '{model_id}'")
        if capability is not None and capability not in info.capabilities:
            raise UnknownModelError(
                f"Model '{model_id}' does not support {capability} generation"
            )
        return info

    def ids(self, capability: Capability | None = None) -> list[str]:
        return [
            info.id
            for info in self.models
            if capability is None or capability in info.capabilities
        ]

    def first(self, capability: Capability) -> ModelInfo:
        for info in self.models:
            if capability in info.capabilities:
                return info
        raise UnknownModelError(f"No model registered for {capability}")


GEMINI_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(id="gemini-2.5-flash", provider="google", label="Gemini 2.5 Flash",
              capabilities=("text", "structured", "transcription", "search", "tools")),
    ModelInfo(id="gemini-2.5-pro", provider="google", label="Gemini 2.5 Pro",
              capabilities=("text", "structured", "search", "tools")),
    ModelInfo(id="gemini-2.5-flash-lite", provider="google", label="Gemini 2.5 Flash Lite",
              capabilities=("text", "structured")),
    ModelInfo(id="gemini-2.5-flash-image", provider="google", label="Gemini 2.5 Flash Image",
              capabilities=("image",)),
    ModelInfo(id="gemini-2.5-flash-preview-tts", provider="google", label="Gemini 2.5 Flash TTS",
              capabilities=("speech",)),
    ModelInfo(id="gemini-embedding-001", provider="google", label="Gemini Embedding",
              capabilities=("embedding",)),
)


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    settings: Settings
    models: ModelRegistry


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %d", name, raw, default)
        return default


def load_settings() -> Settings:
    load_dotenv()
    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY"),
        default_model=os.getenv("WORKFLOWS_DEFAULT_MODEL", "gemini-2.5-flash"),
        retry_max_attempts=max(1, _int_env("WORKFLOWS_RETRY_MAX_ATTEMPTS", 3)),
        retry_base_delay_ms=max(0, _int_env("WORKFLOWS_RETRY_BASE_DELAY_MS", 1000)),
        log_level=os.getenv("WORKFLOWS_LOG_LEVEL", "INFO").upper(),
        cors_origin_regex=os.getenv("WORKFLOWS_CORS_ORIGIN_REGEX", DEFAULT_CORS_ORIGIN_REGEX),
    )


@lru_cache
def get_engine_config() -> EngineConfig:
    return EngineConfig(settings=load_settings(), models=ModelRegistry(models=GEMINI_MODELS))
