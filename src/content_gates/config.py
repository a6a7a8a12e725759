"""Typed settings read from environment variables."""

from __future__ import annotations

import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field


class ConfigError(EnvironmentError):
    """Required configuration is missing or malformed."""


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


class Settings(BaseModel):
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    prompt_version: str = Field(default="v1.0.0", pattern=r"^v\d+\.\d+\.\d+$")
    api_key: str = ""
    environment: Literal["development", "production", "test"] = "development"
    upstash_redis_rest_url: str = ""
    upstash_redis_rest_token: str = ""
    rate_limit_max: int = Field(default=10, ge=1)
    rate_limit_window_s: float = Field(default=60.0, gt=0)
    rate_limit_max_entries: int = Field(default=500, ge=1)
    results_dir: str = "data/results"
    mock_llm: bool = False
    telemetry_debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        values = {
            "llm_api_key": env.get("LLM_API_KEY") or env.get("GROQ_API_KEY") or env.get("OPENAI_API_KEY"),
            "llm_base_url": env.get("LLM_BASE_URL") or None,
            "llm_model": env.get("LLM_MODEL"),
            "prompt_version": env.get("PROMPT_VERSION"),
            "api_key": env.get("API_KEY"),
            "environment": env.get("APP_ENV"),
            "upstash_redis_rest_url": env.get("UPSTASH_REDIS_REST_URL"),
            "upstash_redis_rest_token": env.get("UPSTASH_REDIS_REST_TOKEN"),
            "rate_limit_max": env.get("RATE_LIMIT_MAX"),
            "rate_limit_window_s": env.get("RATE_LIMIT_WINDOW_S"),
            "results_dir": env.get("RESULTS_DIR"),
            "mock_llm": _flag(env.get("MOCK_LLM")),
            "telemetry_debug": _flag(env.get("TELEMETRY_DEBUG")),
        }
        return cls.model_validate({k: v for k, v in values.items() if v is not None})

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def has_upstash(self) -> bool:
        return bool(self.upstash_redis_rest_url and self.upstash_redis_rest_token)

    def validate_required(self) -> None:
        """Fail fast when production is missing a required secret."""
        if not self.is_production:
            return
        missing = []
        if not self.llm_api_key and not self.mock_llm:
            missing.append("LLM_API_KEY")
        if not self.api_key:
            missing.append("API_KEY")
        if not self.upstash_redis_rest_url:
            missing.append("UPSTASH_REDIS_REST_URL")
        if not self.upstash_redis_rest_token:
            missing.append("UPSTASH_REDIS_REST_TOKEN")
        if missing:
            raise ConfigError(
                "Missing required environment variables: " + ", ".join(missing)
            )
