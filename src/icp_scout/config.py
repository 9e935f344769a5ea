from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, model_validator

DEFAULT_DB_PATH = Path("data/icp_scout.db")

PROVIDER_KEY_VARIABLES = {
    "gemini": "GOOGLE_AI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "dry-run": None,
}

DEFAULT_MODELS = {
    "gemini": ("gemini-2.5-flash", "gemini-2.0-flash"),
    "openai": ("gpt-4o-mini", "gpt-4o"),
    "dry-run": ("heuristic", None),
}


class PipelineConfig(BaseModel):
    """Every tunable of a batch run. Built once and passed down; never mutated."""

    model_config = ConfigDict(frozen=True)

    provider: str = "gemini"
    api_key: Optional[str] = None
    model: str = "gemini-2.5-flash"
    fallback_model: Optional[str] = "gemini-2.0-flash"
    temperature: float = 0.7
    max_output_tokens: int = 4096
    fallback_max_output_tokens: Optional[int] = 8192
    request_timeout_seconds: float = 60.0

    retry_attempts: int = 3
    retry_delay_ms: int = 2000
    max_retry_delay_ms: int = 10000

    min_concurrency: int = 1
    max_concurrency: int = 8
    base_concurrency: int = 3
    min_window_samples: int = 5

    request_delay_ms: int = 200
    batch_delay_ms: int = 1000

    cache_ttl_days: int = 30
    db_path: Path = DEFAULT_DB_PATH
    inspect_sites: bool = False

    @model_validator(mode="after")
    def _check_bounds(self) -> "PipelineConfig":
        if self.provider not in PROVIDER_KEY_VARIABLES:
            raise ValueError(f"Unsupported provider: {self.provider}")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.min_concurrency < 1 or self.max_concurrency < self.min_concurrency:
            raise ValueError("concurrency bounds must satisfy 1 <= min <= max")
        return self

    @property
    def key_variable(self) -> Optional[str]:
        return PROVIDER_KEY_VARIABLES[self.provider]

    @property
    def request_delay_seconds(self) -> float:
        return self.request_delay_ms / 1000.0

    @property
    def batch_delay_seconds(self) -> float:
        return self.batch_delay_ms / 1000.0

    def backoff_seconds(self, attempt: int) -> float:
        """Delay before retrying after ``attempt`` (1-based) failed."""
        delay = self.retry_delay_ms * (2 ** (attempt - 1))
        return min(delay, self.max_retry_delay_ms) / 1000.0

    def with_overrides(self, **changes: Any) -> "PipelineConfig":
        data = self.model_dump()
        data.update({key: value for key, value in changes.items() if value is not None})
        return PipelineConfig(**data)

    @classmethod
    def from_env(cls, provider: Optional[str] = None, **overrides: Any) -> "PipelineConfig":
        load_dotenv()
        provider = (provider or os.getenv("ICP_SCOUT_PROVIDER") or "gemini").strip().lower()
        if provider not in PROVIDER_KEY_VARIABLES:
            raise ValueError(f"Unsupported provider: {provider}")

        model, fallback = DEFAULT_MODELS[provider]
        key_variable = PROVIDER_KEY_VARIABLES[provider]
        values: dict[str, Any] = {
            "provider": provider,
            "api_key": os.getenv(key_variable) if key_variable else None,
            "model": os.getenv("ICP_SCOUT_MODEL") or model,
            "fallback_model": os.getenv("ICP_SCOUT_FALLBACK_MODEL", fallback or "") or None,
        }

        int_settings = {
            "ICP_SCOUT_MAX_OUTPUT_TOKENS": "max_output_tokens",
            "ICP_SCOUT_FALLBACK_MAX_OUTPUT_TOKENS": "fallback_max_output_tokens",
            "ICP_SCOUT_RETRY_ATTEMPTS": "retry_attempts",
            "ICP_SCOUT_RETRY_DELAY_MS": "retry_delay_ms",
            "ICP_SCOUT_MAX_RETRY_DELAY_MS": "max_retry_delay_ms",
            "ICP_SCOUT_MIN_CONCURRENCY": "min_concurrency",
            "ICP_SCOUT_MAX_CONCURRENCY": "max_concurrency",
            "ICP_SCOUT_BASE_CONCURRENCY": "base_concurrency",
            "ICP_SCOUT_REQUEST_DELAY_MS": "request_delay_ms",
            "ICP_SCOUT_BATCH_DELAY_MS": "batch_delay_ms",
            "ICP_SCOUT_CACHE_TTL_DAYS": "cache_ttl_days",
        }
        for variable, field in int_settings.items():
            raw = os.getenv(variable)
            if raw not in (None, ""):
                try:
                    values[field] = int(raw)
                except ValueError as exc:
                    raise ValueError(f"{variable} must be an integer, got {raw!r}") from exc

        db_path = os.getenv("ICP_SCOUT_DB_PATH")
        if db_path:
            values["db_path"] = Path(db_path)
        inspect_sites = os.getenv("ICP_SCOUT_INSPECT_SITES")
        if inspect_sites:
            values["inspect_sites"] = inspect_sites.strip().lower() in {"1", "true", "yes"}

        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
