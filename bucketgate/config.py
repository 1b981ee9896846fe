from __future__ import annotations

import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

load_dotenv()


class Settings(BaseModel):
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_CAPACITY: int = Field(default=5, gt=0, description="burst size")
    RATE_LIMIT_REFILL_RATE: float = Field(default=1.0, gt=0)
    RATE_LIMIT_REFILL_INTERVAL_MS: int = Field(default=1000, gt=0)
    RATE_LIMIT_CLEANUP_INTERVAL_MS: int = Field(default=60_000, gt=0)
    RATE_LIMIT_HEADERS: bool = Field(default=True)
    RATE_LIMIT_SKIP_PATHS: str = Field(
        default="/health,/metrics", description="comma-separated paths"
    )
    LOG_LEVEL: str = Field(default="INFO")
    CORS_ALLOW_ORIGINS: str = Field(default="*")

    def skip_paths(self) -> set[str]:
        return {p.strip() for p in self.RATE_LIMIT_SKIP_PATHS.split(",") if p.strip()}


def _load_settings(existing: Settings | None = None) -> Settings:
    values: dict[str, Any] = {}
    for name, field in Settings.model_fields.items():
        env_value = os.getenv(name)
        if env_value is None:
            if existing is not None and hasattr(existing, name):
                values[name] = getattr(existing, name)
                continue
            values[name] = field.get_default(call_default_factory=True)
        else:
            values[name] = env_value

    try:
        return Settings(**values)
    except ValidationError as exc:
        bad = sorted({str(error["loc"][0]) for error in exc.errors() if error.get("loc")})
        raise RuntimeError(
            f"Invalid environment variables: {', '.join(bad)}"
        ) from exc


settings = _load_settings()


def reload_settings() -> Settings:
    global settings
    fresh = _load_settings(settings)
    settings.__dict__.update(fresh.__dict__)
    return settings
