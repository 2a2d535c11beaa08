"""Engine settings from the environment (optionally via a .env file)."""

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_API_URL = "http://localhost:8000/api"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_POLL_INTERVAL_SECONDS = 2.0


class EngineSettings(BaseModel):
    api_base_url: str = Field(default=DEFAULT_API_URL, description="Base URL of the reel API")
    api_token: str | None = Field(default=None, description="Bearer token sent with every request")
    request_timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0)


def _env(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def load_settings(*, dotenv_path: str | None = None) -> EngineSettings:
    """
    Build settings from REELS_API_URL, REELS_API_TOKEN,
    REELS_API_TIMEOUT_SECONDS and REPROCESS_POLL_INTERVAL_SECONDS.

    Blank variables fall back to defaults. Variables already set in the
    environment win over the .env file.
    """
    load_dotenv(dotenv_path)
    values: dict[str, str] = {}
    for field_name, env_name in (
        ("api_base_url", "REELS_API_URL"),
        ("api_token", "REELS_API_TOKEN"),
        ("request_timeout_seconds", "REELS_API_TIMEOUT_SECONDS"),
        ("poll_interval_seconds", "REPROCESS_POLL_INTERVAL_SECONDS"),
    ):
        value = _env(env_name)
        if value is not None:
            values[field_name] = value
    return EngineSettings.model_validate(values)
