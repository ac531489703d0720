"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_STYLE_ADVISOR_URL = "http://127.0.0.1:8000/functions/style-advisor"
DEFAULT_VIDEO_SERVICE_URL = "http://127.0.0.1:8000/functions/video-integration"


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class AppSettings:
    """Settings read once at startup; see `.env` for local overrides."""

    openai_api_key: Optional[str] = None
    style_advisor_url: str = DEFAULT_STYLE_ADVISOR_URL
    style_advisor_api_key: Optional[str] = None
    style_advisor_model: str = "gpt-4o-mini"
    video_service_url: str = DEFAULT_VIDEO_SERVICE_URL
    video_service_api_key: Optional[str] = None
    video_persona_id: str = "p24293d6"
    tavus_api_key: Optional[str] = None
    tavus_api_url: str = "https://tavusapi.com/v2"
    remote_timeout_seconds: float = 60.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppSettings":
        return cls(
            openai_api_key=_env_str("OPENAI_API_KEY"),
            style_advisor_url=_env_str("STYLE_ADVISOR_URL", DEFAULT_STYLE_ADVISOR_URL),
            style_advisor_api_key=_env_str("STYLE_ADVISOR_API_KEY"),
            style_advisor_model=_env_str("STYLE_ADVISOR_MODEL", "gpt-4o-mini"),
            video_service_url=_env_str("VIDEO_SERVICE_URL", DEFAULT_VIDEO_SERVICE_URL),
            video_service_api_key=_env_str("VIDEO_SERVICE_API_KEY"),
            video_persona_id=_env_str("VIDEO_PERSONA_ID", "p24293d6"),
            tavus_api_key=_env_str("TAVUS_API_KEY"),
            tavus_api_url=_env_str("TAVUS_API_URL", "https://tavusapi.com/v2").rstrip("/"),
            remote_timeout_seconds=_env_float("REMOTE_TIMEOUT_SECONDS", 60.0),
            log_level=(_env_str("LOG_LEVEL", "INFO") or "INFO").upper(),
        )
