"""Process configuration, read once from the environment (and ``.env``)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_PORT = 3000
DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
API_VERSION = "1.0.0"

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_MODEL
    gemini_base_url: str = DEFAULT_BASE_URL
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    frontend_url: str = "*"
    log_level: str = "INFO"

    @property
    def gemini_configured(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.frontend_url.split(",") if origin.strip()] or ["*"]


def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger("speakx.settings").warning("Ignoring non-integer %s=%r", key, raw)
        return default


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from ``env`` (defaults to ``os.environ`` after loading ``.env``)."""
    if env is None:
        load_dotenv()
        env = os.environ

    api_key = (env.get("GEMINI_API_KEY") or "").strip() or None
    return Settings(
        gemini_api_key=api_key,
        gemini_model=(env.get("GEMINI_MODEL") or DEFAULT_MODEL).strip(),
        gemini_base_url=(env.get("GEMINI_BASE_URL") or DEFAULT_BASE_URL).strip(),
        host=(env.get("HOST") or "0.0.0.0").strip(),
        port=_int_env(env, "PORT", DEFAULT_PORT),
        frontend_url=(env.get("FRONTEND_URL") or "*").strip(),
        log_level=(env.get("SPEAKX_LOG_LEVEL") or "INFO").strip().upper(),
    )


def configure_logging(level_name: str) -> logging.Logger:
    """Attach the single stream handler to the ``speakx`` logger tree."""
    logger = logging.getLogger("speakx")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    return logger
