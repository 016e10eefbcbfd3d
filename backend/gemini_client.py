"""Gemini access through its OpenAI-compatible endpoint."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from errors import UpstreamFailure
from settings import Settings

logger = logging.getLogger("speakx.gemini")

_AUDIO_FORMATS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "mp4",
    "audio/m4a": "m4a",
    "audio/x-m4a": "m4a",
    "audio/aac": "aac",
    "audio/x-aac": "aac",
    "audio/ogg": "ogg",
    "audio/flac": "flac",
    "audio/webm": "webm",
}


def audio_format_for(mime_type: str) -> str:
    media_type = (mime_type or "").split(";", 1)[0].strip().lower()
    if media_type in _AUDIO_FORMATS:
        return _AUDIO_FORMATS[media_type]
    subtype = media_type.split("/", 1)[-1]
    return subtype.removeprefix("x-") or "webm"


def _message_text(completion: Any) -> str:
    if not getattr(completion, "choices", None):
        raise UpstreamFailure("gemini_completion_failed: no choices returned")

    message = completion.choices[0].message
    raw = getattr(message, "content", None)

    if isinstance(raw, list):
        parts = []
        for part in raw:
            text_piece = getattr(part, "text", None)
            if text_piece:
                parts.append(text_piece)
        raw = "".join(parts)

    raw = str(raw or "").strip()
    if not raw:
        raise UpstreamFailure("gemini_completion_failed: empty response body")
    return raw


class GeminiClient:
    """Thin async wrapper: one request per call, no retry."""

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self._client = client
        self.model = model

    async def _complete(self, content: Any) -> str:
        messages: List[Dict[str, Any]] = [{"role": "user", "content": content}]
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
            )
        except Exception as exc:
            raise UpstreamFailure(f"gemini_completion_failed: {exc}") from exc
        return _message_text(completion)

    async def generate_text(self, prompt: str) -> str:
        raw = await self._complete(prompt)
        logger.debug("gemini_raw_text=%r", raw[:500])
        return raw

    async def generate_with_audio(self, prompt: str, audio_base64: str, mime_type: str) -> str:
        content = [
            {"type": "text", "text": prompt},
            {
                "type": "input_audio",
                "input_audio": {"data": audio_base64, "format": audio_format_for(mime_type)},
            },
        ]
        return await self._complete(content)


def build_gemini_client(settings: Settings) -> Optional[GeminiClient]:
    """Return a client, or ``None`` when no API key is configured."""
    if not settings.gemini_configured:
        logger.warning("GEMINI_API_KEY not set; AI endpoints are disabled")
        return None
    try:
        client = AsyncOpenAI(api_key=settings.gemini_api_key, base_url=settings.gemini_base_url)
    except Exception as exc:
        logger.error("Error initializing Gemini AI: %s", exc)
        return None
    logger.info("Gemini AI initialized (model=%s)", settings.gemini_model)
    return GeminiClient(client, settings.gemini_model)
