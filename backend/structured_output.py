"""Best-effort extraction of a JSON object from free-text model replies."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterator

from errors import InvalidAIResponse

logger = logging.getLogger("speakx.structured_output")

_FENCED_BLOCK = re.compile(r"```(?:json)?[ \t]*\n?([\s\S]*?)\n?```", re.IGNORECASE)


def _candidates(text: str) -> Iterator[str]:
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        yield fenced.group(1).strip()

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        yield text[start : end + 1]


def _scan_objects(text: str) -> Iterator[Any]:
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            value, _ = decoder.raw_decode(text, idx)
        except ValueError:
            value = None
        if isinstance(value, dict):
            yield value
        idx = text.find("{", idx + 1)


def decode_json_object(text: str | None) -> Dict[str, Any]:
    """Decode the first JSON object in ``text``.

    Order: fenced code block, then the outermost ``{...}`` span, then the first
    ``{`` from which a complete object decodes. Anything else raises
    :class:`InvalidAIResponse`.
    """
    raw = (text or "").strip()
    if not raw:
        raise InvalidAIResponse()

    for candidate in _candidates(raw):
        try:
            value = json.loads(candidate)
        except ValueError as exc:
            logger.debug("candidate rejected (%s): %r", exc, candidate[:120])
            continue
        if isinstance(value, dict):
            return value

    for value in _scan_objects(raw):
        return value

    logger.warning("no JSON object found in model reply: %r", raw[:200])
    raise InvalidAIResponse()
