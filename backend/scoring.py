"""Modes, score arithmetic and the deterministic feedback rule.

Shared by the HTTP gateways and the local evaluator so both paths draw from the
same tip lists and the same fixed sentences.
"""

from __future__ import annotations

import math
import random
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

SCORE_MIN = 0
SCORE_MAX = 10
VOICE_ONLY_CONFIDENCE_FACTOR = 0.5


class Mode(str, Enum):
    FACE_AND_VOICE = "Human Face + Voice"
    ONLY_VOICE = "Only Voice"
    NO_VOICE = "No Voice"


CLARITY_TIPS = (
    "Try to articulate each word more clearly and avoid mumbling.",
    "Speak with more structured sentences to boost clarity.",
    "Reduce filler words like 'um' and 'uh' for better clarity.",
    "Practice enunciating consonants more precisely.",
    "Slow down your speaking pace to improve clarity.",
    "Focus on completing your thoughts before moving to the next point.",
)

CONFIDENCE_TIPS = (
    "Maintain eye contact with the camera to project confidence.",
    "Reduce pauses and hesitations while speaking.",
    "Speak with a stronger, more assertive tone.",
    "Keep your posture upright and face the camera directly.",
    "Practice deep breathing to reduce nervousness in your voice.",
    "Use hand gestures naturally to enhance your message.",
)

ENABLE_CAMERA_TIP = "Enable your camera to receive full confidence scoring and feedback."
NO_VOICE_CLARITY_TIP = "Please speak clearly into your microphone to receive clarity feedback."
NO_VOICE_CONFIDENCE_TIP = "Start speaking and enable your camera for a complete evaluation."


class EvaluationResult(BaseModel):
    clarity: int
    confidence: int
    clarityFeedback: str = ""
    confidenceFeedback: str = ""
    analysis: str = ""
    mode: Mode

    def public_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"mode"})


def derive_mode(has_face: Any, has_voice: Any) -> Mode:
    if has_face and has_voice:
        return Mode.FACE_AND_VOICE
    if has_voice:
        return Mode.ONLY_VOICE
    return Mode.NO_VOICE


def parse_mode(value: Any) -> Optional[Mode]:
    try:
        return Mode(value)
    except ValueError:
        return None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except OverflowError:
        return math.inf if value > 0 else -math.inf
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return number


def clamp_score(value: Any) -> int:
    """Coerce anything into an integer score within [0, 10]. Non-numbers become 0."""
    number = _as_number(value)
    if math.isinf(number):
        return SCORE_MAX if number > 0 else SCORE_MIN
    return min(SCORE_MAX, max(SCORE_MIN, round_half_up(number)))


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def apply_mode_rules(raw: Mapping[str, Any], mode: Mode) -> EvaluationResult:
    """Turn a model verdict into a result, overriding it where the mode demands."""
    clarity: Any = raw.get("clarity")
    confidence: Any = raw.get("confidence")
    clarity_feedback = _text(raw.get("clarityFeedback"))
    confidence_feedback = _text(raw.get("confidenceFeedback"))

    if mode is Mode.ONLY_VOICE:
        halved = _as_number(confidence) * VOICE_ONLY_CONFIDENCE_FACTOR
        confidence = halved if math.isinf(halved) else round_half_up(halved)
        confidence_feedback = ENABLE_CAMERA_TIP
    elif mode is Mode.NO_VOICE:
        clarity = 0
        confidence = 0
        clarity_feedback = NO_VOICE_CLARITY_TIP
        confidence_feedback = NO_VOICE_CONFIDENCE_TIP

    return EvaluationResult(
        clarity=clamp_score(clarity),
        confidence=clamp_score(confidence),
        clarityFeedback=clarity_feedback,
        confidenceFeedback=confidence_feedback,
        analysis=_text(raw.get("analysis")),
        mode=mode,
    )


def fallback_feedback(mode: Any, rng: random.Random | None = None) -> Dict[str, str]:
    """Tips used whenever the model cannot be asked or its answer cannot be read."""
    rng = rng or random
    if parse_mode(mode) is Mode.NO_VOICE:
        return {
            "clarityTip": NO_VOICE_CLARITY_TIP,
            "confidenceTip": NO_VOICE_CONFIDENCE_TIP,
        }

    confidence_tip = rng.choice(CONFIDENCE_TIPS)
    if parse_mode(mode) is Mode.ONLY_VOICE:
        confidence_tip = ENABLE_CAMERA_TIP

    return {
        "clarityTip": rng.choice(CLARITY_TIPS),
        "confidenceTip": confidence_tip,
    }
