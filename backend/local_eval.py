"""Offline scoring used when the backend or Gemini cannot be reached."""

from __future__ import annotations

import random
from typing import Optional

from scoring import (
    VOICE_ONLY_CONFIDENCE_FACTOR,
    EvaluationResult,
    Mode,
    clamp_score,
    derive_mode,
    fallback_feedback,
    round_half_up,
)

LOCAL_ANALYSIS = "Evaluated locally from face and voice detection; AI analysis unavailable."


class LocalEvaluator:
    """Randomized scores gated by the two detection flags.

    Unlike the backend, "No Voice" still yields small nonzero scores.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    def clarity(self, has_voice: bool) -> int:
        base = 5 + self.rng.random() * 3
        bonus = 2 if has_voice else 0
        return clamp_score(base + bonus)

    def confidence(self, has_face: bool, has_voice: bool) -> int:
        face_part = 4 + self.rng.random() * 3 if has_face else 0
        voice_part = 2 + self.rng.random() * 2 if has_voice else 0
        return clamp_score(face_part + voice_part)

    def evaluate(self, has_face: bool, has_voice: bool) -> EvaluationResult:
        mode = derive_mode(has_face, has_voice)

        if mode is Mode.FACE_AND_VOICE:
            clarity = self.clarity(has_voice)
            confidence = self.confidence(has_face, has_voice)
        elif mode is Mode.ONLY_VOICE:
            clarity = self.clarity(has_voice)
            confidence = round_half_up(self.confidence(has_face, has_voice) * VOICE_ONLY_CONFIDENCE_FACTOR)
        else:
            clarity = 5 + round_half_up(self.rng.random() * 2)
            confidence = 3 + round_half_up(self.rng.random() * 2)

        tips = fallback_feedback(mode, self.rng)
        return EvaluationResult(
            clarity=clamp_score(clarity),
            confidence=clamp_score(confidence),
            clarityFeedback=tips["clarityTip"],
            confidenceFeedback=tips["confidenceTip"],
            analysis=LOCAL_ANALYSIS,
            mode=mode,
        )
