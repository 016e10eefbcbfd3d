"""Prompt templates sent to the model."""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from scoring import Mode

NO_TRANSCRIPT_PLACEHOLDER = "No clear speech detected"

EVALUATION_TEMPLATE = """You are an expert communication skills evaluator. Analyze the following speaking performance and provide scores.

**Speaking Context:**
- Mode: {mode}
- Transcript: {transcript}
- Audio Features: {features}

**Evaluation Rules:**
1. If both face and voice are present → evaluate normally
2. If voice is present but face is not → deduct confidence by 50%
3. If both are absent → Clarity = 0, Confidence = 0

**Task:**
Evaluate the speech on:
1. **Clarity (0-10)**: How clear, articulate, and well-structured is the speech?
2. **Confidence (0-10)**: How confident and assertive is the delivery?

Provide your response in this exact JSON format:
{{
  "clarity": <number 0-10>,
  "confidence": <number 0-10>,
  "clarityFeedback": "<one specific suggestion to improve clarity>",
  "confidenceFeedback": "<one specific suggestion to improve confidence>",
  "analysis": "<brief 2-3 sentence overall analysis>"
}}"""

AUDIO_ANALYSIS_PROMPT = """Analyze this audio recording of someone speaking. Evaluate:
1. Speech clarity and articulation
2. Confidence and tone
3. Pace and rhythm
4. Any filler words or hesitations

Provide scores (0-10) for clarity and confidence, plus specific feedback."""

FEEDBACK_TEMPLATE = """As a communication coach, provide specific, actionable feedback for someone with these scores:
- Clarity: {clarity}/10
- Confidence: {confidence}/10
- Mode: {mode}

Provide exactly 2 suggestions in JSON format:
{{
  "clarityTip": "<one specific tip to improve clarity>",
  "confidenceTip": "<one specific tip to improve confidence>"
}}"""


def build_evaluation_prompt(
    mode: Mode, transcript: Optional[str], audio_features: Optional[Mapping[str, Any]]
) -> str:
    return EVALUATION_TEMPLATE.format(
        mode=mode.value,
        transcript=transcript or NO_TRANSCRIPT_PLACEHOLDER,
        features=json.dumps(dict(audio_features or {}), ensure_ascii=False, separators=(",", ":")),
    )


def build_feedback_prompt(clarity: Any, confidence: Any, mode: Any) -> str:
    mode_label = mode.value if isinstance(mode, Mode) else mode
    return FEEDBACK_TEMPLATE.format(clarity=clarity, confidence=confidence, mode=mode_label)
