"""Request and response bodies of the HTTP API."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EvaluationRequest(BaseModel):
    transcript: Optional[str] = None
    hasFace: bool = False
    hasVoice: bool = False
    audioFeatures: Optional[Dict[str, Any]] = None


class Evaluation(BaseModel):
    clarity: int = Field(ge=0, le=10)
    confidence: int = Field(ge=0, le=10)
    clarityFeedback: str
    confidenceFeedback: str
    analysis: str


class EvaluateResponse(BaseModel):
    success: bool = True
    mode: str
    evaluation: Evaluation


class AnalyzeAudioResponse(BaseModel):
    success: bool = True
    analysis: str


class FeedbackTips(BaseModel):
    clarityTip: str
    confidenceTip: str


class FeedbackResponse(BaseModel):
    success: bool = True
    feedback: FeedbackTips


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    geminiConfigured: bool


class StatusResponse(BaseModel):
    success: bool = True
    message: str
    geminiAvailable: bool
    version: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
