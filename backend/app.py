"""
speakx-evaluator — Backend (FastAPI)
------------------------------------
Scores short speaking-practice takes with Gemini and hands back coaching tips.

Endpoints
- GET  /health             → liveness + whether GEMINI_API_KEY is set
- GET  /api/status         → API banner used by the practice client's startup probe
- POST /api/evaluate       → transcript/feature bundle → clarity & confidence scores
- POST /api/analyze-audio  → multipart ``audio`` upload → free-text Gemini analysis
- POST /api/feedback       → two tips for existing scores (never fails, falls back locally)

Notes
- Without GEMINI_API_KEY the process keeps running; AI endpoints answer 503 and
  /api/feedback serves its built-in tips.
- Gemini is reached through its OpenAI-compatible endpoint (``GEMINI_BASE_URL``).

Run
- pip install -e .
- uvicorn app:app --port 3000   (or: speakx-server)
"""

from __future__ import annotations

import base64
import json
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from errors import InvalidAIResponse, NotFound, ServiceUnavailable, SpeakXError, UpstreamFailure, ValidationError
from gemini_client import GeminiClient, build_gemini_client
from prompts import AUDIO_ANALYSIS_PROMPT, build_evaluation_prompt, build_feedback_prompt
from schemas import (
    AnalyzeAudioResponse,
    EvaluateResponse,
    Evaluation,
    EvaluationRequest,
    FeedbackResponse,
    FeedbackTips,
    HealthResponse,
    StatusResponse,
)
from scoring import apply_mode_rules, derive_mode, fallback_feedback
from settings import API_VERSION, Settings, configure_logging, load_settings
from structured_output import decode_json_object

logger = logging.getLogger("speakx.api")

DEFAULT_AUDIO_MIME = "audio/webm"
ENDPOINTS = (
    ("GET", "/health", "Health check"),
    ("GET", "/api/status", "API status"),
    ("POST", "/api/evaluate", "Evaluate speech"),
    ("POST", "/api/analyze-audio", "Analyze audio file"),
    ("POST", "/api/feedback", "Get feedback suggestions"),
)


@dataclass(frozen=True)
class Services:
    """Everything a handler needs; built once per app and never mutated."""

    settings: Settings
    gemini: Optional[GeminiClient] = None
    rng: random.Random = field(default_factory=random.Random)

    def require_gemini(self, message: str = "Gemini AI not configured") -> GeminiClient:
        if self.gemini is None:
            raise ServiceUnavailable(message)
        return self.gemini


def get_services(request: Request) -> Services:
    return request.app.state.services


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def _read_json_object(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(services: Services = Depends(get_services)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        timestamp=_iso_now(),
        geminiConfigured=services.settings.gemini_configured,
    )


@router.get("/api/status", response_model=StatusResponse)
def api_status(services: Services = Depends(get_services)) -> StatusResponse:
    return StatusResponse(
        message="SpeakX Evaluator API is running",
        geminiAvailable=services.gemini is not None,
        version=API_VERSION,
    )


@router.post("/api/evaluate", response_model=EvaluateResponse)
async def evaluate(
    payload: EvaluationRequest,
    services: Services = Depends(get_services),
) -> EvaluateResponse:
    if not payload.transcript and not payload.hasVoice:
        raise ValidationError("No speech data provided")

    gemini = services.require_gemini("Gemini AI not configured. Please add GEMINI_API_KEY to .env file")
    mode = derive_mode(payload.hasFace, payload.hasVoice)
    prompt = build_evaluation_prompt(mode, payload.transcript, payload.audioFeatures)

    try:
        raw = await gemini.generate_text(prompt)
        verdict = decode_json_object(raw)
    except UpstreamFailure as exc:
        logger.exception("Error in /api/evaluate: %s", exc)
        raise UpstreamFailure("Failed to evaluate speech") from exc

    result = apply_mode_rules(verdict, mode)
    logger.info(
        "evaluate mode=%s clarity=%s confidence=%s transcript_chars=%d",
        mode.value,
        result.clarity,
        result.confidence,
        len(payload.transcript or ""),
    )
    return EvaluateResponse(mode=mode.value, evaluation=Evaluation(**result.public_payload()))


@router.post("/api/analyze-audio", response_model=AnalyzeAudioResponse)
async def analyze_audio(
    audio: Optional[UploadFile] = File(None),
    services: Services = Depends(get_services),
) -> AnalyzeAudioResponse:
    if audio is None:
        raise ValidationError("No audio file provided")

    gemini = services.require_gemini()
    raw = await audio.read()
    mime_type = (audio.content_type or "").strip() or DEFAULT_AUDIO_MIME
    encoded = base64.b64encode(raw).decode("ascii")

    try:
        text = await gemini.generate_with_audio(AUDIO_ANALYSIS_PROMPT, encoded, mime_type)
    except UpstreamFailure as exc:
        logger.exception("Error in /api/analyze-audio: %s", exc)
        raise UpstreamFailure("Failed to analyze audio") from exc

    logger.info("analyze-audio file=%s bytes=%d mime=%s", audio.filename, len(raw), mime_type)
    return AnalyzeAudioResponse(analysis=text)


@router.post("/api/feedback", response_model=FeedbackResponse)
async def feedback(request: Request, services: Services = Depends(get_services)) -> FeedbackResponse:
    body = await _read_json_object(request)
    clarity = body.get("clarity")
    confidence = body.get("confidence")
    mode = body.get("mode")

    if services.gemini is None:
        return FeedbackResponse(feedback=FeedbackTips(**fallback_feedback(mode, services.rng)))

    try:
        raw = await services.gemini.generate_text(build_feedback_prompt(clarity, confidence, mode))
        tips = _tips_from_reply(decode_json_object(raw))
    except Exception as exc:
        logger.error("Error in /api/feedback, serving fallback tips: %s", exc)
        tips = FeedbackTips(**fallback_feedback(mode, services.rng))
    return FeedbackResponse(feedback=tips)


def _tips_from_reply(data: Dict[str, Any]) -> FeedbackTips:
    clarity_tip = str(data.get("clarityTip") or "").strip()
    confidence_tip = str(data.get("confidenceTip") or "").strip()
    if not clarity_tip or not confidence_tip:
        raise InvalidAIResponse("feedback reply is missing a tip")
    return FeedbackTips(clarityTip=clarity_tip, confidenceTip=confidence_tip)


# -----------------------------
# Error mapping
# -----------------------------


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def _handle_speakx_error(request: Request, exc: SpeakXError) -> JSONResponse:
    return _error_response(exc.status_code, exc.message)


async def _handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code in (404, 405):
        return _error_response(NotFound.status_code, NotFound.default_message)
    return _error_response(exc.status_code, str(exc.detail))


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
    return _error_response(ValidationError.status_code, ValidationError.default_message)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Server error: %s", exc)
    return _error_response(500, "Internal server error")


def create_app(settings: Settings | None = None, gemini_client: GeminiClient | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    if gemini_client is None:
        gemini_client = build_gemini_client(settings)

    app = FastAPI(title="SpeakX Evaluator API", version=API_VERSION)
    app.state.services = Services(settings=settings, gemini=gemini_client)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def _log_request(request: Request, call_next):
        logger.info("%s - %s %s", _iso_now(), request.method, request.url.path)
        return await call_next(request)

    app.add_exception_handler(SpeakXError, _handle_speakx_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected)
    app.include_router(router)

    @app.on_event("startup")
    async def _announce_backend() -> None:
        services: Services = app.state.services
        logger.info(
            "Backend startup configuration: %s",
            {
                "model": settings.gemini_model,
                "gemini": "configured" if services.gemini is not None else "not configured",
                "cors": settings.cors_origins,
                "port": settings.port,
            },
        )
        for method, path, label in ENDPOINTS:
            logger.info("  %-4s %s - %s", method, path, label)
        if services.gemini is None:
            logger.warning("Add your Gemini API key to .env file to enable AI features")

    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = app.state.services.settings
    uvicorn.run("app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
