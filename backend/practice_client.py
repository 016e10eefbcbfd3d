"""
Practice client: capture a take, score it with the backend, fall back locally.

    speakx-practice --seconds 20            # live camera + microphone session
    speakx-practice --audio take.wav --tips # score a recording instead

The backend is probed once at startup. A failed probe means every evaluation in
this run is local; a failed evaluation call only falls back for that call.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from capture import CaptureSession, CaptureState, MediaAccessError, format_duration
from local_eval import LocalEvaluator
from scoring import EvaluationResult, fallback_feedback
from settings import configure_logging

logger = logging.getLogger("speakx.client")

DEFAULT_API_URL = "http://localhost:3000"
PLACEHOLDER_TRANSCRIPT = "User is speaking..."
REQUEST_TIMEOUT_SEC = 60.0


class BackendError(RuntimeError):
    """The backend answered but did not report success."""


def _json_object(response: httpx.Response) -> Dict[str, Any]:
    data = response.json()
    if not isinstance(data, dict):
        raise BackendError(f"expected a JSON object, got {type(data).__name__}")
    return data


@dataclass
class EvaluationOutcome:
    result: EvaluationResult
    source: str  # "backend" or "local"


class PracticeClient:
    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        http: httpx.AsyncClient | None = None,
        local: LocalEvaluator | None = None,
        state: CaptureState | None = None,
    ) -> None:
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(base_url=base_url, timeout=REQUEST_TIMEOUT_SEC)
        self.local = local or LocalEvaluator()
        self.state = state or CaptureState()
        self.gemini_available = False

    async def __aenter__(self) -> "PracticeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def check_status(self) -> bool:
        try:
            response = await self.http.get("/api/status")
            data = _json_object(response)
        except (httpx.HTTPError, ValueError, BackendError) as exc:
            logger.info("Backend not available, using local evaluation (%s)", exc)
            self.state.backend_available = False
            return False

        self.state.backend_available = bool(data.get("success"))
        self.gemini_available = bool(data.get("geminiAvailable"))
        if self.state.backend_available:
            logger.info("Backend connected: %s", data)
        return self.state.backend_available

    async def evaluate(
        self,
        has_face: bool,
        has_voice: bool,
        transcript: Optional[str] = None,
        audio_features: Optional[Dict[str, Any]] = None,
    ) -> EvaluationOutcome:
        outcome: Optional[EvaluationOutcome] = None
        if self.state.backend_available:
            try:
                result = await self._evaluate_remote(has_face, has_voice, transcript, audio_features)
                outcome = EvaluationOutcome(result, "backend")
            except (httpx.HTTPError, ValueError, KeyError, BackendError) as exc:
                logger.warning("Backend evaluation error: %s; falling back to local evaluation", exc)

        if outcome is None:
            outcome = EvaluationOutcome(self.local.evaluate(has_face, has_voice), "local")

        self.state.record_evaluation(outcome.result)
        return outcome

    async def _evaluate_remote(
        self,
        has_face: bool,
        has_voice: bool,
        transcript: Optional[str],
        audio_features: Optional[Dict[str, Any]],
    ) -> EvaluationResult:
        payload = {
            "transcript": transcript or PLACEHOLDER_TRANSCRIPT,
            "hasFace": has_face,
            "hasVoice": has_voice,
            "audioFeatures": audio_features or {"duration": 0, "hasAudio": has_voice},
        }
        response = await self.http.post("/api/evaluate", json=payload)
        data = _json_object(response)
        if not data.get("success"):
            raise BackendError(data.get("error") or "Evaluation failed")
        evaluation = data.get("evaluation")
        if not isinstance(evaluation, dict):
            raise BackendError("Evaluation missing from backend reply")
        return EvaluationResult(**{**evaluation, "mode": data.get("mode")})

    async def analyze_audio(self, audio: bytes, filename: str = "take.wav", mime_type: str = "audio/wav") -> str:
        response = await self.http.post("/api/analyze-audio", files={"audio": (filename, audio, mime_type)})
        data = _json_object(response)
        if not data.get("success"):
            raise BackendError(data.get("error") or "Audio analysis failed")
        return str(data.get("analysis", ""))

    async def feedback(self, clarity: int, confidence: int, mode: str) -> Dict[str, str]:
        if not self.state.backend_available:
            return fallback_feedback(mode, self.local.rng)
        try:
            response = await self.http.post(
                "/api/feedback", json={"clarity": clarity, "confidence": confidence, "mode": mode}
            )
            return dict(response.json()["feedback"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Feedback request failed: %s", exc)
            return fallback_feedback(mode, self.local.rng)


# -----------------------------
# CLI
# -----------------------------


def _print_outcome(outcome: EvaluationOutcome, state: CaptureState) -> None:
    result = outcome.result
    print(f"\nMode: {result.mode.value}  ({outcome.source} evaluation)")
    print(f"  Clarity:    {result.clarity:>2}/10  {result.clarityFeedback}")
    print(f"  Confidence: {result.confidence:>2}/10  {result.confidenceFeedback}")
    if result.analysis:
        print(f"  {result.analysis}")
    print(
        f"Session: {state.evaluation_count} evaluation(s), "
        f"avg clarity {state.average_clarity}, avg confidence {state.average_confidence}"
    )


def _status_line(state: CaptureState) -> str:
    face = "face" if state.face_detected else "no face"
    voice = f"voice: {state.current_emotion.value}" if state.voice_detected else "monitoring..."
    return f"\r[{format_duration(state.session_duration)}] {state.level:>2} dB | {face} | {voice}   "


async def _run_live(client: PracticeClient, args: argparse.Namespace) -> int:
    from audio_features import encode_wav

    preview = None
    if args.preview:
        import cv2

        preview = cv2

    session = CaptureSession(state=client.state)
    try:
        await session.start()
    except MediaAccessError as exc:
        print(exc, file=sys.stderr)
        return 1

    try:
        for _ in range(int(args.seconds * 10)):
            await asyncio.sleep(0.1)
            sys.stdout.write(_status_line(client.state))
            sys.stdout.flush()
            image = session.preview_image() if preview is not None else None
            if image is not None:
                preview.imshow("SpeakX", image)
                preview.waitKey(1)

        state = client.state
        features = session.audio_features()
        recorded = session.media.recorded_samples() if session.media is not None else None
        sample_rate = session.media.sample_rate if session.media is not None else 0
        outcome = await client.evaluate(state.face_detected, state.voice_detected, args.transcript, features)
    finally:
        await session.stop()
        if preview is not None:
            preview.destroyAllWindows()

    _print_outcome(outcome, client.state)
    if args.analyze and recorded is not None and len(recorded):
        await _print_analysis(client, encode_wav(recorded, sample_rate))
    if args.tips:
        await _print_tips(client, outcome.result)
    return 0


async def _run_recording(client: PracticeClient, args: argparse.Namespace) -> int:
    from audio_features import summarize_file

    try:
        features = summarize_file(args.audio)
    except RuntimeError as exc:
        print(f"Could not read {args.audio}: {exc}", file=sys.stderr)
        return 1

    outcome = await client.evaluate(args.face, bool(features.get("hasAudio")), args.transcript, features)
    _print_outcome(outcome, client.state)
    if args.analyze:
        with open(args.audio, "rb") as handle:
            data = handle.read()
        await _print_analysis(client, data, os.path.basename(args.audio), _guess_mime(args.audio))
    if args.tips:
        await _print_tips(client, outcome.result)
    return 0


def _guess_mime(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    return {
        ".wav": "audio/wav",
        ".mp3": "audio/mpeg",
        ".m4a": "audio/m4a",
        ".ogg": "audio/ogg",
        ".webm": "audio/webm",
        ".flac": "audio/flac",
    }.get(ext, "audio/webm")


async def _print_analysis(
    client: PracticeClient, audio: bytes, filename: str = "take.wav", mime_type: str = "audio/wav"
) -> None:
    if not client.state.backend_available:
        print("\nAudio analysis needs the backend; skipped.")
        return
    try:
        analysis = await client.analyze_audio(audio, filename, mime_type)
    except (httpx.HTTPError, ValueError, BackendError) as exc:
        print(f"\nAudio analysis failed: {exc}")
        return
    print(f"\nAudio analysis:\n{analysis}")


async def _print_tips(client: PracticeClient, result: EvaluationResult) -> None:
    tips = await client.feedback(result.clarity, result.confidence, result.mode.value)
    print("\nTips:")
    print(f"  - {tips.get('clarityTip', '')}")
    print(f"  - {tips.get('confidenceTip', '')}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="speakx-practice", description="Speaking practice evaluator")
    parser.add_argument("--api-url", default=os.getenv("SPEAKX_API_URL", DEFAULT_API_URL))
    parser.add_argument("--seconds", type=float, default=15.0, help="length of a live session")
    parser.add_argument("--audio", help="score a recorded file instead of a live session")
    parser.add_argument("--face", action="store_true", help="treat a recording as on-camera")
    parser.add_argument("--transcript", default=None)
    parser.add_argument("--preview", action="store_true", help="show the camera with detections")
    parser.add_argument("--analyze", action="store_true", help="also send the audio for AI analysis")
    parser.add_argument("--tips", action="store_true", help="ask for two improvement tips")
    parser.add_argument("--log-level", default=os.getenv("SPEAKX_LOG_LEVEL", "WARNING"))
    return parser


async def run(args: argparse.Namespace) -> int:
    async with PracticeClient(args.api_url) as client:
        if await client.check_status():
            mode = "AI-Powered Mode Active" if client.gemini_available else "Backend Ready (Add API Key)"
        else:
            mode = "Local Mode"
        print(mode)
        if args.audio:
            return await _run_recording(client, args)
        return await _run_live(client, args)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
