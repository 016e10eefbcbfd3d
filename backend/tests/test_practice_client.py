"""Practice client: startup probe, per-call fallback and session statistics."""

from __future__ import annotations

import json

import httpx
import pytest

from capture import CaptureState
from conftest import FakeGemini, FixedRandom
from app import create_app
from local_eval import LOCAL_ANALYSIS, LocalEvaluator
from practice_client import PLACEHOLDER_TRANSCRIPT, PracticeClient
from scoring import ENABLE_CAMERA_TIP, Mode
from settings import Settings

STATUS_OK = {"success": True, "message": "SpeakX Evaluator API is running", "geminiAvailable": True, "version": "1.0.0"}


def _evaluation_body(clarity=8, confidence=6, mode="Human Face + Voice"):
    return {
        "success": True,
        "mode": mode,
        "evaluation": {
            "clarity": clarity,
            "confidence": confidence,
            "clarityFeedback": "Articulate the endings.",
            "confidenceFeedback": "Hold the pause.",
            "analysis": "Good pace.",
        },
    }


def _client(handler, **kwargs) -> PracticeClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://backend")
    return PracticeClient(http=http, local=LocalEvaluator(FixedRandom(0.5)), **kwargs)


class TestStatusProbe:
    @pytest.mark.asyncio
    async def test_backend_available(self):
        client = _client(lambda request: httpx.Response(200, json=STATUS_OK))

        assert await client.check_status() is True
        assert client.state.backend_available
        assert client.gemini_available
        await client.http.aclose()

    @pytest.mark.asyncio
    async def test_unreachable_backend_means_local_mode(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)

        assert await client.check_status() is False
        assert not client.state.backend_available
        await client.http.aclose()

    @pytest.mark.asyncio
    async def test_non_json_status_means_local_mode(self):
        client = _client(lambda request: httpx.Response(200, text="<html>proxy</html>"))

        assert await client.check_status() is False
        await client.http.aclose()

    @pytest.mark.asyncio
    async def test_non_object_status_means_local_mode(self):
        client = _client(lambda request: httpx.Response(200, json=[1, 2]))

        assert await client.check_status() is False
        assert not client.state.backend_available
        await client.http.aclose()


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_backend_result_is_used_and_accumulated(self):
        sent = []

        def handler(request):
            if request.url.path == "/api/status":
                return httpx.Response(200, json=STATUS_OK)
            sent.append(json.loads(request.content))
            return httpx.Response(200, json=_evaluation_body())

        client = _client(handler)
        await client.check_status()

        outcome = await client.evaluate(True, True, audio_features={"duration": 3, "hasAudio": True})
        await client.evaluate(True, True)

        assert outcome.source == "backend"
        assert outcome.result.mode is Mode.FACE_AND_VOICE
        assert outcome.result.clarity == 8
        assert sent[0] == {
            "transcript": PLACEHOLDER_TRANSCRIPT,
            "hasFace": True,
            "hasVoice": True,
            "audioFeatures": {"duration": 3, "hasAudio": True},
        }
        assert client.state.evaluation_count == 2
        assert client.state.total_clarity == 16
        assert client.state.average_confidence == 6.0
        await client.http.aclose()

    @pytest.mark.asyncio
    async def test_error_body_falls_back_for_that_call_only(self):
        replies = iter(
            [
                httpx.Response(503, json={"success": False, "error": "Gemini AI not configured"}),
                httpx.Response(200, json=_evaluation_body(clarity=4, confidence=2, mode="Only Voice")),
            ]
        )
        client = _client(lambda request: next(replies), state=CaptureState(backend_available=True))

        first = await client.evaluate(False, True, transcript="Hello")
        second = await client.evaluate(False, True, transcript="Hello")

        assert first.source == "local"
        assert first.result.analysis == LOCAL_ANALYSIS
        assert first.result.confidenceFeedback == ENABLE_CAMERA_TIP
        assert second.source == "backend"
        assert second.result.clarity == 4
        assert client.state.evaluation_count == 2
        await client.http.aclose()

    @pytest.mark.asyncio
    async def test_network_error_falls_back(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(handler, state=CaptureState(backend_available=True))

        outcome = await client.evaluate(True, True)

        assert outcome.source == "local"
        assert (outcome.result.clarity, outcome.result.confidence) == (9, 9)
        await client.http.aclose()

    @pytest.mark.parametrize(
        "body",
        [
            [1, 2],
            "ok",
            {"success": True, "mode": "Human Face + Voice", "evaluation": [8, 6]},
            {"success": True, "evaluation": {"clarity": 8, "confidence": 6}},
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_reply_falls_back(self, body):
        client = _client(lambda request: httpx.Response(200, json=body), state=CaptureState(backend_available=True))

        outcome = await client.evaluate(True, True, transcript="hi")

        assert outcome.source == "local"
        assert client.state.evaluation_count == 1
        await client.http.aclose()

    @pytest.mark.asyncio
    async def test_local_mode_never_calls_backend(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=_evaluation_body())

        client = _client(handler)

        outcome = await client.evaluate(False, False)

        assert calls == []
        assert outcome.source == "local"
        assert outcome.result.mode is Mode.NO_VOICE
        assert 5 <= outcome.result.clarity <= 7
        await client.http.aclose()


class TestAgainstRealApp:
    @pytest.mark.asyncio
    async def test_end_to_end_with_fake_model(self):
        fake = FakeGemini('```json\n{"clarity": 9, "confidence": 8, "clarityFeedback": "x", '
                          '"confidenceFeedback": "y", "analysis": "z"}\n```')
        app = create_app(Settings(gemini_api_key="test-key"), gemini_client=fake)
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")

        async with PracticeClient(http=http) as client:
            assert await client.check_status()
            outcome = await client.evaluate(False, True, transcript="Practising my pitch")
            tips = await client.feedback(outcome.result.clarity, outcome.result.confidence, outcome.result.mode.value)
            analysis = await client.analyze_audio(b"RIFF....WAVE")

        assert outcome.source == "backend"
        assert outcome.result.mode is Mode.ONLY_VOICE
        assert outcome.result.confidence == 4
        assert tips["confidenceTip"] == ENABLE_CAMERA_TIP
        assert analysis.startswith("```json")
        assert "Transcript: Practising my pitch" in fake.prompts[0]
        await http.aclose()

    @pytest.mark.asyncio
    async def test_unconfigured_backend_falls_back_locally(self):
        app = create_app(Settings())
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
        client = PracticeClient(http=http, local=LocalEvaluator(FixedRandom(0.0)))

        assert await client.check_status()
        assert client.gemini_available is False
        outcome = await client.evaluate(True, True, transcript="Hello")

        assert outcome.source == "local"
        assert (outcome.result.clarity, outcome.result.confidence) == (7, 6)
        await http.aclose()
