from __future__ import annotations

import random
from typing import List, Optional, Tuple

import numpy as np
import pytest
from fastapi.testclient import TestClient

from app import create_app
from settings import Settings


class FakeGemini:
    """Stands in for GeminiClient; records prompts and replays a canned reply."""

    def __init__(self, reply: str = "", error: Optional[Exception] = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: List[str] = []
        self.audio_calls: List[Tuple[str, str, str]] = []

    async def generate_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply

    async def generate_with_audio(self, prompt: str, audio_base64: str, mime_type: str) -> str:
        self.audio_calls.append((prompt, audio_base64, mime_type))
        if self.error is not None:
            raise self.error
        return self.reply


class FixedRandom(random.Random):
    """``random()`` always returns ``value``."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture
def unconfigured_client() -> TestClient:
    return TestClient(create_app(Settings()))


@pytest.fixture
def make_client():
    def _make(reply: str = "", error: Optional[Exception] = None) -> Tuple[TestClient, FakeGemini]:
        fake = FakeGemini(reply, error)
        app = create_app(Settings(gemini_api_key="test-key"), gemini_client=fake)
        return TestClient(app), fake

    return _make


def sine(seconds: float = 0.25, freq: float = 440.0, amplitude: float = 0.5, sample_rate: int = 16000) -> np.ndarray:
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)
