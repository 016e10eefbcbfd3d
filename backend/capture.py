"""
Live capture: camera + microphone → face/voice detection flags.

Two loops run while a session is recording:
- audio tick (~60 Hz): analyser byte spectrum → 0-60 level → voice flag + emotion label
- face tick (100 ms): single-face detector over the latest frame → face flag + overlay

Both share one CancellationToken. It is checked before each tick is scheduled and
again before a finished detection is applied, so nothing lands after ``stop()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol, Tuple

import numpy as np

from scoring import EvaluationResult, round_half_up

logger = logging.getLogger("speakx.capture")

FFT_SIZE = 2048
SMOOTHING_TIME_CONSTANT = 0.8
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0
LEVEL_SCALE = 60
PEAK_WEIGHT = 0.7
VOICE_THRESHOLD = 3

FRAME_INTERVAL_SEC = 1.0 / 60.0
DETECTION_INTERVAL_SEC = 0.1
CLOCK_INTERVAL_SEC = 1.0

MEDIA_ACCESS_MESSAGE = "Could not access camera/microphone. Please grant permissions and try again."


class Emotion(str, Enum):
    NEUTRAL = "Neutral"
    SOFT = "Soft"
    CALM = "Calm"
    CONFIDENT = "Confident"
    ENERGETIC = "Energetic"


# (exclusive lower bound, label), checked from loudest down
EMOTION_BANDS: Tuple[Tuple[int, Emotion], ...] = (
    (40, Emotion.ENERGETIC),
    (25, Emotion.CONFIDENT),
    (10, Emotion.CALM),
    (VOICE_THRESHOLD, Emotion.SOFT),
)


class MediaAccessError(RuntimeError):
    """Camera or microphone could not be opened."""


def emotion_for(level: int) -> Emotion:
    for threshold, emotion in EMOTION_BANDS:
        if level > threshold:
            return emotion
    return Emotion.NEUTRAL


@dataclass(frozen=True)
class AudioLevel:
    db: int
    voice_detected: bool
    emotion: Emotion

    @property
    def percentage(self) -> float:
        return min(100.0, self.db / LEVEL_SCALE * 100.0)


def measure_level(frequency_data: np.ndarray) -> AudioLevel:
    """Map one analyser byte spectrum (0-255 per bin) onto the 0-60 display scale."""
    data = np.asarray(frequency_data, dtype=np.float64)
    if data.size == 0:
        return AudioLevel(0, False, Emotion.NEUTRAL)

    average = float(data.mean())
    peak = float(data.max())
    display_db = round_half_up(average / 255.0 * LEVEL_SCALE)
    peak_db = round_half_up(peak / 255.0 * LEVEL_SCALE)
    final_db = max(display_db, round_half_up(peak_db * PEAK_WEIGHT))
    return AudioLevel(final_db, final_db > VOICE_THRESHOLD, emotion_for(final_db))


class SpectrumAnalyser:
    """Byte frequency data the way a browser AnalyserNode produces it.

    Blackman window, magnitude smoothing across calls, and a linear map of
    [min_decibels, max_decibels] onto 0..255.
    """

    def __init__(
        self,
        fft_size: int = FFT_SIZE,
        smoothing: float = SMOOTHING_TIME_CONSTANT,
        min_decibels: float = MIN_DECIBELS,
        max_decibels: float = MAX_DECIBELS,
    ) -> None:
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels
        self._window = np.blackman(fft_size)
        self._previous = np.zeros(fft_size // 2)

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def reset(self) -> None:
        self._previous = np.zeros(self.frequency_bin_count)

    def byte_frequency_data(self, samples: np.ndarray) -> np.ndarray:
        block = np.asarray(samples, dtype=np.float64).ravel()[-self.fft_size :]
        if block.size < self.fft_size:
            block = np.pad(block, (self.fft_size - block.size, 0))

        spectrum = np.fft.rfft(block * self._window)[: self.frequency_bin_count]
        magnitude = np.abs(spectrum) / self.fft_size
        smoothed = self.smoothing * self._previous + (1.0 - self.smoothing) * magnitude
        self._previous = smoothed

        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(smoothed)
        span = self.max_decibels - self.min_decibels
        scaled = np.floor(255.0 / span * (decibels - self.min_decibels))
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)


# -----------------------------
# Face detection
# -----------------------------


@dataclass(frozen=True)
class FaceDetection:
    box: Tuple[int, int, int, int]  # x, y, width, height
    landmarks: Tuple[Tuple[int, int], ...] = ()


class FaceDetector(Protocol):
    def detect(self, frame: np.ndarray) -> Optional[FaceDetection]: ...


class HaarFaceDetector:
    """Largest frontal face via OpenCV Haar cascades; eye centres as landmarks."""

    def __init__(self, min_neighbors: int = 5, min_size: Tuple[int, int] = (60, 60)) -> None:
        import cv2

        self._cv2 = cv2
        self._faces = cv2.CascadeClassifier(cv2.data.haarcascades + "haarcascade_frontalface_default.xml")
        self._eyes = cv2.CascadeClassifier(cv2.data.haarcascades + "haarcascade_eye.xml")
        if self._faces.empty():
            raise RuntimeError("OpenCV face cascade could not be loaded")
        self.min_neighbors = min_neighbors
        self.min_size = min_size

    def detect(self, frame: np.ndarray) -> Optional[FaceDetection]:
        cv2 = self._cv2
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY) if frame.ndim == 3 else frame
        faces = self._faces.detectMultiScale(
            gray, scaleFactor=1.1, minNeighbors=self.min_neighbors, minSize=self.min_size
        )
        if len(faces) == 0:
            return None

        x, y, w, h = max(faces, key=lambda f: int(f[2]) * int(f[3]))
        upper = gray[y : y + h // 2, x : x + w]
        landmarks: List[Tuple[int, int]] = []
        if not self._eyes.empty():
            for ex, ey, ew, eh in self._eyes.detectMultiScale(upper, scaleFactor=1.1, minNeighbors=6)[:2]:
                landmarks.append((int(x + ex + ew // 2), int(y + ey + eh // 2)))
        landmarks.append((int(x + w // 2), int(y + h * 0.62)))  # nose tip estimate
        return FaceDetection((int(x), int(y), int(w), int(h)), tuple(landmarks))


BOX_COLOR = (85, 230, 110)
LANDMARK_COLOR = (255, 80, 170)


def draw_detection(overlay: np.ndarray, detection: FaceDetection) -> np.ndarray:
    import cv2

    x, y, w, h = detection.box
    cv2.rectangle(overlay, (x, y), (x + w, y + h), BOX_COLOR, 3)
    for px, py in detection.landmarks:
        cv2.circle(overlay, (px, py), 2, LANDMARK_COLOR, -1)
    return overlay


# -----------------------------
# Session
# -----------------------------


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; True when cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


class MediaSource(Protocol):
    sample_rate: int

    def read_frame(self) -> Optional[np.ndarray]: ...

    def read_audio(self, num_samples: int) -> np.ndarray: ...

    def recorded_samples(self) -> np.ndarray: ...

    def release(self) -> None: ...


@dataclass
class CaptureState:
    is_recording: bool = False
    face_detected: bool = False
    voice_detected: bool = False
    current_emotion: Emotion = Emotion.NEUTRAL
    level: int = 0
    evaluation_count: int = 0
    total_clarity: int = 0
    total_confidence: int = 0
    session_duration: int = 0
    backend_available: bool = False

    def clear_detection(self) -> None:
        self.face_detected = False
        self.voice_detected = False
        self.current_emotion = Emotion.NEUTRAL
        self.level = 0

    def record_evaluation(self, result: EvaluationResult) -> None:
        self.evaluation_count += 1
        self.total_clarity += result.clarity
        self.total_confidence += result.confidence

    @property
    def average_clarity(self) -> Optional[float]:
        if not self.evaluation_count:
            return None
        return round(self.total_clarity / self.evaluation_count, 1)

    @property
    def average_confidence(self) -> Optional[float]:
        if not self.evaluation_count:
            return None
        return round(self.total_confidence / self.evaluation_count, 1)


def format_duration(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


def _open_device_media() -> MediaSource:
    from media import DeviceMedia

    return DeviceMedia()


class CaptureSession:
    def __init__(
        self,
        media_factory: Callable[[], MediaSource] | None = None,
        detector: FaceDetector | None = None,
        analyser: SpectrumAnalyser | None = None,
        state: CaptureState | None = None,
        on_update: Callable[[CaptureState], Any] | None = None,
        frame_interval: float = FRAME_INTERVAL_SEC,
        detection_interval: float = DETECTION_INTERVAL_SEC,
        clock_interval: float = CLOCK_INTERVAL_SEC,
    ) -> None:
        self._media_factory = media_factory or _open_device_media
        self._detector = detector
        self.analyser = analyser or SpectrumAnalyser()
        self.state = state or CaptureState()
        self.on_update = on_update
        self.frame_interval = frame_interval
        self.detection_interval = detection_interval
        self.clock_interval = clock_interval

        self.media: Optional[MediaSource] = None
        self.overlay: Optional[np.ndarray] = None
        self.last_frame: Optional[np.ndarray] = None
        self._token: Optional[CancellationToken] = None
        self._tasks: List[asyncio.Task] = []
        self._started_at = 0.0

    @property
    def detector(self) -> FaceDetector:
        if self._detector is None:
            self._detector = HaarFaceDetector()
        return self._detector

    async def start(self) -> None:
        if self.state.is_recording:
            return
        detector = self.detector
        try:
            media = self._media_factory()
        except Exception as exc:
            logger.error("Error starting practice: %s", exc)
            raise MediaAccessError(MEDIA_ACCESS_MESSAGE) from exc

        self.media = media
        self.analyser.reset()
        self._token = CancellationToken()
        self._started_at = time.monotonic()
        self.state.session_duration = 0
        self.state.is_recording = True

        token = self._token
        self._tasks = [
            asyncio.create_task(self._audio_loop(token), name="speakx-audio"),
            asyncio.create_task(self._face_loop(token, detector), name="speakx-face"),
            asyncio.create_task(self._clock_loop(token), name="speakx-clock"),
        ]
        logger.info("Capture started")

    async def stop(self) -> None:
        if self._token is not None:
            self._token.cancel()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.media is not None:
            try:
                self.media.release()
            finally:
                self.media = None
        if self.overlay is not None:
            self.overlay[:] = 0
        self.last_frame = None

        self.state.is_recording = False
        self.state.clear_detection()
        self._notify()
        logger.info("Capture stopped after %s", format_duration(self.state.session_duration))

    def audio_features(self) -> dict:
        seconds = 0
        if self.media is not None and self.media.sample_rate:
            seconds = int(len(self.media.recorded_samples()) // self.media.sample_rate)
        return {"duration": seconds, "hasAudio": self.state.voice_detected}

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self.state)

    def sample_audio(self) -> AudioLevel:
        """One audio tick: read the newest block, update the voice flag and emotion."""
        if self.media is None:
            raise RuntimeError("capture session not started")
        block = self.media.read_audio(self.analyser.fft_size)
        level = measure_level(self.analyser.byte_frequency_data(block))
        self.state.level = level.db
        self.state.voice_detected = level.voice_detected
        self.state.current_emotion = level.emotion
        return level

    def preview_image(self) -> Optional[np.ndarray]:
        """Latest analysed frame with the detection overlay painted on top."""
        if self.last_frame is None:
            return None
        if self.overlay is None or self.overlay.shape != self.last_frame.shape:
            return self.last_frame.copy()
        mask = self.overlay.any(axis=-1, keepdims=True) if self.overlay.ndim == 3 else self.overlay > 0
        return np.where(mask, self.overlay, self.last_frame)

    def apply_detection(self, frame: np.ndarray, detection: Optional[FaceDetection]) -> None:
        self.last_frame = frame
        if self.overlay is None or self.overlay.shape != frame.shape:
            self.overlay = np.zeros_like(frame)
        else:
            self.overlay[:] = 0

        if detection is None:
            self.state.face_detected = False
            return
        self.state.face_detected = True
        draw_detection(self.overlay, detection)

    async def _audio_loop(self, token: CancellationToken) -> None:
        while not token.cancelled:
            self.sample_audio()
            self._notify()
            if await token.sleep(self.frame_interval):
                break

    async def _face_loop(self, token: CancellationToken, detector: FaceDetector) -> None:
        while not token.cancelled:
            media = self.media
            frame = await asyncio.to_thread(media.read_frame) if media is not None else None
            if token.cancelled:
                break
            if frame is not None:
                try:
                    detection = await asyncio.to_thread(detector.detect, frame)
                except Exception as exc:
                    logger.warning("Face detection error: %s", exc)
                else:
                    if token.cancelled:
                        break
                    self.apply_detection(frame, detection)
                    self._notify()
            if await token.sleep(self.detection_interval):
                break

    async def _clock_loop(self, token: CancellationToken) -> None:
        while not await token.sleep(self.clock_interval):
            self.state.session_duration = int(time.monotonic() - self._started_at)
