"""Local camera + microphone handles for a capture session."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import List, Optional

import numpy as np

from capture import FFT_SIZE, MediaAccessError

logger = logging.getLogger("speakx.media")

SAMPLE_RATE = 16000
FRAME_WIDTH = 1280
FRAME_HEIGHT = 720


class DeviceMedia:
    """Default webcam via OpenCV and default microphone via sounddevice.

    Every microphone block is kept for the whole session so the take can be
    uploaded afterwards; the analyser only ever reads the newest samples.
    """

    def __init__(
        self,
        camera_index: int = 0,
        sample_rate: int = SAMPLE_RATE,
        width: int = FRAME_WIDTH,
        height: int = FRAME_HEIGHT,
    ) -> None:
        import cv2
        import sounddevice as sd

        self.sample_rate = sample_rate
        self._lock = threading.Lock()
        self._recent: deque = deque(maxlen=FFT_SIZE * 2)
        self._blocks: List[np.ndarray] = []

        self._capture = cv2.VideoCapture(camera_index)
        if not self._capture.isOpened():
            self._capture.release()
            raise MediaAccessError(f"camera {camera_index} could not be opened")
        self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        try:
            self._stream = sd.InputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="float32",
                callback=self._on_audio,
            )
            self._stream.start()
        except Exception:
            self._capture.release()
            raise
        logger.info("Media opened (camera=%s, mic=%d Hz)", camera_index, sample_rate)

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("audio status: %s", status)
        mono = np.array(indata[:, 0], dtype=np.float32)
        with self._lock:
            self._blocks.append(mono)
            self._recent.extend(mono.tolist())

    def read_frame(self) -> Optional[np.ndarray]:
        ok, frame = self._capture.read()
        return frame if ok else None

    def read_audio(self, num_samples: int) -> np.ndarray:
        with self._lock:
            recent = np.fromiter(self._recent, dtype=np.float32, count=len(self._recent))
        return recent[-num_samples:]

    def recorded_samples(self) -> np.ndarray:
        with self._lock:
            if not self._blocks:
                return np.zeros(0, dtype=np.float32)
            return np.concatenate(self._blocks)

    def release(self) -> None:
        try:
            self._stream.stop()
            self._stream.close()
        finally:
            self._capture.release()
        logger.info("Media released")
