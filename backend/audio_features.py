"""Feature summary of a recorded take (the ``audioFeatures`` map sent for evaluation)."""

from __future__ import annotations

import io
import logging
from typing import Any, Dict, Optional, Tuple

import librosa
import numpy as np
import soundfile as sf
from mutagen import File as MutagenFile
from mutagen import MutagenError

from capture import SpectrumAnalyser, measure_level

logger = logging.getLogger("speakx.audio_features")

TARGET_SAMPLE_RATE = 16000


class AudioDecodeError(RuntimeError):
    """The recording could not be turned into samples."""


def container_duration(path: str) -> Optional[float]:
    """Length in seconds from the file's tags, for takes librosa cannot decode."""
    try:
        tagged = MutagenFile(path)
    except (MutagenError, OSError) as exc:
        logger.debug("no container metadata in %s: %s", path, exc)
        return None
    length = getattr(getattr(tagged, "info", None), "length", None) or 0.0
    return float(length) if length > 0 else None


def load_audio_samples(path: str) -> Tuple[np.ndarray, int]:
    """Decode ``path`` to mono float samples at 16 kHz."""
    try:
        samples, sample_rate = librosa.load(path, sr=TARGET_SAMPLE_RATE, mono=True)
    except Exception as exc:
        raise AudioDecodeError(f"could not decode {path}: {exc}") from exc
    if samples.size == 0:
        raise AudioDecodeError(f"{path} holds no samples")
    return samples, int(sample_rate)


def summarize_samples(samples: np.ndarray, sample_rate: int) -> Dict[str, Any]:
    """Run the live level meter over the whole take, one analyser block at a time."""
    samples = np.asarray(samples, dtype=np.float32).ravel()
    duration = float(len(samples) / sample_rate) if sample_rate else 0.0
    analyser = SpectrumAnalyser()
    block = analyser.fft_size

    levels = []
    voiced = 0
    for start in range(0, len(samples) - block + 1, block):
        level = measure_level(analyser.byte_frequency_data(samples[start : start + block]))
        levels.append(level.db)
        voiced += int(level.voice_detected)

    if not levels:
        return {
            "duration": round(duration, 2),
            "hasAudio": False,
            "averageLevel": 0.0,
            "peakLevel": 0,
            "voicedRatio": 0.0,
        }

    return {
        "duration": round(duration, 2),
        "hasAudio": voiced > 0,
        "averageLevel": round(float(np.mean(levels)), 1),
        "peakLevel": int(max(levels)),
        "voicedRatio": round(voiced / len(levels), 3),
    }


def summarize_file(path: str) -> Dict[str, Any]:
    """Summarize a recording. Undecodable takes with a known length report no audio."""
    try:
        samples, sample_rate = load_audio_samples(path)
    except AudioDecodeError as exc:
        duration = container_duration(path)
        if duration is None:
            raise
        logger.warning("%s; using container duration %.2fs", exc, duration)
        return {"duration": round(duration, 2), "hasAudio": False}
    return summarize_samples(samples, sample_rate)


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    buffer = io.BytesIO()
    sf.write(buffer, np.asarray(samples, dtype=np.float32), sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()
