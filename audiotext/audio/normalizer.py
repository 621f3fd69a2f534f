"""
audiotext/audio/normalizer.py
==============================
Audio Normalizer — audiotext Stage 2

Responsibility:
    - Turn a staged, arbitrary-format audio file into canonical PCM
      (16 kHz, mono, 16-bit signed little-endian) via the external transcoder
    - Pick a temp suffix from the caller's extension hint, falling back to a
      generic suffix so the transcoder sniffs the container itself
    - Verify the transcoder's output really is canonical PCM
    - Expose the PCM as an ordered stream of byte chunks

Transcode failure is fatal: no NormalizedAudio is produced and nothing
downstream (decoding) may run.

This module does NOT:
    - Decode speech (handled by audiotext.stt.engine)
    - Delete temp files (the session's TempResourceManager owns them)
"""

import logging
import re
import wave
from dataclasses import dataclass
from typing import Iterator

from audiotext.audio.temp_files import TempHandle, TempResourceManager
from audiotext.audio.transcoder import (
    TARGET_CHANNELS,
    TARGET_SAMPLE_RATE,
    Transcoder,
)
from audiotext.errors import TranscodeError

logger = logging.getLogger("audiotext.audio.normalizer")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

GENERIC_SUFFIX = ".bin"
OUTPUT_SUFFIX = ".wav"
TARGET_SAMPLE_WIDTH = 2  # bytes per sample (16-bit)

_EXTENSION_PATTERN = re.compile(r"^[a-z0-9]{1,10}$")


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedAudio:
    """Canonical PCM produced by the normalizer, backed by a temp WAV file."""

    handle: TempHandle
    path: str
    sample_rate: int
    channels: int
    sample_width: int
    n_frames: int

    @property
    def duration_seconds(self) -> float:
        return self.n_frames / self.sample_rate if self.sample_rate else 0.0

    def iter_chunks(self, chunk_bytes: int) -> Iterator[bytes]:
        """
        Yield the PCM payload (no WAV header) in order, ``chunk_bytes`` at a time.

        ``chunk_bytes`` is rounded down to whole frames (minimum one frame).
        """
        frame_size = self.channels * self.sample_width
        frames_per_chunk = max(1, chunk_bytes // frame_size)
        with wave.open(self.path, "rb") as wf:
            while True:
                data = wf.readframes(frames_per_chunk)
                if not data:
                    break
                yield data


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def suffix_for_hint(extension_hint: str | None) -> str:
    """
    Temp-file suffix for a container hint.

    Accepts "mp3", ".mp3" or a filename such as "voice note.OGG". Anything
    missing or unrecognisable maps to GENERIC_SUFFIX rather than failing.
    """
    if not extension_hint:
        return GENERIC_SUFFIX
    hint = extension_hint.strip().lower()
    if "." in hint:
        hint = hint.rsplit(".", 1)[1]
    if not _EXTENSION_PATTERN.match(hint):
        return GENERIC_SUFFIX
    return f".{hint}"


def _read_wav_format(path: str) -> tuple[int, int, int, int]:
    """Return (sample_rate, channels, sample_width, n_frames) of a WAV file."""
    try:
        with wave.open(path, "rb") as wf:
            return (
                wf.getframerate(),
                wf.getnchannels(),
                wf.getsampwidth(),
                wf.getnframes(),
            )
    except (wave.Error, EOFError, OSError) as exc:
        raise TranscodeError(f"Transcoder output is not a readable WAV file ({exc})") from exc


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class AudioNormalizer:
    """Converts staged input audio into canonical PCM via the transcoder."""

    def __init__(self, transcoder: Transcoder):
        self._transcoder = transcoder

    def normalize(
        self,
        temps: TempResourceManager,
        raw_handle: TempHandle,
    ) -> NormalizedAudio:
        """
        Transcode the staged file behind ``raw_handle`` into a new temp WAV.

        The output handle is created through ``temps`` BEFORE the transcoder
        runs, so it is released with the session even if transcoding fails.

        Raises:
            TranscodeError:    Transcoder failure or non-canonical output.
            TempResourceError: Temp-file failure.
        """
        output = temps.create(OUTPUT_SUFFIX)
        input_path = temps.path(raw_handle)
        output_path = temps.path(output)

        self._transcoder.transcode(input_path, output_path)

        sample_rate, channels, sample_width, n_frames = _read_wav_format(output_path)
        if (sample_rate, channels, sample_width) != (
            TARGET_SAMPLE_RATE,
            TARGET_CHANNELS,
            TARGET_SAMPLE_WIDTH,
        ):
            raise TranscodeError(
                "Transcoder produced non-canonical audio: "
                f"{sample_rate} Hz, {channels} ch, {sample_width * 8}-bit"
            )

        audio = NormalizedAudio(
            handle=output,
            path=output_path,
            sample_rate=sample_rate,
            channels=channels,
            sample_width=sample_width,
            n_frames=n_frames,
        )
        logger.info(
            "Audio normalized: %.2fs | %d Hz | %d ch | %d-bit",
            audio.duration_seconds, sample_rate, channels, sample_width * 8,
        )
        return audio
