"""
audiotext/stt/engine.py
========================
Recognition Engine — audiotext Stage 3

Responsibility:
    - Create exactly ONE decoder per call, bound to a shared read-only model
      at the model's native sample rate (16 kHz)
    - Feed canonical PCM to it in order, a few kilobytes at a time
    - Discard partial hypotheses; return only the end-of-stream result
    - Close the decoder on every exit path

Chunk boundaries never influence the transcript: only byte order does.
Decoders are never shared, so concurrent sessions need no locking on the
shared model.

This module does NOT:
    - Load models (handled by audiotext.models.registry)
    - Transcode audio (handled by audiotext.audio.normalizer)
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol

from audiotext.audio.normalizer import NormalizedAudio
from audiotext.errors import (
    STAGE_DECODE,
    RecognitionError,
    SessionCancelledError,
    TranscriptionError,
)

logger = logging.getLogger("audiotext.stt.engine")

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

MODEL_SAMPLE_RATE = 16000  # Hz, native rate of the offline models
DEFAULT_CHUNK_BYTES = 4096


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TranscriptResult:
    """The decoder's final output, passed through untouched in ``raw``."""

    raw: str

    @property
    def text(self) -> str:
        """The "text" field of a JSON payload, or the raw string otherwise."""
        try:
            payload = json.loads(self.raw)
        except ValueError:
            return self.raw
        if isinstance(payload, dict):
            return str(payload.get("text", ""))
        return self.raw


class Decoder(Protocol):
    """Session-exclusive streaming decoder."""

    def accept_waveform(self, data: bytes) -> bool:
        """Feed PCM; True means a partial hypothesis is ready."""
        ...

    def final_result(self) -> str:
        ...

    def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Default decoder backend (Vosk)
# ---------------------------------------------------------------------------


class VoskDecoder:
    """Decoder adapter over ``vosk.KaldiRecognizer``."""

    def __init__(self, model: Any, sample_rate: float, words: bool = False):
        try:
            from vosk import KaldiRecognizer
        except ImportError as exc:
            raise RuntimeError(
                "vosk is required for offline recognition. Install with: pip install vosk"
            ) from exc

        self._recognizer = KaldiRecognizer(model, float(sample_rate))
        if words:
            self._recognizer.SetWords(True)

    def accept_waveform(self, data: bytes) -> bool:
        return bool(self._recognizer.AcceptWaveform(data))

    def final_result(self) -> str:
        return self._recognizer.FinalResult()

    def close(self) -> None:
        # KaldiRecognizer frees its native handle when the last reference goes.
        self._recognizer = None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RecognitionEngine:
    """Drives one session-scoped decoder over normalized PCM."""

    def __init__(
        self,
        decoder_factory: Callable[..., Decoder] = VoskDecoder,
        chunk_bytes: int = DEFAULT_CHUNK_BYTES,
        sample_rate: int = MODEL_SAMPLE_RATE,
        words: bool = False,
    ):
        if chunk_bytes < 2:
            raise ValueError("chunk_bytes must be at least 2")
        self._decoder_factory = decoder_factory
        self.chunk_bytes = chunk_bytes
        self.sample_rate = sample_rate
        self.words = words

    def recognize(
        self,
        audio: NormalizedAudio,
        model: Any,
        cancelled: Callable[[], bool] | None = None,
    ) -> TranscriptResult:
        """
        Decode a NormalizedAudio against ``model``.

        Raises:
            RecognitionError:      Decoder failure, or audio at the wrong rate.
            SessionCancelledError: ``cancelled()`` turned true mid-stream.
        """
        if audio.sample_rate != self.sample_rate:
            raise RecognitionError(
                f"Audio is {audio.sample_rate} Hz but the model expects {self.sample_rate} Hz"
            )
        return self.decode(audio.iter_chunks(self.chunk_bytes), model, cancelled)

    def decode(
        self,
        chunks: Iterable[bytes],
        model: Any,
        cancelled: Callable[[], bool] | None = None,
    ) -> TranscriptResult:
        """
        Feed ordered PCM ``chunks`` to a fresh decoder and finalize it.

        Partial hypotheses signalled while feeding are ignored.
        """
        try:
            decoder = self._decoder_factory(model, self.sample_rate, words=self.words)
        except Exception as exc:
            raise RecognitionError(f"Could not create decoder: {exc}") from exc

        fed_bytes = 0
        partials = 0
        try:
            for chunk in chunks:
                if cancelled is not None and cancelled():
                    raise SessionCancelledError(
                        "Session cancelled while decoding", stage=STAGE_DECODE
                    )
                if not chunk:
                    continue
                if decoder.accept_waveform(chunk):
                    partials += 1
                fed_bytes += len(chunk)
            raw = decoder.final_result()
        except TranscriptionError:
            raise
        except Exception as exc:
            raise RecognitionError(f"Decoder failed after {fed_bytes} bytes: {exc}") from exc
        finally:
            try:
                decoder.close()
            except Exception as exc:
                logger.warning("Error closing decoder: %s", exc)

        logger.info(
            "Decoding finished: %d bytes fed, %d partial hypotheses discarded.",
            fed_bytes, partials,
        )
        return TranscriptResult(raw=raw)
