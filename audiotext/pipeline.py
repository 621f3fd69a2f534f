"""
audiotext/pipeline.py
======================
Transcription Pipeline — audiotext Orchestration Layer

Responsibility:
    - Run one recognition request through its stages, in order:
        Received → Staged → Normalized → Decoding → Finalized
    - Short-circuit on the first failing stage into Failed(stage)
    - Release every temp file of the request on every exit path
    - Support cooperative cancellation of an in-flight session

Stage order:
    model      → resolve the language (unsupported languages fail here,
                 before anything touches disk or the transcoder)
    stage      → persist the raw input stream to a temp file
    normalize  → transcode to canonical PCM (new temp file)
    decode     → stream PCM through a session-scoped decoder

This layer MUST NOT:
    - Share decoders or temp handles between sessions
    - Mutate models
    - Retry failed stages
"""

import logging
import threading
import uuid
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from audiotext.audio.normalizer import AudioNormalizer, suffix_for_hint
from audiotext.audio.temp_files import TempResourceManager
from audiotext.audio.transcoder import Transcoder
from audiotext.config import Settings
from audiotext.errors import (
    STAGE_DECODE,
    STAGE_MODEL,
    STAGE_NORMALIZE,
    STAGE_STAGING,
    RecognitionError,
    SessionCancelledError,
    TempResourceError,
    TranscodeError,
    TranscriptionError,
)
from audiotext.models.registry import ModelRegistry
from audiotext.stt.engine import RecognitionEngine, TranscriptResult

logger = logging.getLogger("audiotext.pipeline")


# =====================================================================
# Session state
# =====================================================================


class SessionState(str, Enum):
    RECEIVED = "received"
    STAGED = "staged"
    NORMALIZED = "normalized"
    DECODING = "decoding"
    FINALIZED = "finalized"
    FAILED = "failed"


_TERMINAL_STATES = {SessionState.FINALIZED, SessionState.FAILED}

# Wrapper for unexpected exceptions raised inside each stage
_STAGE_ERRORS: dict[str, type[TranscriptionError]] = {
    STAGE_STAGING: TempResourceError,
    STAGE_NORMALIZE: TranscodeError,
    STAGE_DECODE: RecognitionError,
}


def _wrap_stage_error(stage: str, exc: Exception) -> TranscriptionError:
    """Tag an unexpected exception with the stage it escaped from."""
    error_cls = _STAGE_ERRORS.get(stage)
    message = f"{type(exc).__name__}: {exc}"
    if error_cls is None:
        return TranscriptionError(message, stage=stage)
    return error_cls(message)


# =====================================================================
# Session
# =====================================================================


class RecognitionSession:
    """One inbound request. Runs once, then stays in a terminal state."""

    def __init__(
        self,
        pipeline: "TranscriptionPipeline",
        language: str,
        extension_hint: str | None = None,
    ):
        self.session_id = uuid.uuid4().hex[:12]
        self.language = language
        self.extension_hint = extension_hint
        self.state = SessionState.RECEIVED
        self.failed_stage: str | None = None
        self.error: TranscriptionError | None = None
        self._pipeline = pipeline
        self._cancel_event = threading.Event()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Ask the session to stop at its next stage or chunk boundary."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _check_cancelled(self, stage: str) -> None:
        if self._cancel_event.is_set():
            raise SessionCancelledError("Session cancelled", stage=stage)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, stream: BinaryIO | bytes) -> TranscriptResult:
        """
        Transcribe ``stream``.

        Returns:
            The decoder's final TranscriptResult.

        Raises:
            TranscriptionError: Stage-tagged failure; ``self.failed_stage``
                                names the stage and no temp file survives.
        """
        if self.state is not SessionState.RECEIVED:
            raise RuntimeError(f"Session {self.session_id} already ran (state={self.state.value}).")

        pipeline = self._pipeline
        stage = STAGE_MODEL
        logger.info(
            "Session %s received: language=%s hint=%s",
            self.session_id, self.language, self.extension_hint,
        )

        try:
            with TempResourceManager(pipeline.temp_dir) as temps:
                model = pipeline.registry.get(self.language)
                self._check_cancelled(stage)

                stage = STAGE_STAGING
                raw = temps.create(suffix_for_hint(self.extension_hint))
                size = temps.write(raw, stream)
                self._advance(SessionState.STAGED, "%d bytes staged", size)
                self._check_cancelled(stage)

                stage = STAGE_NORMALIZE
                audio = pipeline.normalizer.normalize(temps, raw)
                temps.release(raw)
                self._advance(SessionState.NORMALIZED, "%.2fs of PCM", audio.duration_seconds)
                self._check_cancelled(stage)

                stage = STAGE_DECODE
                self._advance(SessionState.DECODING, "chunk=%d bytes", pipeline.engine.chunk_bytes)
                result = pipeline.engine.recognize(audio, model, cancelled=self._cancel_event.is_set)
        except TranscriptionError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            wrapped = _wrap_stage_error(stage, exc)
            self._fail(wrapped)
            raise wrapped from exc

        self._advance(
            SessionState.FINALIZED, "temp files released, %d chars of text", len(result.text)
        )
        return result

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _advance(self, state: SessionState, detail: str, *args) -> None:
        self.state = state
        logger.info("Session %s → %s (%s)", self.session_id, state.value, detail % args)

    def _fail(self, exc: TranscriptionError) -> None:
        if self.state in _TERMINAL_STATES:
            return
        self.state = SessionState.FAILED
        self.failed_stage = exc.stage
        self.error = exc
        logger.warning("Session %s failed at stage %s: %s", self.session_id, exc.stage, exc.message)


# =====================================================================
# Pipeline
# =====================================================================


class TranscriptionPipeline:
    """Shared, stateless wiring of registry, normalizer and engine."""

    def __init__(
        self,
        registry: ModelRegistry,
        normalizer: AudioNormalizer,
        engine: RecognitionEngine,
        temp_dir: str | Path | None = None,
    ):
        self.registry = registry
        self.normalizer = normalizer
        self.engine = engine
        self.temp_dir = temp_dir

    @classmethod
    def from_settings(cls, settings: Settings, registry: ModelRegistry) -> "TranscriptionPipeline":
        transcoder = Transcoder(
            binary=settings.ffmpeg_binary,
            timeout=settings.transcode_timeout,
            max_concurrent=settings.max_concurrent_transcodes,
        )
        engine = RecognitionEngine(
            chunk_bytes=settings.decode_chunk_bytes,
            words=settings.recognizer_words,
        )
        return cls(registry, AudioNormalizer(transcoder), engine, settings.temp_dir)

    def session(self, language: str, extension_hint: str | None = None) -> RecognitionSession:
        return RecognitionSession(self, language, extension_hint)

    def transcribe(
        self,
        stream: BinaryIO | bytes,
        language: str,
        extension_hint: str | None = None,
    ) -> TranscriptResult:
        """Run a fresh session over ``stream`` and return its transcript."""
        return self.session(language, extension_hint).run(stream)
