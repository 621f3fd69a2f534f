# audiotext/__init__.py
# ======================
# audiotext — offline, per-language audio transcription
#
# Request flow:
#   raw stream → temp file → ffmpeg (16 kHz mono s16le) → decoder → transcript
#
# Public API:
#   TranscriptionPipeline, RecognitionSession, SessionState

from audiotext.pipeline import (  # noqa: F401
    RecognitionSession,
    SessionState,
    TranscriptionPipeline,
)

__all__ = [
    "RecognitionSession",
    "SessionState",
    "TranscriptionPipeline",
]
