# audiotext/stt/__init__.py
# ==========================
# Speech-to-Text Layer — audiotext
#
# Public API:
#   RecognitionEngine.recognize(normalized_audio, model) → TranscriptResult

from audiotext.stt.engine import RecognitionEngine, TranscriptResult  # noqa: F401

__all__ = [
    "RecognitionEngine",
    "TranscriptResult",
]
