# audiotext/audio/__init__.py
# ============================
# Audio Layer — audiotext
#
# Responsibility:
#   - Temp files that carry audio between stages (temp_files.py)
#   - External transcoder invocation with timeout + process cap (transcoder.py)
#   - Normalization to 16 kHz mono 16-bit PCM (normalizer.py)

from audiotext.audio.normalizer import AudioNormalizer, NormalizedAudio  # noqa: F401
from audiotext.audio.temp_files import TempHandle, TempResourceManager  # noqa: F401
from audiotext.audio.transcoder import CommandResult, Transcoder  # noqa: F401

__all__ = [
    "AudioNormalizer",
    "NormalizedAudio",
    "TempHandle",
    "TempResourceManager",
    "CommandResult",
    "Transcoder",
]
