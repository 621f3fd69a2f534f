"""
audiotext/errors.py
====================
Error Taxonomy — audiotext

Responsibility:
    - Define every error the transcription core can surface
    - Tag each error with the pipeline stage that raised it so callers
      (HTTP layer, operators) can tell WHERE a request failed

Stages:
    model      → ModelRegistry (lookup, startup load, remote transfer)
    stage      → TempResourceManager (raw audio persisted to disk)
    normalize  → AudioNormalizer / Transcoder
    decode     → RecognitionEngine

This module does NOT:
    - Log anything
    - Map errors to HTTP status codes (handled by audiotext.api.upload)
"""

STAGE_MODEL = "model"
STAGE_STAGING = "stage"
STAGE_NORMALIZE = "normalize"
STAGE_DECODE = "decode"


# =====================================================================
# Base error
# =====================================================================


class TranscriptionError(Exception):
    """Base class for all stage-tagged transcription failures."""

    default_stage = "unknown"

    def __init__(self, message: str, stage: str | None = None):
        self.stage = stage or self.default_stage
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


# =====================================================================
# Model registry
# =====================================================================


class UnsupportedLanguageError(TranscriptionError):
    """Raised when no Model is configured for the requested language."""

    default_stage = STAGE_MODEL

    def __init__(self, language: str, message: str | None = None):
        self.language = language
        super().__init__(message or f"Unsupported language: {language!r}")


class ModelUnavailableError(UnsupportedLanguageError):
    """Raised for a configured language whose model failed to load."""

    def __init__(self, language: str, reason: str):
        self.reason = reason
        super().__init__(
            language,
            f"Model for language {language!r} is unavailable: {reason}",
        )


class RegistryNotInitializedError(TranscriptionError):
    """Raised when the registry is queried before startup loading ran."""

    default_stage = STAGE_MODEL


class ModelLoadError(TranscriptionError):
    """Raised when a language's model cannot be constructed."""

    default_stage = STAGE_MODEL

    def __init__(self, language: str, message: str):
        self.language = language
        super().__init__(f"Failed to load model for {language!r}: {message}")


class EmptyModelSourceError(TranscriptionError):
    """Raised when a remote model prefix lists zero objects."""

    default_stage = STAGE_MODEL

    def __init__(self, prefix: str):
        self.prefix = prefix
        super().__init__(f"No model artifacts found under prefix {prefix!r}")


class ModelTransferError(TranscriptionError, OSError):
    """Raised when copying a remote model artifact to local disk fails."""

    default_stage = STAGE_MODEL


# =====================================================================
# Temp files
# =====================================================================


class TempResourceError(TranscriptionError, OSError):
    """Raised on temp-file creation, write, or use-after-release."""

    default_stage = STAGE_STAGING


# =====================================================================
# Normalization
# =====================================================================


class TranscodeError(TranscriptionError):
    """Raised when the external transcoder fails.

    ``diagnostics`` holds the process's captured error output verbatim.
    ``exit_status`` is None when the process never produced one (binary
    missing, timeout). Only a non-None ``exit_status`` means the transcoder
    rejected the input itself; ``timed_out`` marks an expired timeout.
    """

    default_stage = STAGE_NORMALIZE

    def __init__(
        self,
        message: str,
        diagnostics: str = "",
        exit_status: int | None = None,
        timed_out: bool = False,
    ):
        self.diagnostics = diagnostics
        self.exit_status = exit_status
        self.timed_out = timed_out
        full = f"{message}: {diagnostics.strip()}" if diagnostics.strip() else message
        super().__init__(full)


# =====================================================================
# Recognition
# =====================================================================


class RecognitionError(TranscriptionError):
    """Raised when the decoder fails while streaming or finalizing."""

    default_stage = STAGE_DECODE


class SessionCancelledError(TranscriptionError):
    """Raised when a session is aborted by its owner."""
