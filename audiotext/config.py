"""
audiotext/config.py
====================
Configuration — audiotext

Responsibility:
    - Load environment variables (and the project .env file) once
    - Expose a frozen Settings object describing models, transcoder,
      decoder and temp-file knobs
    - Resolve the per-language model source (local path or remote prefix)

Per-language variables use the upper-cased code with "-" replaced by "_":
    MODEL_PATH_PT_BR=/models/vosk-model-small-pt-0.3
    MODEL_PREFIX_EN=models/vosk-model-small-en-us-0.15/

This module does NOT:
    - Load models or touch the object store
    - Configure logging handlers (handled by main.py)
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(PROJECT_ROOT / ".env", override=False)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_LANGUAGES = "pt-br,en"
POLICY_FAIL_FAST = "fail_fast"
POLICY_DEGRADE = "degrade"
_VALID_POLICIES = {POLICY_FAIL_FAST, POLICY_DEGRADE}


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelSource:
    """Where a language's model comes from.

    Exactly one of ``local_path`` / ``remote_prefix`` is used; a local
    path wins when both are configured.
    """

    language: str
    local_path: Path | None = None
    remote_prefix: str | None = None

    @property
    def is_remote(self) -> bool:
        return self.local_path is None and self.remote_prefix is not None

    def describe(self) -> str:
        if self.local_path is not None:
            return f"local:{self.local_path}"
        return f"remote:{self.remote_prefix}"


@dataclass(frozen=True)
class Settings:
    """Environment-driven configuration for the transcription core."""

    languages: tuple[str, ...] = ("pt-br", "en")
    model_sources: dict[str, ModelSource] = field(default_factory=dict)
    model_bucket: str | None = None
    model_staging_dir: Path | None = None
    model_load_policy: str = POLICY_FAIL_FAST

    ffmpeg_binary: str = "ffmpeg"
    transcode_timeout: float | None = 300.0
    max_concurrent_transcodes: int = 4

    decode_chunk_bytes: int = 4096
    recognizer_words: bool = False

    temp_dir: Path | None = None
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_language(code: str) -> str:
    """Canonical form of a language code: trimmed and lower-cased."""
    return (code or "").strip().lower()


def language_env_key(language: str) -> str:
    """Environment-variable suffix for a language code ("pt-br" → "PT_BR")."""
    return normalize_language(language).replace("-", "_").upper()


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``).

    Returns:
        A frozen Settings instance.

    Raises:
        ValueError: On malformed numeric values, an unknown load policy,
                    or a language with neither a local path nor a prefix.
    """
    env = os.environ if environ is None else environ

    languages = tuple(
        normalize_language(code)
        for code in env.get("SUPPORTED_LANGUAGES", DEFAULT_LANGUAGES).split(",")
        if code.strip()
    )
    if not languages:
        raise ValueError("SUPPORTED_LANGUAGES is empty.")

    sources: dict[str, ModelSource] = {}
    for language in languages:
        key = language_env_key(language)
        local = env.get(f"MODEL_PATH_{key}", "").strip()
        prefix = env.get(f"MODEL_PREFIX_{key}", "").strip()
        if not local and not prefix:
            raise ValueError(
                f"No model source configured for {language!r}: "
                f"set MODEL_PATH_{key} or MODEL_PREFIX_{key}."
            )
        sources[language] = ModelSource(
            language=language,
            local_path=Path(local).expanduser() if local else None,
            remote_prefix=prefix or None,
        )

    policy = env.get("MODEL_LOAD_POLICY", POLICY_FAIL_FAST).strip().lower()
    if policy not in _VALID_POLICIES:
        raise ValueError(
            f"MODEL_LOAD_POLICY must be one of {sorted(_VALID_POLICIES)}, got {policy!r}."
        )

    timeout = float(env.get("TRANSCODE_TIMEOUT_SECONDS", "300"))
    max_transcodes = int(env.get("MAX_CONCURRENT_TRANSCODES", "4"))
    if max_transcodes < 1:
        raise ValueError("MAX_CONCURRENT_TRANSCODES must be at least 1.")
    chunk_bytes = int(env.get("DECODE_CHUNK_BYTES", "4096"))
    if chunk_bytes < 2:
        raise ValueError("DECODE_CHUNK_BYTES must be at least 2.")

    staging = env.get("MODEL_STAGING_DIR", "").strip()
    temp_dir = env.get("TEMP_DIR", "").strip()

    return Settings(
        languages=languages,
        model_sources=sources,
        model_bucket=env.get("MODEL_BUCKET", "").strip() or None,
        model_staging_dir=Path(staging) if staging else None,
        model_load_policy=policy,
        ffmpeg_binary=env.get("FFMPEG_BINARY", "ffmpeg").strip() or "ffmpeg",
        transcode_timeout=timeout if timeout > 0 else None,
        max_concurrent_transcodes=max_transcodes,
        decode_chunk_bytes=chunk_bytes,
        recognizer_words=env.get("RECOGNIZER_WORDS", "false").strip().lower()
        in ("true", "1", "yes"),
        temp_dir=Path(temp_dir) if temp_dir else None,
        log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance read from the process environment."""
    return load_settings()
