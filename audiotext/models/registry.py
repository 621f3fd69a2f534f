"""
audiotext/models/registry.py
=============================
Model Registry — audiotext

Responsibility:
    - Load exactly one decoding model per configured language, once per
      process, from a local directory or a remote object-store prefix
    - Serve the shared, read-only model for a language code
    - Release every model (and every remote staging directory) at shutdown

Lifecycle:
    initialize()  → startup barrier; populates the language → model map
                    under a lock, then freezes it (read-only afterwards)
    get(code)     → lock-free read of the frozen map
    close()       → deterministic release of everything initialize() built

Load-failure policy (MODEL_LOAD_POLICY):
    fail_fast  → any single language failing aborts initialization (default)
    degrade    → the failing language is marked unavailable, others serve

This module does NOT:
    - Create decoders (handled by audiotext.stt.engine)
    - Retry failed loads
"""

import logging
import shutil
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping

from audiotext.config import (
    POLICY_DEGRADE,
    POLICY_FAIL_FAST,
    ModelSource,
    Settings,
    language_env_key,
    normalize_language,
)
from audiotext.errors import (
    ModelLoadError,
    ModelTransferError,
    ModelUnavailableError,
    RegistryNotInitializedError,
    TranscriptionError,
    UnsupportedLanguageError,
)
from audiotext.models.object_store import GCSObjectStore, ObjectStore, download_prefix

logger = logging.getLogger("audiotext.models.registry")


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoadedModel:
    """A constructed model plus where it came from."""

    language: str
    model: Any
    source: ModelSource
    model_dir: Path
    staging_dir: Path | None = None


# ---------------------------------------------------------------------------
# Default model backend (Vosk)
# ---------------------------------------------------------------------------


def load_vosk_model(model_dir: Path) -> Any:
    """Construct a Vosk model from a directory."""
    try:
        from vosk import Model, SetLogLevel
    except ImportError as exc:
        raise RuntimeError(
            "vosk is required for offline recognition. Install with: pip install vosk"
        ) from exc

    SetLogLevel(-1)
    return Model(str(model_dir))


def _release_model(model: Any) -> None:
    """Free a model's native resources if it exposes close()."""
    close = getattr(model, "close", None)
    if callable(close):
        close()


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ModelRegistry:
    """Process-wide, immutable-after-init cache of one model per language."""

    def __init__(
        self,
        sources: Mapping[str, ModelSource],
        *,
        object_store: ObjectStore | None = None,
        model_loader: Callable[[Path], Any] = load_vosk_model,
        staging_root: str | Path | None = None,
        policy: str = POLICY_FAIL_FAST,
    ):
        if policy not in (POLICY_FAIL_FAST, POLICY_DEGRADE):
            raise ValueError(f"Unknown model load policy: {policy!r}")

        self._sources = {normalize_language(code): src for code, src in sources.items()}
        self._object_store = object_store
        self._model_loader = model_loader
        self._staging_root = str(staging_root) if staging_root is not None else None
        self.policy = policy

        self._init_lock = threading.Lock()
        self._initialized = False
        self._models: Mapping[str, LoadedModel] = MappingProxyType({})
        self._unavailable: Mapping[str, str] = MappingProxyType({})

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        object_store: ObjectStore | None = None,
        model_loader: Callable[[Path], Any] = load_vosk_model,
    ) -> "ModelRegistry":
        """Build a registry from Settings, wiring a GCS store when needed."""
        needs_remote = any(src.is_remote for src in settings.model_sources.values())
        if needs_remote and object_store is None:
            if not settings.model_bucket:
                raise ValueError("MODEL_BUCKET is required when a MODEL_PREFIX_* is set.")
            object_store = GCSObjectStore(settings.model_bucket)

        return cls(
            settings.model_sources,
            object_store=object_store,
            model_loader=model_loader,
            staging_root=settings.model_staging_dir,
            policy=settings.model_load_policy,
        )

    def __enter__(self) -> "ModelRegistry":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Load every configured language. Idempotent.

        Raises:
            TranscriptionError: Under the fail_fast policy, the first
                                language failure (EmptyModelSourceError,
                                ModelTransferError, ModelLoadError). Models
                                already loaded in this call are released.
        """
        with self._init_lock:
            if self._initialized:
                return

            loaded: dict[str, LoadedModel] = {}
            unavailable: dict[str, str] = {}

            for language, source in self._sources.items():
                try:
                    loaded[language] = self._load(language, source)
                except TranscriptionError as exc:
                    if self.policy == POLICY_FAIL_FAST:
                        logger.error("Model load failed for %s, aborting startup: %s", language, exc)
                        for entry in loaded.values():
                            self._release(entry)
                        raise
                    logger.error("Model load failed for %s, marking unavailable: %s", language, exc)
                    unavailable[language] = exc.message

            self._models = MappingProxyType(loaded)
            self._unavailable = MappingProxyType(unavailable)
            self._initialized = True

        logger.info(
            "Model registry ready: %d loaded (%s), %d unavailable.",
            len(loaded), ", ".join(sorted(loaded)) or "-", len(unavailable),
        )

    def close(self) -> None:
        """Release every loaded model and its staging directory."""
        with self._init_lock:
            models = self._models
            self._models = MappingProxyType({})
            self._unavailable = MappingProxyType({})
            self._initialized = False

        for language in sorted(models):
            self._release(models[language])
        if models:
            logger.info("Model registry closed: released %d model(s).", len(models))

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, language: str) -> Any:
        """
        Shared model for ``language`` (case-insensitive).

        Raises:
            RegistryNotInitializedError: Before initialize() / after close().
            ModelUnavailableError:       Configured but failed to load.
            UnsupportedLanguageError:    Not a configured language.
        """
        return self.entry(language).model

    def entry(self, language: str) -> LoadedModel:
        """Like :meth:`get` but returns the full LoadedModel record."""
        if not self._initialized:
            raise RegistryNotInitializedError("Model registry has not been initialized.")

        code = normalize_language(language)
        entry = self._models.get(code)
        if entry is not None:
            return entry
        if code in self._unavailable:
            raise ModelUnavailableError(code, self._unavailable[code])
        raise UnsupportedLanguageError(language)

    @property
    def languages(self) -> tuple[str, ...]:
        """Configured language codes, in configuration order."""
        return tuple(self._sources)

    @property
    def loaded_languages(self) -> tuple[str, ...]:
        return tuple(self._models)

    @property
    def unavailable(self) -> Mapping[str, str]:
        """Language code → failure reason (degrade policy only)."""
        return self._unavailable

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, language: str, source: ModelSource) -> LoadedModel:
        logger.info("Loading model for %s from %s", language, source.describe())

        if not source.is_remote:
            model_dir = Path(source.local_path)
            if not model_dir.is_dir():
                raise ModelLoadError(language, f"model directory {model_dir} does not exist")
            model = self._construct(language, model_dir)
            return LoadedModel(language, model, source, model_dir)

        if self._object_store is None:
            raise ModelLoadError(language, "remote prefix configured but no object store")

        try:
            staging_dir = Path(
                tempfile.mkdtemp(
                    prefix=f"audiotext_model_{language_env_key(language).lower()}_",
                    dir=self._staging_root,
                )
            )
        except OSError as exc:
            raise ModelTransferError(
                f"Could not create staging directory for {language!r}: {exc}"
            ) from exc

        try:
            download_prefix(self._object_store, source.remote_prefix, staging_dir)
            model = self._construct(language, staging_dir)
        except BaseException:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise
        return LoadedModel(language, model, source, staging_dir, staging_dir)

    def _construct(self, language: str, model_dir: Path) -> Any:
        try:
            return self._model_loader(model_dir)
        except Exception as exc:
            raise ModelLoadError(language, str(exc)) from exc

    def _release(self, entry: LoadedModel) -> None:
        try:
            _release_model(entry.model)
        except Exception as exc:
            logger.warning("Error releasing model for %s: %s", entry.language, exc)
        if entry.staging_dir is not None:
            shutil.rmtree(entry.staging_dir, ignore_errors=True)
            logger.info("Removed staging directory %s", entry.staging_dir)
