"""
audiotext/api/upload.py
========================
API Upload Endpoint — audiotext

Responsibility:
    - Expose POST /speech/recognize
    - Accept one audio file (any container ffmpeg understands) plus a
      language code via multipart/form-data
    - Reject requests missing the file or the language
    - Run the blocking transcription pipeline off the event loop
    - Return the transcript payload verbatim, or a stage-tagged error
    - Load every model at startup and release them at shutdown

Status codes:
    200 → transcript (decoder payload, unmodified)
    400 → missing or empty file / blank language
    422 → unsupported language, audio the transcoder rejected
    503 → configured language whose model failed to load
    504 → transcoder timed out
    500 → recognition, I/O or transcoder fault (e.g. missing binary)
"""

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from audiotext.config import get_settings
from audiotext.errors import (
    ModelUnavailableError,
    TranscodeError,
    TranscriptionError,
    UnsupportedLanguageError,
)
from audiotext.models.registry import ModelRegistry
from audiotext.pipeline import TranscriptionPipeline
from audiotext.stt.engine import TranscriptResult

logger = logging.getLogger("audiotext.api")


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _status_for(exc: TranscriptionError) -> int:
    if isinstance(exc, ModelUnavailableError):
        return 503
    if isinstance(exc, UnsupportedLanguageError):
        return 422
    if isinstance(exc, TranscodeError):
        # Only a transcoder exit status means the input itself was rejected
        if exc.exit_status is not None:
            return 422
        if exc.timed_out:
            return 504
    return 500


def _error_response(status_code: int, detail: str, stage: str | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "stage": stage})


def _transcript_response(result: TranscriptResult) -> Response:
    try:
        json.loads(result.raw)
    except ValueError:
        return Response(content=result.raw, media_type="text/plain")
    return Response(content=result.raw, media_type="application/json")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(pipeline: TranscriptionPipeline | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    With no ``pipeline`` the lifespan builds one from environment settings:
    all models load before the first request is served, and a load failure
    under the fail_fast policy aborts startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if pipeline is not None:
            app.state.pipeline = pipeline
            yield
            return

        settings = get_settings()
        registry = ModelRegistry.from_settings(settings)
        await asyncio.to_thread(registry.initialize)
        try:
            app.state.pipeline = TranscriptionPipeline.from_settings(settings, registry)
            yield
        finally:
            registry.close()

    app = FastAPI(
        title="audiotext",
        description="Offline, per-language audio transcription.",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health(request: Request):
        registry = request.app.state.pipeline.registry
        return {
            "status": "ok",
            "languages": list(registry.loaded_languages),
            "unavailable": dict(registry.unavailable),
        }

    @app.post("/speech/recognize")
    async def recognize_audio(
        request: Request,
        file: UploadFile | None = File(None),
        language: str | None = Form(None),
    ):
        """
        Transcribe an uploaded audio file.

        Args:
            file:     Uploaded audio; its filename extension is the format hint.
            language: Language code (form field, or ``?language=`` query).

        Returns:
            The decoder's final transcript payload.
        """
        language = (language or request.query_params.get("language") or "").strip()
        head = await file.read(1) if file is not None else b""
        if not head or not language:
            if file is not None:
                await file.close()
            return _error_response(400, "Audio file and language are required.")
        await file.seek(0)

        logger.info("Audio file received: %s (language=%s)", file.filename, language)
        extension = os.path.splitext(file.filename or "")[1] or None

        pipeline: TranscriptionPipeline = request.app.state.pipeline
        try:
            result = await asyncio.to_thread(
                pipeline.transcribe, file.file, language, extension
            )
        except TranscriptionError as exc:
            status_code = _status_for(exc)
            if status_code >= 500:
                logger.error("Transcription failed: %s", exc)
            return _error_response(status_code, exc.message, exc.stage)
        finally:
            await file.close()

        return _transcript_response(result)

    return app


app = create_app()
