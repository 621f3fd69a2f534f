"""
tests/test_api.py
==================
API Tests — audiotext POST /speech/recognize

Tests verify:
    1. Transcript payload is returned verbatim
    2. Missing/empty file and blank language are rejected with 400
    3. Stage-tagged errors map to 422 / 500 / 503 / 504 with {detail, stage};
       only a transcoder exit status counts as rejected input
    4. Filename extension is forwarded as the format hint
    5. /health reports loaded and unavailable languages
    6. Startup releases the registry if wiring the pipeline fails

All tests are OFFLINE — the pipeline is a fake injected into create_app().
"""

import json
import os
import subprocess
import sys
import unittest
from unittest.mock import MagicMock, patch

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fastapi.testclient import TestClient

from audiotext.api.upload import create_app
from audiotext.audio.transcoder import CommandResult, Transcoder
from audiotext.errors import (
    ModelUnavailableError,
    RecognitionError,
    TranscodeError,
    UnsupportedLanguageError,
)
from audiotext.stt.engine import TranscriptResult


# ===================================================================
# Test fixtures
# ===================================================================


class FakeRegistry:
    loaded_languages = ("en", "pt-br")
    unavailable = {"es": "Failed to load model for 'es': missing directory"}


class FakePipeline:
    """Records calls; returns ``result`` or raises ``error``."""

    def __init__(self, result=None, error=None):
        self.registry = FakeRegistry()
        self.result = result or TranscriptResult(json.dumps({"text": "ola mundo"}))
        self.error = error
        self.calls = []

    def transcribe(self, stream, language, extension_hint=None):
        self.calls.append((stream.read(), language, extension_hint))
        if self.error is not None:
            raise self.error
        return self.result


def _client(pipeline):
    return TestClient(create_app(pipeline=pipeline))


def _upload(name="note.ogg", content=b"OggS fake audio"):
    return {"file": (name, content, "application/octet-stream")}


# ===================================================================
# Successful requests
# ===================================================================


class TestRecognize(unittest.TestCase):

    def test_returns_payload_verbatim(self):
        raw = '{\n  "text" : "ola mundo"\n}'
        pipeline = FakePipeline(result=TranscriptResult(raw))
        with _client(pipeline) as client:
            response = client.post("/speech/recognize", files=_upload(), data={"language": "pt-br"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, raw)
        self.assertEqual(response.headers["content-type"], "application/json")
        self.assertEqual(pipeline.calls, [(b"OggS fake audio", "pt-br", ".ogg")])

    def test_language_from_query_string(self):
        pipeline = FakePipeline()
        with _client(pipeline) as client:
            response = client.post("/speech/recognize?language=en", files=_upload())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(pipeline.calls[0][1], "en")

    def test_filename_without_extension(self):
        pipeline = FakePipeline()
        with _client(pipeline) as client:
            client.post("/speech/recognize", files=_upload(name="recording"), data={"language": "en"})
        self.assertIsNone(pipeline.calls[0][2])

    def test_plain_text_payload(self):
        pipeline = FakePipeline(result=TranscriptResult("not json"))
        with _client(pipeline) as client:
            response = client.post("/speech/recognize", files=_upload(), data={"language": "en"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/plain"))
        self.assertEqual(response.text, "not json")


# ===================================================================
# Rejected requests
# ===================================================================


class TestBadRequests(unittest.TestCase):

    def test_empty_file(self):
        pipeline = FakePipeline()
        with _client(pipeline) as client:
            response = client.post(
                "/speech/recognize", files=_upload(content=b""), data={"language": "en"}
            )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(pipeline.calls, [])

    def test_missing_file(self):
        pipeline = FakePipeline()
        with _client(pipeline) as client:
            response = client.post("/speech/recognize", data={"language": "en"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(pipeline.calls, [])

    def test_blank_language(self):
        pipeline = FakePipeline()
        with _client(pipeline) as client:
            response = client.post("/speech/recognize", files=_upload(), data={"language": "   "})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Audio file and language are required.")
        self.assertEqual(pipeline.calls, [])


# ===================================================================
# Error mapping
# ===================================================================


class TestErrorMapping(unittest.TestCase):

    def _post(self, error):
        with _client(FakePipeline(error=error)) as client:
            return client.post("/speech/recognize", files=_upload(), data={"language": "xx"})

    def _transcoder_error(self, runner):
        try:
            Transcoder(runner=runner).transcode("in.bin", "out.wav")
        except TranscodeError as exc:
            return exc
        self.fail("transcode did not raise")

    def test_unsupported_language_is_422(self):
        response = self._post(UnsupportedLanguageError("xx"))
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json(), {"detail": "Unsupported language: 'xx'", "stage": "model"})

    def test_rejected_input_is_422(self):
        def runner(args, timeout=None):
            return CommandResult(1, "", "in.bin: Invalid data found when processing input")

        response = self._post(self._transcoder_error(runner))
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["stage"], "normalize")
        self.assertIn("Invalid data", response.json()["detail"])

    def test_missing_transcoder_binary_is_500(self):
        def runner(args, timeout=None):
            raise FileNotFoundError(args[0])

        response = self._post(self._transcoder_error(runner))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["stage"], "normalize")
        self.assertIn("not found", response.json()["detail"])

    def test_transcoder_timeout_is_504(self):
        def runner(args, timeout=None):
            raise subprocess.TimeoutExpired(args, timeout)

        response = self._post(self._transcoder_error(runner))
        self.assertEqual(response.status_code, 504)
        self.assertEqual(response.json()["stage"], "normalize")

    def test_non_canonical_output_is_500(self):
        response = self._post(TranscodeError("Transcoder produced non-canonical audio"))
        self.assertEqual(response.status_code, 500)

    def test_unavailable_model_is_503(self):
        response = self._post(ModelUnavailableError("xx", "download failed"))
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["stage"], "model")

    def test_recognition_failure_is_500(self):
        response = self._post(RecognitionError("decoder exploded"))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"detail": "decoder exploded", "stage": "decode"})


# ===================================================================
# Health
# ===================================================================


class TestHealth(unittest.TestCase):

    def test_health_lists_languages(self):
        with _client(FakePipeline()) as client:
            response = client.get("/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["languages"], ["en", "pt-br"])
        self.assertIn("es", body["unavailable"])


# ===================================================================
# Startup / shutdown
# ===================================================================


class TestLifespan(unittest.TestCase):

    def test_registry_closed_when_pipeline_wiring_fails(self):
        registry = MagicMock()
        with patch("audiotext.api.upload.get_settings"), \
                patch("audiotext.api.upload.ModelRegistry") as registry_cls, \
                patch(
                    "audiotext.api.upload.TranscriptionPipeline.from_settings",
                    side_effect=ValueError("max_concurrent must be at least 1"),
                ):
            registry_cls.from_settings.return_value = registry
            with self.assertRaises(ValueError):
                with TestClient(create_app()):
                    pass

        registry.initialize.assert_called_once()
        registry.close.assert_called_once()

    def test_registry_closed_on_shutdown(self):
        registry = MagicMock()
        with patch("audiotext.api.upload.get_settings"), \
                patch("audiotext.api.upload.ModelRegistry") as registry_cls, \
                patch("audiotext.api.upload.TranscriptionPipeline.from_settings") as from_settings:
            registry_cls.from_settings.return_value = registry
            from_settings.return_value.registry = FakeRegistry()
            with TestClient(create_app()) as client:
                self.assertEqual(client.get("/health").status_code, 200)
                registry.close.assert_not_called()

        registry.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
