"""
tests/test_engine.py
=====================
Recognition Engine Tests — audiotext Stage 3

Tests verify:
    1. One decoder per call, created at 16 kHz, closed on every path
    2. Partial hypotheses are discarded; only the final result is returned
    3. Chunk-size invariance and determinism across sessions
    4. Decoder failures surface as RecognitionError
    5. Cancellation stops decoding between chunks
    6. TranscriptResult passes payloads through losslessly

All tests are OFFLINE — the decoder is a deterministic fake.
"""

import hashlib
import json
import os
import sys
import unittest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from audiotext.errors import STAGE_DECODE, RecognitionError, SessionCancelledError
from audiotext.stt.engine import RecognitionEngine, TranscriptResult


# ===================================================================
# Test fixtures
# ===================================================================


class FakeDecoder:
    """Deterministic decoder: the transcript depends only on the byte stream.

    Signals a partial hypothesis every 3000 bytes. Silence (all-zero PCM)
    decodes to an empty transcript.
    """

    instances = []

    def __init__(self, model, sample_rate, words=False, fail_on_chunk=None, fail_on_final=False):
        self.model = model
        self.sample_rate = sample_rate
        self.words = words
        self.buffer = bytearray()
        self.chunks = 0
        self.closed = False
        self.fail_on_chunk = fail_on_chunk
        self.fail_on_final = fail_on_final
        self._since_partial = 0
        FakeDecoder.instances.append(self)

    def accept_waveform(self, data):
        self.chunks += 1
        if self.fail_on_chunk is not None and self.chunks == self.fail_on_chunk:
            raise RuntimeError("decoder exploded")
        self.buffer.extend(data)
        self._since_partial += len(data)
        if self._since_partial >= 3000:
            self._since_partial = 0
            return True
        return False

    def final_result(self):
        if self.fail_on_final:
            raise RuntimeError("finalize failed")
        if not any(self.buffer):
            text = ""
        else:
            text = f"{self.model}:{hashlib.sha1(bytes(self.buffer)).hexdigest()[:12]}"
        return json.dumps({"text": text})

    def close(self):
        self.closed = True


def split_chunks(pcm, chunk_bytes):
    """Ordered, frame-aligned chunks of a PCM byte string."""
    step = max(2, chunk_bytes - chunk_bytes % 2)
    for start in range(0, len(pcm), step):
        yield pcm[start:start + step]


def _factory(**options):
    def factory(model, sample_rate, words=False):
        return FakeDecoder(model, sample_rate, words=words, **options)
    return factory


SPEECH_PCM = bytes((i * 37) % 256 for i in range(20000))


class EngineTestCase(unittest.TestCase):

    def setUp(self):
        FakeDecoder.instances = []


# ===================================================================
# Decoding
# ===================================================================


class TestDecode(EngineTestCase):

    def test_single_decoder_at_model_rate(self):
        engine = RecognitionEngine(decoder_factory=_factory())
        engine.decode(split_chunks(SPEECH_PCM, 4096), "model-en")
        self.assertEqual(len(FakeDecoder.instances), 1)
        decoder = FakeDecoder.instances[0]
        self.assertEqual(decoder.sample_rate, 16000)
        self.assertEqual(decoder.model, "model-en")
        self.assertTrue(decoder.closed)

    def test_bytes_fed_in_order(self):
        engine = RecognitionEngine(decoder_factory=_factory())
        engine.decode(split_chunks(SPEECH_PCM, 1000), "m")
        self.assertEqual(bytes(FakeDecoder.instances[0].buffer), SPEECH_PCM)

    def test_partials_discarded(self):
        engine = RecognitionEngine(decoder_factory=_factory())
        result = engine.decode(split_chunks(SPEECH_PCM, 4096), "m")
        payload = json.loads(result.raw)
        self.assertEqual(list(payload), ["text"])
        self.assertTrue(payload["text"].startswith("m:"))

    def test_chunk_size_invariance(self):
        engine = RecognitionEngine(decoder_factory=_factory())
        results = {
            size: engine.decode(split_chunks(SPEECH_PCM, size), "m").raw
            for size in (2, 512, 4096, 8000, len(SPEECH_PCM))
        }
        self.assertEqual(len(set(results.values())), 1)

    def test_deterministic_across_sessions(self):
        engine = RecognitionEngine(decoder_factory=_factory())
        first = engine.decode(split_chunks(SPEECH_PCM, 4096), "m")
        second = engine.decode(split_chunks(SPEECH_PCM, 4096), "m")
        self.assertEqual(first, second)
        self.assertIsNot(FakeDecoder.instances[0], FakeDecoder.instances[1])

    def test_silence_decodes_to_empty_text(self):
        engine = RecognitionEngine(decoder_factory=_factory())
        silence = bytes(16000 * 2 * 3)  # 3 s of 16 kHz mono s16le
        result = engine.decode(split_chunks(silence, 4096), "m")
        self.assertEqual(result.text, "")

    def test_empty_chunks_skipped(self):
        engine = RecognitionEngine(decoder_factory=_factory())
        engine.decode([b"", b"\x01\x00", b""], "m")
        self.assertEqual(FakeDecoder.instances[0].chunks, 1)

    def test_words_option_passed_to_decoder(self):
        engine = RecognitionEngine(decoder_factory=_factory(), words=True)
        engine.decode([b"\x01\x00"], "m")
        self.assertTrue(FakeDecoder.instances[0].words)

    def test_rejects_tiny_chunk_size(self):
        with self.assertRaises(ValueError):
            RecognitionEngine(decoder_factory=_factory(), chunk_bytes=1)


# ===================================================================
# Failure paths
# ===================================================================


class TestDecodeFailures(EngineTestCase):

    def test_feed_failure_closes_decoder(self):
        engine = RecognitionEngine(decoder_factory=_factory(fail_on_chunk=2))
        with self.assertRaises(RecognitionError) as ctx:
            engine.decode(split_chunks(SPEECH_PCM, 4096), "m")
        self.assertEqual(ctx.exception.stage, STAGE_DECODE)
        self.assertIn("decoder exploded", ctx.exception.message)
        self.assertTrue(FakeDecoder.instances[0].closed)

    def test_finalize_failure_closes_decoder(self):
        engine = RecognitionEngine(decoder_factory=_factory(fail_on_final=True))
        with self.assertRaises(RecognitionError):
            engine.decode(split_chunks(SPEECH_PCM, 4096), "m")
        self.assertTrue(FakeDecoder.instances[0].closed)

    def test_decoder_creation_failure(self):
        def factory(model, sample_rate, words=False):
            raise RuntimeError("bad model handle")

        with self.assertRaises(RecognitionError) as ctx:
            RecognitionEngine(decoder_factory=factory).decode([b"\x00\x00"], "m")
        self.assertIn("bad model handle", ctx.exception.message)

    def test_chunk_source_failure(self):
        def chunks():
            yield b"\x01\x00"
            raise OSError("read failed")

        with self.assertRaises(RecognitionError):
            RecognitionEngine(decoder_factory=_factory()).decode(chunks(), "m")
        self.assertTrue(FakeDecoder.instances[0].closed)

    def test_cancellation_between_chunks(self):
        fed = []

        def cancelled():
            return len(fed) >= 2

        def chunks():
            for chunk in split_chunks(SPEECH_PCM, 1000):
                fed.append(chunk)
                yield chunk

        with self.assertRaises(SessionCancelledError) as ctx:
            RecognitionEngine(decoder_factory=_factory()).decode(chunks(), "m", cancelled)
        self.assertEqual(ctx.exception.stage, STAGE_DECODE)
        self.assertTrue(FakeDecoder.instances[0].closed)
        self.assertLess(FakeDecoder.instances[0].chunks, 3)


# ===================================================================
# TranscriptResult
# ===================================================================


class TestTranscriptResult(unittest.TestCase):

    def test_json_payload_text(self):
        raw = '{\n  "text" : "ola mundo"\n}'
        result = TranscriptResult(raw)
        self.assertEqual(result.text, "ola mundo")
        self.assertEqual(result.raw, raw)

    def test_structured_payload_kept_verbatim(self):
        raw = json.dumps({"result": [{"word": "hi", "conf": 1.0}], "text": "hi"})
        self.assertEqual(TranscriptResult(raw).raw, raw)

    def test_plain_text_payload(self):
        self.assertEqual(TranscriptResult("just words").text, "just words")


if __name__ == "__main__":
    unittest.main()
