"""
audiotext/audio/transcoder.py
==============================
External Transcoder — audiotext Stage 2 support

Responsibility:
    - Run an external command synchronously and report
      {exit status, captured stdout, captured diagnostics}
    - Never leave the process running past completion (timeout → kill)
    - Cap the number of transcoder processes running at once
    - Build the deterministic ffmpeg argument list for canonical PCM

Canonical output: 16 kHz, mono, 16-bit signed little-endian PCM in WAV.

This module does NOT:
    - Create or delete temp files (handled by temp_files.py)
    - Verify the produced audio (handled by normalizer.py)
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass

from pydub.utils import which

from audiotext.errors import TranscodeError

logger = logging.getLogger("audiotext.audio.transcoder")

# ---------------------------------------------------------------------------
# Canonical output format
# ---------------------------------------------------------------------------

TARGET_SAMPLE_RATE = 16000  # Hz
TARGET_CHANNELS = 1         # mono
TARGET_CODEC = "pcm_s16le"  # 16-bit signed little-endian

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_CONCURRENT = 4


# ---------------------------------------------------------------------------
# Command abstraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandResult:
    """Outcome of an external command."""

    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


def run_command(args: list[str], timeout: float | None = None) -> CommandResult:
    """
    Run ``args`` and block until it exits.

    ``subprocess.run`` kills the child when the timeout expires, so the
    process never outlives this call.

    Raises:
        FileNotFoundError:          If the executable does not exist.
        subprocess.TimeoutExpired:  If ``timeout`` elapses first.
    """
    completed = subprocess.run(
        args,
        stdin=subprocess.DEVNULL,
        capture_output=True,
        timeout=timeout,
        check=False,
    )
    return CommandResult(
        exit_status=completed.returncode,
        stdout=completed.stdout.decode("utf-8", errors="replace"),
        stderr=completed.stderr.decode("utf-8", errors="replace"),
    )


# ---------------------------------------------------------------------------
# Transcoder
# ---------------------------------------------------------------------------


class Transcoder:
    """ffmpeg wrapper with an injectable timeout and a process cap.

    One instance is meant to be shared process-wide; its semaphore is what
    bounds transcoder fan-out under load.
    """

    def __init__(
        self,
        binary: str = "ffmpeg",
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        runner=run_command,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._binary = binary
        self.timeout = timeout
        self.max_concurrent = max_concurrent
        self._runner = runner
        self._slots = threading.BoundedSemaphore(max_concurrent)

    @property
    def executable(self) -> str:
        """Resolved path of the transcoder binary, or the configured name."""
        return which(self._binary) or self._binary

    def build_args(self, input_path: str, output_path: str) -> list[str]:
        """Deterministic argument list: overwrite, input, rate, channels, codec, output."""
        return [
            self.executable,
            "-nostdin",
            "-hide_banner",
            "-y",
            "-i", input_path,
            "-ar", str(TARGET_SAMPLE_RATE),
            "-ac", str(TARGET_CHANNELS),
            "-c:a", TARGET_CODEC,
            output_path,
        ]

    def transcode(self, input_path: str, output_path: str) -> CommandResult:
        """
        Convert ``input_path`` into canonical PCM WAV at ``output_path``.

        Blocks until a concurrency slot is free, then until the process exits.

        Returns:
            The successful CommandResult.

        Raises:
            TranscodeError: Non-zero exit (carries diagnostics), missing
                            binary, or timeout.
        """
        args = self.build_args(input_path, output_path)

        with self._slots:
            logger.info("Transcoding: %s", " ".join(args))
            started = time.monotonic()
            try:
                result = self._runner(args, timeout=self.timeout)
            except FileNotFoundError as exc:
                raise TranscodeError(
                    f"Transcoder binary not found: {self._binary!r}"
                ) from exc
            except subprocess.TimeoutExpired as exc:
                diagnostics = exc.stderr or b""
                if isinstance(diagnostics, bytes):
                    diagnostics = diagnostics.decode("utf-8", errors="replace")
                raise TranscodeError(
                    f"Transcoder timed out after {self.timeout}s",
                    diagnostics=diagnostics,
                    timed_out=True,
                ) from exc
            elapsed = time.monotonic() - started

        logger.info(
            "Transcoder exited with status %d in %.2fs.", result.exit_status, elapsed,
        )

        if not result.ok:
            logger.error("Transcoder failed (status %d): %s", result.exit_status, result.stderr.strip())
            raise TranscodeError(
                f"Audio conversion failed with exit status {result.exit_status}",
                diagnostics=result.stderr,
                exit_status=result.exit_status,
            )
        return result
