"""
audiotext/audio/temp_files.py
==============================
Temp Resource Manager — audiotext Stage 1

Responsibility:
    - Create uniquely named temp files used to hand audio between stages
    - Copy byte streams into them verbatim
    - Hand out absolute paths for the external transcoder
    - Delete them idempotently, and ALL of them when the owning session ends

One manager belongs to exactly one session. Use it as a context manager so
every handle is released on every exit path:

    with TempResourceManager() as temps:
        raw = temps.create(".mp3")
        temps.write(raw, stream)
        ...

This module does NOT:
    - Interpret audio content
    - Share handles between sessions
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from audiotext.errors import TempResourceError

logger = logging.getLogger("audiotext.audio.temp_files")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TEMP_PREFIX = "audiotext_"
COPY_BLOCK_SIZE = 64 * 1024


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TempHandle:
    """Opaque reference to a temp file owned by a TempResourceManager."""

    token: int
    suffix: str


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class TempResourceManager:
    """Creates, tracks and guarantees deletion of a session's temp files."""

    def __init__(self, directory: str | Path | None = None):
        self._directory = str(directory) if directory is not None else None
        self._paths: dict[int, str] = {}
        self._next_token = 0

    def __enter__(self) -> "TempResourceManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release_all()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create(self, suffix: str = "") -> TempHandle:
        """
        Create a new empty, uniquely named temp file.

        Args:
            suffix: File suffix including the dot (e.g. ".wav"), or "".

        Returns:
            A handle for the new file.

        Raises:
            TempResourceError: If the file cannot be created.
        """
        if self._directory is not None:
            os.makedirs(self._directory, exist_ok=True)
        try:
            fd, path = tempfile.mkstemp(
                prefix=TEMP_PREFIX, suffix=suffix, dir=self._directory
            )
        except OSError as exc:
            raise TempResourceError(f"Could not create temp file: {exc}") from exc
        os.close(fd)

        handle = TempHandle(token=self._next_token, suffix=suffix)
        self._next_token += 1
        self._paths[handle.token] = os.path.abspath(path)
        logger.debug("Temp file created: %s", path)
        return handle

    def write(self, handle: TempHandle, stream: BinaryIO | bytes) -> int:
        """
        Copy ``stream`` into the temp file verbatim, replacing its content.

        Args:
            handle: Handle returned by :meth:`create`.
            stream: Readable binary file object, or a bytes object.

        Returns:
            Number of bytes written.

        Raises:
            TempResourceError: On a released handle or any I/O failure.
        """
        path = self.path(handle)
        try:
            with open(path, "wb") as out:
                if isinstance(stream, (bytes, bytearray, memoryview)):
                    out.write(stream)
                else:
                    shutil.copyfileobj(stream, out, COPY_BLOCK_SIZE)
                written = out.tell()
        except OSError as exc:
            raise TempResourceError(f"Failed writing temp file {path}: {exc}") from exc
        logger.debug("Wrote %d bytes to %s", written, path)
        return written

    def path(self, handle: TempHandle) -> str:
        """Absolute path of a live handle.

        Raises:
            TempResourceError: If the handle was released or is foreign.
        """
        try:
            return self._paths[handle.token]
        except KeyError:
            raise TempResourceError(
                f"Temp handle {handle.token} is not live (released or foreign)."
            ) from None

    def release(self, handle: TempHandle) -> None:
        """Delete the file behind ``handle``. Safe to call more than once."""
        path = self._paths.pop(handle.token, None)
        if path is None:
            return
        try:
            os.remove(path)
            logger.debug("Temp file released: %s", path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not delete temp file %s: %s", path, exc)

    def release_all(self) -> None:
        """Release every handle this manager still tracks."""
        for token in list(self._paths):
            self.release(TempHandle(token=token, suffix=""))
