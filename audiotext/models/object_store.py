"""
audiotext/models/object_store.py
=================================
Remote Model Storage — audiotext

Responsibility:
    - Define the object-store contract the registry consumes:
        list_keys(prefix) → object keys
        get_bytes(key)    → raw object bytes
    - Provide a Google Cloud Storage implementation of that contract
    - Materialize a whole prefix into a local directory, byte for byte

A prefix is only usable once EVERY object under it has been copied; any
failure aborts the materialization.

This module does NOT:
    - Construct models (handled by registry.py)
    - Upload, delete or sign objects
"""

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Protocol

from audiotext.errors import EmptyModelSourceError, ModelTransferError

logger = logging.getLogger("audiotext.models.object_store")


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class ObjectStore(Protocol):
    """List-by-prefix / get-by-key view of a bucket."""

    def list_keys(self, prefix: str) -> list[str]:
        ...

    def get_bytes(self, key: str) -> bytes:
        ...


# ---------------------------------------------------------------------------
# Google Cloud Storage
# ---------------------------------------------------------------------------


class GCSObjectStore:
    """ObjectStore backed by a Google Cloud Storage bucket."""

    def __init__(self, bucket_name: str, client=None):
        if client is None:
            try:
                from google.cloud import storage
            except ImportError as exc:
                raise RuntimeError(
                    "google-cloud-storage is required for remote models. "
                    "Install with: pip install google-cloud-storage"
                ) from exc
            client = storage.Client()

        self.bucket_name = bucket_name
        self._client = client
        self._bucket = client.bucket(bucket_name)

    def list_keys(self, prefix: str) -> list[str]:
        return [blob.name for blob in self._client.list_blobs(self.bucket_name, prefix=prefix)]

    def get_bytes(self, key: str) -> bytes:
        return self._bucket.blob(key).download_as_bytes()


# ---------------------------------------------------------------------------
# Materialization
# ---------------------------------------------------------------------------


def _relative_path(key: str, prefix: str) -> PurePosixPath | None:
    """
    Key with ``prefix`` stripped, as a safe relative path.

    Returns None for directory-marker keys. Raises ModelTransferError for
    keys that would land outside the destination directory.
    """
    relative = key[len(prefix):] if key.startswith(prefix) else key
    relative = relative.lstrip("/")
    if not relative or relative.endswith("/"):
        return None

    path = PurePosixPath(relative)
    if path.is_absolute() or ".." in path.parts:
        raise ModelTransferError(f"Refusing unsafe object key {key!r}")
    return path


def download_prefix(store: ObjectStore, prefix: str, destination: str | Path) -> int:
    """
    Copy every object under ``prefix`` into ``destination``.

    The prefix is stripped from each key and the remaining directory
    structure is recreated locally.

    Args:
        store:       Object store to read from.
        prefix:      Key prefix identifying one model.
        destination: Existing local directory to populate.

    Returns:
        Number of files written.

    Raises:
        EmptyModelSourceError: If the prefix lists no objects.
        ModelTransferError:    On any listing, transfer or write failure.
    """
    try:
        keys = store.list_keys(prefix)
    except Exception as exc:
        raise ModelTransferError(f"Listing prefix {prefix!r} failed: {exc}") from exc

    if not keys:
        raise EmptyModelSourceError(prefix)

    destination = Path(destination)
    written = 0
    for key in keys:
        relative = _relative_path(key, prefix)
        if relative is None:
            continue

        target = destination.joinpath(*relative.parts)
        try:
            data = store.get_bytes(key)
        except Exception as exc:
            raise ModelTransferError(f"Download of {key!r} failed: {exc}") from exc

        try:
            os.makedirs(target.parent, exist_ok=True)
            with open(target, "wb") as out:
                out.write(data)
        except OSError as exc:
            raise ModelTransferError(f"Writing {target} failed: {exc}") from exc

        written += 1
        logger.debug("Fetched %s → %s (%d bytes)", key, target, len(data))

    if written == 0:
        raise EmptyModelSourceError(prefix)

    logger.info("Materialized %d file(s) from prefix %r into %s", written, prefix, destination)
    return written
