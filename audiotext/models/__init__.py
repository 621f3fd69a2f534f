# audiotext/models/__init__.py
# =============================
# Model Layer — audiotext
#
# Responsibility:
#   - One shared, read-only model per configured language (registry.py)
#   - Remote model prefixes materialized from object storage (object_store.py)

from audiotext.models.object_store import GCSObjectStore, ObjectStore  # noqa: F401
from audiotext.models.registry import LoadedModel, ModelRegistry  # noqa: F401

__all__ = [
    "GCSObjectStore",
    "ObjectStore",
    "LoadedModel",
    "ModelRegistry",
]
