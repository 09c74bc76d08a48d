"""SQLAlchemy models package."""

from app.models.signature_cache import SignatureCacheEntry

__all__ = [
    "SignatureCacheEntry",
]
