"""Item sources and shared exports."""

from .base import (
    ItemSource,
    NotFoundError,
    RateLimitedError,
    SourceError,
    TransientError,
)

__all__ = [
    "ItemSource",
    "NotFoundError",
    "RateLimitedError",
    "SourceError",
    "TransientError",
]
