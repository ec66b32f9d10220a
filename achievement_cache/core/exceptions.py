"""Exception types raised by the cache store."""

from __future__ import annotations

__all__ = [
    "CacheError",
    "CacheNotInitializedError",
    "CachePersistenceError",
    "SchemaVerificationError",
]


class CacheError(Exception):
    """Base class for all cache store errors."""


class SchemaVerificationError(CacheError):
    """The on-disk schema does not match what this version requires.

    Raised after reconciliation when a required column or index is still
    missing, or a superseded index survived. The store must not open.
    """

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("Schema verification failed: " + "; ".join(self.problems))


class CachePersistenceError(CacheError):
    """A record could not be written; the whole save was rolled back."""

    def __init__(
        self,
        cache_key: str,
        provider_name: str,
        error_code: str,
        message: str,
    ) -> None:
        super().__init__(message)
        self.cache_key = cache_key
        self.provider_name = provider_name
        self.error_code = error_code


class CacheNotInitializedError(CacheError):
    """An operation needs an open database but none was initialized."""
