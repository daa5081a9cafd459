"""Custom exception hierarchy for artcade."""

from __future__ import annotations


class ArtcadeError(Exception):
    """Base for all artcade errors."""


class ValidationError(ArtcadeError):
    """A candidate pattern (or other input) is malformed. Never retried."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = list(fields or [])


class PatternNotFoundError(ArtcadeError):
    """No pattern with the given ID exists."""


class StorageError(ArtcadeError):
    """The backing store is unavailable or a statement failed."""


class EmbeddingProviderError(ArtcadeError):
    """The embedding provider failed.

    ``retryable`` tells the caller whether trying the same step again
    later can succeed (timeouts, connection drops, 5xx) or not (4xx,
    malformed responses).
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class EmbeddingTimeoutError(EmbeddingProviderError):
    """An embedding request exceeded its timeout."""


class EmbeddingConnectionError(EmbeddingProviderError):
    """Could not reach the embedding provider."""


class EvolutionError(ArtcadeError):
    """A generation could not be filled within the admission retry budget."""
