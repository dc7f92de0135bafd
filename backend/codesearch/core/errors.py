"""Error kinds raised by the indexing pipeline and the search engine."""

from __future__ import annotations

from typing import Optional


class CodeSearchError(Exception):
    """Base class for every error surfaced by codesearch.

    ``kind`` names the error category, ``code`` is the machine-readable
    identifier sent over HTTP and ``status_code`` the HTTP status it maps to.
    """

    kind = "CodeSearchError"
    code = "INTERNAL_SERVER_ERROR"
    status_code = 500
    # Partial IndexingReport when the error ends an indexing run
    report = None

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationFailure(CodeSearchError):
    kind = "ValidationFailure"
    code = "VALIDATION_ERROR"
    status_code = 400


class ProviderUnavailable(CodeSearchError):
    """The embedding provider cannot be reached."""

    kind = "ProviderUnavailable"
    code = "EMBEDDING_PROVIDER_UNAVAILABLE"
    status_code = 503


class EmbeddingFailure(CodeSearchError):
    """The provider answered but could not embed this input."""

    kind = "EmbeddingFailure"
    code = "EMBEDDING_FAILED"
    status_code = 502


class DimensionMismatch(CodeSearchError):
    kind = "DimensionMismatch"
    code = "DIMENSION_MISMATCH"
    status_code = 500

    def __init__(self, expected: int, actual: int, report=None) -> None:
        super().__init__(
            f"Embedding has dimension {actual}, store expects {expected}. "
            f"The embedding model probably changed; re-create the collection and re-index."
        )
        self.expected = expected
        self.actual = actual
        self.report = report


class ReferenceNotFound(CodeSearchError):
    kind = "ReferenceNotFound"
    code = "REFERENCE_NOT_FOUND"
    status_code = 404


class RateLimited(CodeSearchError):
    kind = "RateLimited"
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, retry_after: int, message: str = "Too Many Requests", code: Optional[str] = None) -> None:
        super().__init__(message, code=code)
        self.retry_after = retry_after


class StoreFailure(CodeSearchError):
    kind = "StoreFailure"
    code = "STORE_FAILURE"
    status_code = 500


class InvalidSearchType(CodeSearchError):
    kind = "InvalidSearchType"
    code = "INVALID_SEARCH_TYPE"
    status_code = 400


class SearchTimeout(CodeSearchError):
    kind = "Timeout"
    code = "SEARCH_TIMEOUT"
    status_code = 504
