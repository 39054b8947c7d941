"""
Custom exceptions for the ingestion pipeline with structured error context.

Every exception carries a context dictionary so that failures can be
logged and reported without losing the source, URL, or batch they belong to.

Exception Hierarchy:
    ETLException (base)
    ├── ExtractionError
    │   ├── FetchError
    │   │   ├── RateLimited          (retryable)
    │   │   ├── NetworkError         (retryable)
    │   │   ├── FetchTimeout         (retryable)
    │   │   └── UpstreamError        (retryable for 5xx only)
    │   ├── SourceFileUnavailable    (file skipped, run continues)
    │   └── PaginationLimitReached   (non-fatal truncation)
    ├── TransformationError
    │   └── ValidationRejected
    │       └── GeocodingMiss
    ├── LoadError
    │   └── PersistenceBatchFailure
    ├── FatalSourceFailure
    │   ├── SourceConfigurationError
    │   └── ArtifactStoreError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ETLException(Exception):
    """
    Base exception for all ingestion errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, url, batch index, ...)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ETLException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network failures and timeouts
    - Rate limiting (HTTP 429)
    - Upstream server errors (HTTP 5xx)
    """
    pass


class NonRetryableError(ETLException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Client errors other than 429 (HTTP 4xx)
    - Upstream pagination ceilings
    - Invalid records
    """
    pass


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ETLException):
    """Base exception for data extraction failures."""
    pass


class FetchError(ExtractionError):
    """
    A single upstream request failed.

    Context should include:
        - url: The requested URL
        - attempt: Attempt number that produced the error
    """
    pass


class RateLimited(RetryableError, FetchError):
    """Upstream answered HTTP 429."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after is not None:
            self.context["retry_after"] = retry_after


class NetworkError(RetryableError, FetchError):
    """Connection-level failure (DNS, refused, reset)."""
    pass


class FetchTimeout(RetryableError, FetchError):
    """The request exceeded its timeout."""
    pass


class UpstreamError(FetchError):
    """
    Upstream answered with an unexpected HTTP status.

    Only 5xx responses are retried; see ``retryable``.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.status_code = status_code
        self.context["status_code"] = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500


class SourceFileUnavailable(ExtractionError):
    """
    One file of a multi-file source could not be downloaded or opened.

    The run skips the file and carries on with the others; the file stays
    out of the ledger so the next run tries it again.
    """
    pass


class PaginationLimitReached(NonRetryableError, ExtractionError):
    """
    Upstream refused a page past its pagination ceiling.

    Not fatal: collection stops and the records gathered so far are kept.
    """
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(ETLException):
    """Base exception for data transformation failures."""
    pass


class ValidationRejected(NonRetryableError, TransformationError):
    """
    A record failed validation and is routed to the failure sink.

    Context should include:
        - natural_key: Natural key of the record (if known)
        - field_name: Field that failed (if applicable)
    """

    @property
    def reason(self) -> str:
        return self.message


class GeocodingMiss(ValidationRejected):
    """No coordinates could be found for a record lacking them."""
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Base exception for data loading failures."""
    pass


class PersistenceBatchFailure(LoadError):
    """
    One upsert batch failed. Subsequent batches are still attempted.

    Context should include:
        - start_index: Index of the first record of the batch
        - batch_size: Number of records in the batch
    """

    def __init__(
        self,
        message: str,
        start_index: int,
        batch_size: int,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.start_index = start_index
        self.batch_size = batch_size
        self.context["start_index"] = start_index
        self.context["batch_size"] = batch_size


# ============================================================================
# Fatal Errors
# ============================================================================

class FatalSourceFailure(ETLException):
    """
    The run cannot proceed: first-page fetch failure, malformed source
    configuration, or artifact store unavailability.
    """
    pass


class SourceConfigurationError(FatalSourceFailure):
    """Trigger input or source configuration is invalid."""
    pass


class ArtifactStoreError(FatalSourceFailure):
    """
    Blob/artifact store operation failed.

    Context should include:
        - operation: put, get or delete
        - key / locator: The artifact involved
    """
    pass
