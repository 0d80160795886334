# exceptions.py
# Description: Exception hierarchy for sync, conflict resolution and live-photo transcoding
#
"""
Sync Exception Hierarchy
========================

Every failure raised by the sync core derives from `SyncError`, which carries a
human-readable message, an HTTP-equivalent status where one applies, and
optional operation/context/cause details for logging.

Exception Categories:
- ValidationError: malformed or missing input, never retried
- TransientNetworkError: timeouts, connection failures, 5xx responses (retried)
- RateLimitError: 429 responses, retried honouring any server-supplied delay
- ConflictError: 409 responses, escalated to conflict resolution
- AuthError: 401/403 responses, surfaced immediately
- TranscodingError: live-photo pipeline failures
- MetadataStoreError: metadata persistence failures
- ResolutionError: conflict strategy failures or unknown strategies
- ManualResolutionRequired: the manual strategy's "a human must decide" signal
"""

from typing import Optional, Any, Dict


class SyncError(Exception):
    """
    Base exception for the sync core.

    Attributes:
        status: HTTP-equivalent status code, if any
        operation: The operation that failed (e.g. "sync", "to_remote_encoding")
        context: Additional context about the error (ids, endpoint, attempt, ...)
        original_error: The exception that caused this error, if any
    """

    retryable = False
    default_status: Optional[int] = 500

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.status = status if status is not None else self.default_status
        self.operation = operation
        self.context = context or {}
        self.original_error = original_error

    def __str__(self) -> str:
        parts = [self.message]

        if self.operation:
            parts.append(f"Operation: {self.operation}")

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"Context: {context_str}")

        if self.original_error:
            parts.append(f"Caused by: {type(self.original_error).__name__}: {self.original_error}")

        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "status": self.status,
            "operation": self.operation,
            "context": self.context,
            "original_error": str(self.original_error) if self.original_error else None
        }


class ValidationError(SyncError):
    """Malformed or missing required input. Not retried."""
    default_status = 400


class TransientNetworkError(SyncError):
    """Timeout, connection failure or 5xx response. Retried up to the attempt budget."""
    retryable = True
    default_status = 503


class RateLimitError(TransientNetworkError):
    """
    429-class response.

    `retry_after` is the server-supplied delay in seconds, if one was sent; it
    replaces the computed backoff for the next attempt only.
    """
    default_status = 429

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class ConflictError(SyncError):
    """409-class response: local and remote copies have diverged."""
    default_status = 409


class AuthError(SyncError):
    """401/403-class response. Not retried."""
    default_status = 401


class TranscodingError(SyncError):
    """External tool, read/write or malformed-input failure in the live-photo pipeline."""
    default_status = 500


class MetadataStoreError(SyncError):
    """Read/write failure in the metadata store (status 404 when the id has no entry)."""
    default_status = 500


class ResolutionError(SyncError):
    """Conflict strategy failure, or an unknown strategy name (status 400)."""
    default_status = 500

    def __init__(self, message: str, strategy: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.strategy = strategy
        if strategy:
            self.context.setdefault("strategy", strategy)


class ManualResolutionRequired(ResolutionError):
    """
    Raised by the manual strategy. Carries both records, serialized, so the
    caller can present them to a human operator.
    """
    default_status = 409

    def __init__(self, local: str, remote: str, **kwargs):
        super().__init__(
            f"Manual resolution required: {{\"localData\": {local}, \"cloudData\": {remote}}}",
            strategy="manual",
            **kwargs
        )
        self.local = local
        self.remote = remote


def error_from_status(
    status: int,
    message: Optional[str] = None,
    retry_after: Optional[float] = None,
    context: Optional[Dict[str, Any]] = None
) -> SyncError:
    """
    Maps a non-success HTTP status to the matching typed failure.

    Unclassified 4xx statuses become a plain `SyncError` carrying the status,
    which the dispatcher does not retry.
    """
    message = message or f"Remote endpoint returned status {status}"
    if status in (401, 403):
        return AuthError(message, status=status, context=context)
    if status == 409:
        return ConflictError(message, status=status, context=context)
    if status == 429:
        return RateLimitError(message, retry_after=retry_after, status=status, context=context)
    if status == 408 or status >= 500:
        return TransientNetworkError(message, status=status, context=context)
    if status in (400, 422):
        return ValidationError(message, status=status, context=context)
    return SyncError(message, status=status, context=context)

#
# End of exceptions.py
#######################################################################################################################
