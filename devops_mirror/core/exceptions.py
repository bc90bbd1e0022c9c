"""Custom exceptions for application-specific error handling."""

from __future__ import annotations

import asyncio
from typing import Optional, Dict, Any

import httpx


class DevOpsMirrorException(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.retryable = retryable
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logs and run reports."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


# ===== REMOTE PROVIDER EXCEPTIONS =====


class RemoteProviderError(DevOpsMirrorException):
    """Base exception for Azure DevOps errors."""


class AuthenticationError(RemoteProviderError):
    """Raised when Azure DevOps rejects the credentials."""

    def __init__(
        self,
        message: str = (
            "Azure DevOps authentication failed. Refresh AZURE_DEVOPS_PAT and make sure the token "
            "has 'Work items (read & write)' scope."
        ),
    ):
        super().__init__(message, error_code="AUTH")


class RateLimitError(RemoteProviderError):
    """Raised when Azure DevOps throttles the client."""

    def __init__(
        self,
        message: str = "Azure DevOps API rate limit exceeded. Please wait a few minutes before trying again.",
        *,
        retry_after: Optional[float] = None,
    ):
        details = {"retry_after": retry_after} if retry_after is not None else {}
        super().__init__(message, error_code="RATE_LIMIT", details=details, retryable=True)
        self.retry_after = retry_after


class RemoteTimeoutError(RemoteProviderError):
    """Raised when a remote call exceeds its timeout."""

    def __init__(
        self,
        message: str = "Azure DevOps API timeout. The request took too long to complete, please try again.",
    ):
        super().__init__(message, error_code="TIMEOUT", retryable=True)


class NetworkError(RemoteProviderError):
    """Raised when Azure DevOps cannot be reached."""

    def __init__(
        self,
        message: str = "Network connection failed. Please check your internet connection and try again.",
    ):
        super().__init__(message, error_code="NETWORK", retryable=True)


class RemoteServerError(RemoteProviderError):
    """Raised on 5xx responses."""

    def __init__(self, message: str = "Azure DevOps server error", status_code: int = 500):
        super().__init__(message, error_code="SERVER", details={"status_code": status_code}, retryable=True)


class WorkItemNotFoundError(RemoteProviderError):
    """Raised when a work item doesn't exist."""

    def __init__(self, work_item_id: int):
        super().__init__(
            f"Work item {work_item_id} not found",
            error_code="NOT_FOUND",
            details={"work_item_id": work_item_id},
        )


class ValidationError(RemoteProviderError):
    """Raised when a request is rejected before or by Azure DevOps as invalid."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, error_code="VALIDATION", details=details)


class UnknownRemoteError(RemoteProviderError):
    """Raised when a failure fits no other category."""

    def __init__(self, message: str):
        super().__init__(message, error_code="UNKNOWN")


class CircuitOpenError(RemoteProviderError):
    """Raised without calling the provider while a circuit is open."""

    def __init__(self, circuit_name: str, retry_after: float):
        super().__init__(
            f"Circuit {circuit_name} is open. Retry after {retry_after:.1f}s",
            error_code="CIRCUIT_OPEN",
            details={"circuit": circuit_name, "retry_after": retry_after},
        )
        self.circuit_name = circuit_name
        self.retry_after = retry_after


# ===== SYNC EXCEPTIONS =====


class SyncException(DevOpsMirrorException):
    """Base exception for sync engine errors."""


class BatchPersistenceError(SyncException):
    """Raised when one persistence batch fails; later batches are not attempted."""

    def __init__(self, *, entity: str, batch_index: int, batch_size: int, total_batches: int, cause: Exception):
        super().__init__(
            f"Failed to persist {entity} batch {batch_index + 1}/{total_batches} ({batch_size} rows): {cause}",
            error_code="BATCH_PERSISTENCE",
            details={
                "entity": entity,
                "batch_index": batch_index,
                "batch_size": batch_size,
                "total_batches": total_batches,
            },
        )
        self.entity = entity
        self.batch_index = batch_index
        self.batch_size = batch_size
        self.total_batches = total_batches
        self.cause = cause


class SyncInProgressError(SyncException):
    """Raised when a sync run is requested while another one is active."""

    def __init__(self, message: str = "A sync run is already in progress"):
        super().__init__(message, error_code="SYNC_IN_PROGRESS")


class InvalidConfigurationError(DevOpsMirrorException):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {"setting": setting} if setting else {}
        super().__init__(message, error_code="INVALID_CONFIG", details=details)


def error_from_response(response: httpx.Response, *, work_item_id: Optional[int] = None) -> RemoteProviderError:
    status = response.status_code
    if status in {401, 403}:
        return AuthenticationError()
    if status == 404 and work_item_id is not None:
        return WorkItemNotFoundError(work_item_id)
    if status == 429:
        retry_after: Optional[float] = None
        header = response.headers.get("Retry-After")
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None
        return RateLimitError(retry_after=retry_after)
    if status in {400, 404, 422}:
        return ValidationError(f"Azure DevOps rejected the request (status={status}): {response.text[:200]}")
    if status >= 500:
        return RemoteServerError(f"Azure DevOps server error (status={status})", status_code=status)
    return UnknownRemoteError(f"Unexpected Azure DevOps response (status={status})")


def classify_error(exc: BaseException) -> DevOpsMirrorException:
    """Wrap any failure into an actionable auth / rate-limit / timeout / network / unknown error."""
    if isinstance(exc, DevOpsMirrorException):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_response(exc.response)
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return RemoteTimeoutError()
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return NetworkError()

    text = str(exc)
    lowered = text.lower()
    if "401" in lowered or "unauthorized" in lowered or "authentication" in lowered:
        return AuthenticationError()
    if "rate limit" in lowered or "429" in lowered:
        return RateLimitError()
    if "timeout" in lowered or "timed out" in lowered:
        return RemoteTimeoutError()
    if "enotfound" in lowered or "network" in lowered or "connection" in lowered:
        return NetworkError()
    return UnknownRemoteError(f"Azure DevOps operation failed: {text or exc.__class__.__name__}")
