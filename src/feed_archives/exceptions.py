# src/feed_archives/exceptions.py

"""
Shared custom exceptions for the Feed Archives resolver.

Centralizing exception definitions in a separate module prevents circular
import errors between other modules that need to raise or catch them.

Exception Hierarchy:
- FeedArchivesError (base)
  - RetryableError (can be retried)
    - IdentityServiceUnavailableError
    - S3ThrottlingError
    - S3TimeoutError
  - NonRetryableError (should not be retried)
    - InvalidRowError
    - MalformedPayloadError
    - IdentityRequestError
    - S3AccessDeniedError
    - S3ObjectNotFoundError
    - PreferenceSourceError
    - ConfigurationError
  - TenantProcessingError (per-tenant, never fatal to the batch)
    - InvalidRowError
    - MalformedPayloadError
    - IdentityLookupError
    - ImpersonationError
"""

from typing import Any, Dict, Optional

STEP_READ_ROW = "read_row"
STEP_PARSE_PAYLOAD = "parse_payload"
STEP_LOOKUP_ADMIN = "lookup_admin"
STEP_IMPERSONATE = "impersonate"


class FeedArchivesError(Exception):
    """Base exception for all Feed Archives errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = dict(context) if context else {}
        self.correlation_id = correlation_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "correlation_id": self.correlation_id,
            "retryable": isinstance(self, RetryableError),
        }


class RetryableError(FeedArchivesError):
    """Base class for errors that can be retried."""
    pass


class NonRetryableError(FeedArchivesError):
    """Base class for errors that should not be retried."""
    pass


# === Per-Tenant Errors ===

class TenantProcessingError(FeedArchivesError):
    """
    Base class for failures scoped to a single tenant.

    These are collected into the batch's error list and never abort the
    processing of other tenants.
    """

    step: str = "unknown"

    def __init__(self, tenant_id: str, message: str, **kwargs):
        context = {"tenant_id": tenant_id, "step": self.step}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, context=context, **kwargs)
        self.tenant_id = tenant_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["tenant_id"] = self.tenant_id
        data["step"] = self.step
        # Retryability of a wrapped failure is decided by what actually broke.
        if self.__cause__ is not None and not isinstance(self, NonRetryableError):
            data["retryable"] = is_retryable_error(self.__cause__)
        return data


class InvalidRowError(TenantProcessingError, NonRetryableError):
    """Raised when a tenant's row in the preferences export has invalid columns."""

    step = STEP_READ_ROW

    def __init__(self, tenant_id: str, reason: str, **kwargs):
        message = f"Invalid preferences row for tenant {tenant_id}: {reason}"
        super().__init__(tenant_id, message, error_code="INVALID_ROW", **kwargs)


class MalformedPayloadError(TenantProcessingError, NonRetryableError):
    """Raised when a tenant's preference payload cannot be parsed."""

    step = STEP_PARSE_PAYLOAD

    def __init__(self, tenant_id: str, reason: str, **kwargs):
        message = f"Malformed preferences payload for tenant {tenant_id}: {reason}"
        super().__init__(
            tenant_id, message, error_code="MALFORMED_PAYLOAD", **kwargs
        )


class IdentityLookupError(TenantProcessingError):
    """Raised when the tenant's admin principal cannot be looked up."""

    step = STEP_LOOKUP_ADMIN

    def __init__(self, tenant_id: str, reason: str, **kwargs):
        message = f"Admin lookup failed for tenant {tenant_id}: {reason}"
        super().__init__(
            tenant_id, message, error_code="IDENTITY_LOOKUP_FAILED", **kwargs
        )


class ImpersonationError(TenantProcessingError):
    """Raised when an impersonation token cannot be issued for a tenant."""

    step = STEP_IMPERSONATE

    def __init__(self, tenant_id: str, reason: str, **kwargs):
        message = f"Impersonation failed for tenant {tenant_id}: {reason}"
        super().__init__(
            tenant_id, message, error_code="IMPERSONATION_FAILED", **kwargs
        )


# === Identity Service Errors ===

class IdentityServiceError(FeedArchivesError):
    """Base class for errors returned by the identity service client."""
    pass


class IdentityServiceUnavailableError(IdentityServiceError, RetryableError):
    """Raised when the identity service cannot be reached or is overloaded."""

    def __init__(self, operation: str, reason: str, **kwargs):
        message = f"Identity service unavailable during {operation}: {reason}"
        context = {"operation": operation}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(
            message, error_code="IDENTITY_UNAVAILABLE", context=context, **kwargs
        )


class IdentityRequestError(IdentityServiceError, NonRetryableError):
    """Raised when the identity service rejects a request or answers nonsense."""

    def __init__(self, operation: str, reason: str, **kwargs):
        message = f"Identity request failed during {operation}: {reason}"
        context = {"operation": operation}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(
            message, error_code="IDENTITY_REQUEST_FAILED", context=context, **kwargs
        )


# === S3-Related Errors ===

class S3Error(FeedArchivesError):
    """Base class for S3-related errors."""
    pass


class S3ObjectNotFoundError(S3Error, NonRetryableError):
    """Raised when a requested S3 object does not exist."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"S3 object not found: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_OBJECT_NOT_FOUND", context=context, **kwargs)


class S3AccessDeniedError(S3Error, NonRetryableError):
    """Raised when access is denied to an S3 object."""

    def __init__(self, bucket: str, key: str, **kwargs):
        message = f"Access denied to S3 object: s3://{bucket}/{key}"
        context = {"bucket": bucket, "key": key}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_ACCESS_DENIED", context=context, **kwargs)


class S3ThrottlingError(S3Error, RetryableError):
    """Raised when S3 operations are being throttled."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation throttled: {operation}"
        context = {"operation": operation}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_THROTTLING", context=context, **kwargs)


class S3TimeoutError(S3Error, RetryableError):
    """Raised when S3 operations timeout or the endpoint cannot be reached."""

    def __init__(self, operation: str, **kwargs):
        message = f"S3 operation timed out: {operation}"
        context = {"operation": operation}
        if "context" in kwargs:
            context.update(kwargs.pop("context"))
        super().__init__(message, error_code="S3_TIMEOUT", context=context, **kwargs)


# === Source & Configuration Errors ===

class PreferenceSourceError(NonRetryableError):
    """Raised when the preferences export itself is unreadable or corrupt."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="PREFERENCE_SOURCE_ERROR", **kwargs)


class ConfigurationError(NonRetryableError):
    """Raised when there's an error in the application configuration."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", **kwargs)


# === Utility Functions ===

def is_retryable_error(error: BaseException) -> bool:
    """Check if an error is retryable."""
    return isinstance(error, RetryableError)


def get_error_context(error: BaseException) -> Dict[str, Any]:
    """Extract error context for logging."""
    if isinstance(error, FeedArchivesError):
        return error.to_dict()
    else:
        return {
            "error_type": error.__class__.__name__,
            "message": str(error),
            "retryable": False  # Unknown errors default to non-retryable
        }
