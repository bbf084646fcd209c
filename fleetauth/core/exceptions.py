# fleetauth/core/exceptions.py
"""
Core exceptions for the fleetauth fabric.

Every error the fabric raises derives from FleetAuthError and carries the
public error code, the HTTP status it maps to, and whether the caller may
retry. Messages on the public classes are safe to show to clients; anything
internal goes into `details`, which is logged but never rendered.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any


class FleetAuthError(Exception):
    """Base exception for all fabric errors"""

    code: str = "error"
    status_code: int = 500
    retryable: bool = False
    public_message: str = "An internal error occurred."

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message
            details: Optional additional error details (logged, never returned)
        """
        message = message or self.public_message
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class UnauthenticatedError(FleetAuthError):
    """No valid session identity is attached to the request"""

    code = "unauthenticated"
    status_code = 401
    public_message = "Authentication required."


class ForbiddenError(FleetAuthError):
    """The identity is known but not allowed to perform the operation"""

    code = "forbidden"
    status_code = 403
    public_message = "Access denied."


class CsrfMismatchError(FleetAuthError):
    """A state-changing request carried a missing or foreign CSRF token"""

    code = "csrf_mismatch"
    status_code = 403
    public_message = "Invalid or missing CSRF token."


class ValidationFailedError(FleetAuthError):
    """Errors in input validation"""

    code = "validation_failed"
    status_code = 422
    public_message = "The request input is invalid."

    def __init__(
        self,
        message: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.field = field

        if field:
            self.details['field'] = field


class UpstreamUnavailableError(FleetAuthError):
    """A shared backend could not be reached; the request may be retried"""

    code = "upstream_unavailable"
    status_code = 503
    retryable = True
    public_message = "A required service is temporarily unavailable. Please retry."

    def __init__(
        self,
        message: Optional[str] = None,
        service_name: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize upstream error.

        Args:
            message: Error description
            service_name: Name of the failing service
            operation: Operation that failed
            details: Additional service context
        """
        super().__init__(message, details)
        self.service_name = service_name
        self.operation = operation

        if service_name:
            self.details['service'] = service_name
        if operation:
            self.details['operation'] = operation


class RedisServiceError(UpstreamUnavailableError):
    """Errors talking to the shared Redis instance"""

    def __init__(
        self,
        message: Optional[str] = None,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="Redis", operation=operation, details=details)
        self.key = key

        if key:
            self.details['key'] = key


class DatabaseError(UpstreamUnavailableError):
    """Errors talking to the relational store"""

    def __init__(self, message: Optional[str] = None, operation: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, service_name="Database", operation=operation, details=details)


class DocumentStoreError(UpstreamUnavailableError):
    """Errors talking to the Weaviate document store"""

    def __init__(
        self,
        message: Optional[str] = None,
        collection: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="Weaviate", operation=operation, details=details)
        self.collection = collection

        if collection:
            self.details['collection'] = collection


class BlobStoreError(UpstreamUnavailableError):
    """Errors talking to the blob store"""

    def __init__(
        self,
        message: Optional[str] = None,
        url: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="BlobStore", operation=operation, details=details)
        self.url = url

        if url:
            self.details['url'] = url


class PaymentServiceError(UpstreamUnavailableError):
    """Errors talking to the payment provider"""

    def __init__(self, message: Optional[str] = None, operation: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, service_name="Stripe", operation=operation, details=details)


class AccountDeletionError(UpstreamUnavailableError):
    """The authoritative relational deletion failed; nothing was torn down"""

    code = "account_deletion_failed"
    public_message = "The account could not be deleted. Please retry."

    def __init__(self, message: Optional[str] = None, identity_id: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, service_name="Database", operation="delete_identity", details=details)
        self.identity_id = identity_id

        if identity_id is not None:
            self.details['identity_id'] = identity_id


class SessionNotFoundError(FleetAuthError):
    """The session id is not present in the store"""

    code = "session_not_found"
    status_code = 401
    public_message = "Authentication required."

    def __init__(self, session_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(None, details)
        self.session_id = session_id

        if session_id:
            self.details['session_id'] = f"{session_id[:8]}..."


class ConfigurationError(FleetAuthError):
    """Errors in system configuration and initialization"""

    code = "configuration_error"

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.component = component

        if component:
            self.details['component'] = component


@dataclass(frozen=True)
class PartialCleanupFailure:
    """
    One cleanup item that failed after the account was already deleted.

    Not an exception: the deletion itself succeeded. These records are logged
    for manual reconciliation and collected on the DeletionReport.
    """
    step: str
    target: str
    error: str
