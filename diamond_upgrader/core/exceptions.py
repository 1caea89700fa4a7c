"""
Custom exceptions for the Diamond Upgrader.
Provides structured error handling for deployment and diamond cut operations.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class UpgraderException(Exception):
    """Base exception for the Diamond Upgrader."""

    def __init__(
        self,
        message: str,
        error_code: str = "UPGRADER_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.stage: Optional[str] = None
        super().__init__(self.message)

    def with_stage(self, stage: Optional[str]) -> "UpgraderException":
        """Record the last upgrade stage completed before this error."""
        self.stage = stage
        self.details["last_completed_stage"] = stage
        return self


class ConfigError(UpgraderException):
    """Raised when the upgrade plan or settings are malformed."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


class AuthorizationError(UpgraderException):
    """Raised when the caller lacks the required on-chain role."""

    def __init__(self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "AUTHZ_ERROR", details)


class PreconditionError(UpgraderException):
    """Raised when a referenced facet or contract is not in the registry."""

    def __init__(self, name: str, details: Optional[Dict[str, Any]] = None):
        message = f"Contract not found in registry: {name}"
        super().__init__(message, "PRECONDITION_FAILED", details)


class CollisionError(UpgraderException):
    """Raised when a selector collision cannot be resolved."""

    def __init__(self, selector: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        message = message or f"Unresolved selector collision: {selector}"
        super().__init__(message, "SELECTOR_COLLISION", details)
        self.selector = selector


class ChainCallError(UpgraderException):
    """Raised when a chain read keeps failing after retries."""

    def __init__(self, method: str, details: Optional[Dict[str, Any]] = None):
        message = f"Chain call failed: {method}"
        super().__init__(message, "CHAIN_CALL_FAILED", details)


class SubmissionError(UpgraderException):
    """Raised when a transaction reverts or is not confirmed."""

    def __init__(self, message: str = "Transaction failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SUBMISSION_FAILED", details)


class PersistenceError(UpgraderException):
    """Raised when the contracts file cannot be written."""

    def __init__(
        self,
        message: str = "Contracts file write failed",
        details: Optional[Dict[str, Any]] = None,
        requires_manual_reconciliation: bool = False,
    ):
        super().__init__(message, "PERSISTENCE_FAILED", details)
        self.requires_manual_reconciliation = requires_manual_reconciliation
        self.details["requires_manual_reconciliation"] = requires_manual_reconciliation


def create_http_exception(
    exc: UpgraderException,
    status_code: Optional[int] = None
) -> HTTPException:
    """
    Convert an UpgraderException to an HTTPException.

    Args:
        exc: UpgraderException instance
        status_code: HTTP status code, derived from the error code when omitted

    Returns:
        HTTPException: FastAPI HTTP exception
    """
    return HTTPException(
        status_code=status_code or get_exception_status_code(exc),
        detail={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


def get_exception_status_code(exc: UpgraderException) -> int:
    """
    Get the appropriate HTTP status code for an UpgraderException.

    Args:
        exc: UpgraderException instance

    Returns:
        int: HTTP status code
    """
    status_mapping = {
        "CONFIG_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
        "AUTHZ_ERROR": status.HTTP_403_FORBIDDEN,
        "PRECONDITION_FAILED": status.HTTP_404_NOT_FOUND,
        "SELECTOR_COLLISION": status.HTTP_409_CONFLICT,
        "CHAIN_CALL_FAILED": status.HTTP_502_BAD_GATEWAY,
        "SUBMISSION_FAILED": status.HTTP_502_BAD_GATEWAY,
        "PERSISTENCE_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }

    return status_mapping.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
