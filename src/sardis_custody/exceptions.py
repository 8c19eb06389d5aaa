"""Exception hierarchy for the custody core.

All custody exceptions inherit from CustodyException, enabling:
- Consistent handling by the relayer (inner-call failures become a boolean)
- Stable, pattern-matchable reason strings ("LM: wallet must be locked")
- Structured error responses with error codes

Usage:
    from sardis_custody.exceptions import (
        CustodyException,
        InvalidNonceError,
        WalletLockedError,
    )

    try:
        relayer.execute(...)
    except InvalidNonceError as e:
        print(e.error_code, e.message)

All exceptions have:
- error_code: Machine-readable error code (e.g., "INVALID_NONCE")
- message: The canonical reason string
- details: Optional additional context dictionary
- to_dict(): Convert to API response format
"""
from __future__ import annotations

from typing import Any, Optional


class CustodyException(Exception):
    """Base exception for all custody errors.

    Attributes:
        message: Canonical reason string
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "CUSTODY_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Input Errors
# =============================================================================

class ValidationError(CustodyException):
    """Invalid input data or parameters."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


# =============================================================================
# Authorization Errors
# =============================================================================

class UnauthorizedError(CustodyException):
    """Caller lacks the required capability."""

    error_code = "UNAUTHORIZED"

    def __init__(
        self,
        message: str,
        caller: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if caller:
            details["caller"] = caller
        super().__init__(message, details=details)


class PolicyNotSatisfiedError(CustodyException):
    """Supplied signatures do not satisfy the resolved signer policy."""

    error_code = "POLICY_NOT_SATISFIED"

    def __init__(
        self,
        message: str,
        policy: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if policy:
            details["policy"] = policy
        super().__init__(message, details=details)


class InvalidSignaturesError(PolicyNotSatisfiedError):
    """Signatures are malformed, unsorted, duplicated or from unexpected signers."""

    error_code = "INVALID_SIGNATURES"


class InvalidNonceError(CustodyException):
    """Relayed call replayed or delivered out of order."""

    error_code = "INVALID_NONCE"

    def __init__(
        self,
        message: str,
        expected: Optional[int] = None,
        received: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if expected is not None:
            details["expected"] = expected
        if received is not None:
            details["received"] = received
        super().__init__(message, details=details)


class ReentrancyError(CustodyException):
    """Entry point re-entered for a wallet while already in progress."""

    error_code = "REENTRANT_CALL"


# =============================================================================
# Lock Errors
# =============================================================================

class LockError(CustodyException):
    """Base class for wallet lock errors."""

    error_code = "LOCK_ERROR"


class WalletLockedError(LockError):
    """Mutating operation blocked by the current lock holder."""

    error_code = "WALLET_LOCKED"


class NotLockedError(LockError):
    """Unlock attempted on a wallet that is not locked."""

    error_code = "NOT_LOCKED"


class LockedByOtherModuleError(LockError):
    """Lock is held by a different module than the caller."""

    error_code = "LOCKED_BY_OTHER_MODULE"

    def __init__(
        self,
        message: str,
        locked_by: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if locked_by:
            details["locked_by"] = locked_by
        super().__init__(message, details=details)


# =============================================================================
# Time Window Errors
# =============================================================================

class PendingWindowViolationError(CustodyException):
    """Guardian change or recovery action outside its allowed time window."""

    error_code = "PENDING_WINDOW_VIOLATION"

    def __init__(
        self,
        message: str,
        now: Optional[int] = None,
        window_start: Optional[int] = None,
        window_end: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if now is not None:
            details["now"] = now
        if window_start is not None:
            details["window_start"] = window_start
        if window_end is not None:
            details["window_end"] = window_end
        super().__init__(message, details=details)


class PendingExpiredError(PendingWindowViolationError):
    """Pending guardian change was not confirmed within its security window."""

    error_code = "PENDING_EXPIRED"


# =============================================================================
# Registry Errors
# =============================================================================

class RegistryViolationError(CustodyException):
    """Module not registered, or module-set change not allowed."""

    error_code = "REGISTRY_VIOLATION"

    def __init__(
        self,
        message: str,
        module: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if module:
            details["module"] = module
        super().__init__(message, details=details)


class ZeroModulesError(RegistryViolationError):
    """Operation would leave the wallet with no authorised module."""

    error_code = "ZERO_MODULES"


# =============================================================================
# Value Errors
# =============================================================================

class InsufficientBalanceError(CustodyException):
    """Wallet balance too low for a transfer or refund."""

    error_code = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        message: str,
        available: Optional[int] = None,
        required: Optional[int] = None,
        token: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if available is not None:
            details["available"] = available
        if required is not None:
            details["required"] = required
        if token:
            details["token"] = token
        super().__init__(message, details=details)


__all__ = [
    "CustodyException",
    "ValidationError",
    "UnauthorizedError",
    "PolicyNotSatisfiedError",
    "InvalidSignaturesError",
    "InvalidNonceError",
    "ReentrancyError",
    "LockError",
    "WalletLockedError",
    "NotLockedError",
    "LockedByOtherModuleError",
    "PendingWindowViolationError",
    "PendingExpiredError",
    "RegistryViolationError",
    "ZeroModulesError",
    "InsufficientBalanceError",
]
