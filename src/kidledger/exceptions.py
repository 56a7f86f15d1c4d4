"""Custom exception hierarchy for the KidLedger package."""

from __future__ import annotations

from decimal import Decimal


class KidLedgerError(Exception):
    """Base class for all KidLedger specific errors."""


class InvalidAmountError(KidLedgerError, ValueError):
    """Raised when an amount is missing, malformed, zero or negative."""


class InvalidInputError(KidLedgerError, ValueError):
    """Raised when listing or company parameters are invalid."""


class DuplicateAccountError(KidLedgerError):
    """Raised when a child already owns a company account."""


class AccountNotFoundError(KidLedgerError):
    """Raised when a company account lookup fails."""


class ListingNotFoundError(KidLedgerError):
    """Raised when a marketplace listing lookup fails."""


class OutOfStockError(KidLedgerError):
    """Raised when a listing is not available or has no remaining quantity."""


class InsufficientFundsError(KidLedgerError):
    """Raised when a company cannot cover the cost of an operation."""

    def __init__(self, message: str, *, required: Decimal, available: Decimal) -> None:
        super().__init__(message)
        self.required = required
        self.available = available

    @property
    def shortfall(self) -> Decimal:
        return self.required - self.available


class SellerAccountMissingError(KidLedgerError):
    """The seller of a listing has no company; the sale is not credited anywhere."""


class PersistenceFailureError(KidLedgerError):
    """Wraps an error raised by the storage layer."""


class RewardHookError(KidLedgerError):
    """Raised by reward collaborators. Never propagated to callers."""


class ProgressUnavailableError(KidLedgerError, LookupError):
    """Raised when XP and achievements are tracked by an external reward service."""
