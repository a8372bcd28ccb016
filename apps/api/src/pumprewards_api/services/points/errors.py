"""Typed failures raised by the points engine."""

from __future__ import annotations

from typing import Any


class PointsError(RuntimeError):
    """Base exception for ledger, campaign and redemption failures.

    ``code`` is stable for API clients; ``status_code`` is the HTTP status the
    boundary layer should answer with.
    """

    code = "POINTS_ERROR"
    status_code = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def as_payload(self) -> dict[str, Any]:
        return {"success": False, "message": self.message, "code": self.code}


class InvalidAmountError(PointsError):
    code = "INVALID_AMOUNT"


class InvalidInputError(PointsError):
    code = "INVALID_INPUT"


class InsufficientBalanceError(PointsError):
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, *, available: int, requested: int) -> None:
        super().__init__(
            "Insufficient points balance",
            available=available,
            requested=requested,
        )
        self.available = available
        self.requested = requested


class NotFoundError(PointsError):
    code = "NOT_FOUND"
    status_code = 404


class AccountNotFoundError(NotFoundError):
    code = "ACCOUNT_NOT_FOUND"


class RewardNotFoundError(NotFoundError):
    code = "REWARD_NOT_FOUND"


class RedemptionNotFoundError(NotFoundError):
    code = "REDEMPTION_NOT_FOUND"


class CampaignNotFoundError(NotFoundError):
    code = "CAMPAIGN_NOT_FOUND"


class RewardUnavailableError(PointsError):
    code = "REWARD_UNAVAILABLE"


class DuplicateBillError(PointsError):
    code = "DUPLICATE_BILL"
    status_code = 409


class InvalidStateError(PointsError):
    """Raised when a redemption transition is not allowed from its status."""

    code = "INVALID_STATE"
    status_code = 409

    def __init__(self, message: str, *, current_status: str | None = None) -> None:
        super().__init__(message, current_status=current_status)
        self.current_status = current_status


class AlreadyUsedError(InvalidStateError):
    code = "ALREADY_USED"


class RedemptionExpiredError(PointsError):
    code = "EXPIRED"
    status_code = 410


class ConcurrencyConflictError(PointsError):
    """Lock wait timed out or a concurrent writer bumped the wallet version."""

    code = "CONCURRENCY_CONFLICT"
    status_code = 503


class CodeGenerationError(PointsError):
    code = "CODE_GENERATION_FAILED"
    status_code = 500


__all__ = [
    "AccountNotFoundError",
    "AlreadyUsedError",
    "CampaignNotFoundError",
    "CodeGenerationError",
    "ConcurrencyConflictError",
    "DuplicateBillError",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "InvalidInputError",
    "InvalidStateError",
    "NotFoundError",
    "PointsError",
    "RedemptionExpiredError",
    "RedemptionNotFoundError",
    "RewardNotFoundError",
    "RewardUnavailableError",
]
