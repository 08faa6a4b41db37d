from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID

if TYPE_CHECKING:
    from recipe_ledger.app.domain.models import UnlockRecord


class RecipeLedgerError(Exception):
    pass


class RecipeNotFoundError(RecipeLedgerError):
    def __init__(self, recipe_id: UUID):
        super().__init__(f"Recipe not found: {recipe_id}")
        self.recipe_id = recipe_id


class RecipeNotPaidError(RecipeLedgerError):
    def __init__(self, recipe_id: UUID):
        super().__init__(f"Recipe is not for sale: {recipe_id}")
        self.recipe_id = recipe_id


class UnlockInProgressError(RecipeLedgerError):
    def __init__(self, user_id: UUID, recipe_id: UUID):
        super().__init__(f"Unlock already in progress for user {user_id}, recipe {recipe_id}")
        self.user_id = user_id
        self.recipe_id = recipe_id


class LedgerConflictError(RecipeLedgerError):
    def __init__(
        self,
        user_id: UUID,
        recipe_id: UUID,
        existing: Optional["UnlockRecord"] = None,
        message: str = "Unlock already resolved, re-check entitlement",
    ):
        super().__init__(f"{message}: user={user_id}, recipe={recipe_id}")
        self.user_id = user_id
        self.recipe_id = recipe_id
        self.existing = existing


class InvalidSettlementError(RecipeLedgerError):
    def __init__(self, amount_paid: int, platform_fee: int, creator_payout: int, reason: str):
        super().__init__(
            f"Invalid settlement {amount_paid} = {platform_fee} + {creator_payout}: {reason}"
        )
        self.amount_paid = amount_paid
        self.platform_fee = platform_fee
        self.creator_payout = creator_payout
        self.reason = reason


class AuthorizationError(RecipeLedgerError):
    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class AuthorizationDeclinedError(AuthorizationError):
    def __init__(self, reason: str = "Payment declined"):
        super().__init__(reason, retryable=False)
        self.reason = reason


class AuthorizationTimeoutError(AuthorizationError):
    def __init__(self, timeout_seconds: float):
        super().__init__(f"Authorization timed out after {timeout_seconds}s", retryable=True)
        self.timeout_seconds = timeout_seconds


class AuthorizerUnavailableError(AuthorizationError):
    def __init__(self, reason: str):
        super().__init__(f"Authorizer unavailable: {reason}", retryable=True)
        self.reason = reason


class LedgerRepositoryError(RecipeLedgerError):
    def __init__(self, operation: str, reason: str):
        super().__init__(f"Ledger repository error during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class InteractionRepositoryError(RecipeLedgerError):
    def __init__(self, operation: str, reason: str):
        super().__init__(f"Interaction repository error during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class ClockSkewTooLargeError(RecipeLedgerError):
    def __init__(self, occurred_at: datetime, max_skew_seconds: int):
        super().__init__(
            f"Event timestamp {occurred_at.isoformat()} is more than {max_skew_seconds}s in the future"
        )
        self.occurred_at = occurred_at
        self.max_skew_seconds = max_skew_seconds


class WorkerConfigurationError(RecipeLedgerError):
    def __init__(self, errors: list[str]):
        super().__init__(f"Worker configuration errors: {', '.join(errors)}")
        self.errors = errors
