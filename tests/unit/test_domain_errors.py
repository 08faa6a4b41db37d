from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from recipe_ledger.app.domain.errors import (
    AuthorizationDeclinedError,
    AuthorizationError,
    AuthorizationTimeoutError,
    AuthorizerUnavailableError,
    ClockSkewTooLargeError,
    InteractionRepositoryError,
    InvalidSettlementError,
    LedgerConflictError,
    LedgerRepositoryError,
    RecipeLedgerError,
    RecipeNotFoundError,
    RecipeNotPaidError,
    UnlockInProgressError,
    WorkerConfigurationError,
)


class TestRecipeLedgerError:
    def test_base_exception(self) -> None:
        error = RecipeLedgerError("Base error")
        assert str(error) == "Base error"
        assert isinstance(error, Exception)


class TestRecipeErrors:
    def test_not_found_keeps_recipe_id(self) -> None:
        recipe_id = uuid4()
        error = RecipeNotFoundError(recipe_id)
        assert error.recipe_id == recipe_id
        assert str(recipe_id) in str(error)

    def test_not_paid_message(self) -> None:
        error = RecipeNotPaidError(uuid4())
        assert "not for sale" in str(error)


class TestLedgerConflictError:
    def test_default_message(self) -> None:
        error = LedgerConflictError(uuid4(), uuid4())
        assert "re-check entitlement" in str(error)
        assert error.existing is None

    def test_custom_message(self) -> None:
        user_id = uuid4()
        error = LedgerConflictError(user_id, uuid4(), message="Resolved concurrently")
        assert str(error).startswith("Resolved concurrently")
        assert error.user_id == user_id


class TestUnlockInProgressError:
    def test_attributes(self) -> None:
        user_id, recipe_id = uuid4(), uuid4()
        error = UnlockInProgressError(user_id, recipe_id)
        assert error.user_id == user_id
        assert error.recipe_id == recipe_id
        assert "in progress" in str(error)


class TestInvalidSettlementError:
    def test_attributes(self) -> None:
        error = InvalidSettlementError(499, 74, 425, "expected platform fee 75")
        assert error.amount_paid == 499
        assert error.platform_fee == 74
        assert error.creator_payout == 425
        assert "499 = 74 + 425" in str(error)


class TestAuthorizationErrors:
    def test_declined_not_retryable(self) -> None:
        error = AuthorizationDeclinedError()
        assert str(error) == "Payment declined"
        assert error.retryable is False
        assert isinstance(error, AuthorizationError)

    def test_declined_custom_reason(self) -> None:
        error = AuthorizationDeclinedError("Insufficient funds")
        assert error.reason == "Insufficient funds"

    def test_timeout_retryable(self) -> None:
        error = AuthorizationTimeoutError(10.0)
        assert error.retryable is True
        assert error.timeout_seconds == 10.0
        assert "timed out" in str(error)

    def test_unavailable_retryable(self) -> None:
        error = AuthorizerUnavailableError("HTTP 500")
        assert error.retryable is True
        assert "HTTP 500" in str(error)


class TestRepositoryErrors:
    def test_ledger_repository_error(self) -> None:
        error = LedgerRepositoryError("put", "connection refused")
        assert error.operation == "put"
        assert error.reason == "connection refused"
        assert "put" in str(error)

    def test_interaction_repository_error(self) -> None:
        error = InteractionRepositoryError("append", "timeout")
        assert error.operation == "append"
        assert "timeout" in str(error)


class TestClockSkewTooLargeError:
    def test_attributes(self) -> None:
        occurred = datetime(2026, 1, 1, tzinfo=timezone.utc)
        error = ClockSkewTooLargeError(occurred, 300)
        assert error.occurred_at == occurred
        assert error.max_skew_seconds == 300
        assert "300s" in str(error)


class TestWorkerConfigurationError:
    def test_lists_errors(self) -> None:
        error = WorkerConfigurationError(["SUPABASE_URL is required", "SUPABASE_SERVICE_ROLE_KEY is required"])
        assert len(error.errors) == 2
        assert "SUPABASE_URL is required" in str(error)

    def test_is_catchable_as_base(self) -> None:
        with pytest.raises(RecipeLedgerError):
            raise WorkerConfigurationError(["bad"])
