# recipe_ledger/app/services/unlock_service.py
"""
Unlock service.
Orchestrates one-time purchases of paid recipes against the ledger.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from recipe_ledger.app.domain.errors import (
    AuthorizationError,
    AuthorizationTimeoutError,
    LedgerConflictError,
    RecipeNotFoundError,
    RecipeNotPaidError,
    UnlockInProgressError,
)
from recipe_ledger.app.domain.models import (
    DEFAULT_CURRENCY,
    DEFAULT_PLATFORM_FEE_PERCENT,
    AuthorizationResult,
    Recipe,
    UnlockOutcome,
    UnlockRecord,
    UnlockResult,
    UnlockStatus,
    split_revenue,
)
from recipe_ledger.app.infra.db.base import RecipeCatalog, UnlockLedgerRepository
from recipe_ledger.app.infra.payments.base import Authorizer

logger = logging.getLogger(__name__)

DEFAULT_AUTHORIZER_TIMEOUT_SECONDS = 10.0
AUTHORIZER_POOL_SIZE = 8


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class UnlockService:
    """
    Service for unlocking paid recipes.

    Responsibilities:
    - Claim the (user, recipe) pair with a PENDING ledger record
    - Authorize the exact captured price with a bounded timeout
    - Split revenue and commit exactly one terminal state per attempt
    """

    def __init__(
        self,
        ledger: UnlockLedgerRepository,
        catalog: RecipeCatalog,
        authorizer: Authorizer,
        fee_percent: int = DEFAULT_PLATFORM_FEE_PERCENT,
        currency: str = DEFAULT_CURRENCY,
        authorizer_timeout_seconds: float = DEFAULT_AUTHORIZER_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _now_utc,
    ):
        self._ledger = ledger
        self._catalog = catalog
        self._authorizer = authorizer
        self.fee_percent = fee_percent
        self.currency = currency
        self.authorizer_timeout_seconds = authorizer_timeout_seconds
        self._clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=AUTHORIZER_POOL_SIZE,
            thread_name_prefix="authorizer",
        )

    def unlock(
        self,
        user_id: UUID,
        recipe_id: UUID,
        authorization_token: str,
    ) -> UnlockResult:
        """
        Unlock a recipe for a user. Safe to retry with the same arguments.

        Args:
            user_id: The buyer
            recipe_id: The recipe to unlock
            authorization_token: Token from the client's payment flow

        Returns:
            UnlockResult with COMPLETED, FAILED or ALREADY_UNLOCKED

        Raises:
            RecipeNotFoundError: unknown recipe
            UnlockInProgressError: another attempt for the pair is PENDING
            LedgerConflictError: the attempt was resolved concurrently
            LedgerRepositoryError: the ledger could not be written
        """
        recipe = self._load_recipe(recipe_id)

        try:
            self._require_purchase(recipe, user_id)
        except RecipeNotPaidError:
            logger.debug("No purchase needed: user=%s, recipe=%s", user_id, recipe_id)
            return UnlockResult(status=UnlockOutcome.ALREADY_UNLOCKED)

        pending = UnlockRecord.pending(
            user_id=user_id,
            recipe_id=recipe_id,
            creator_id=recipe.creator_id,
            amount_paid=recipe.price_minor,
            created_at=self._clock(),
            currency=self.currency,
        )

        try:
            record = self._ledger.put(pending)
        except LedgerConflictError as conflict:
            return self._resolve_existing(conflict)

        logger.info(
            "Unlock started: record=%s, user=%s, recipe=%s, amount=%d",
            record.id, user_id, recipe_id, record.amount_paid,
        )
        return self._authorize_and_settle(record, authorization_token)

    def get_status(self, user_id: UUID, recipe_id: UUID) -> Optional[UnlockRecord]:
        return self._ledger.get(user_id, recipe_id)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def _load_recipe(self, recipe_id: UUID) -> Recipe:
        recipe = self._catalog.get_recipe(recipe_id)
        if recipe is None:
            raise RecipeNotFoundError(recipe_id)
        return recipe

    @staticmethod
    def _require_purchase(recipe: Recipe, user_id: UUID) -> None:
        if not recipe.requires_purchase or recipe.creator_id == user_id:
            raise RecipeNotPaidError(recipe.id)

    def _resolve_existing(self, conflict: LedgerConflictError) -> UnlockResult:
        existing = conflict.existing

        if existing is None:
            raise conflict

        if existing.status == UnlockStatus.COMPLETED:
            logger.info("Recipe already unlocked: user=%s, recipe=%s", existing.user_id, existing.recipe_id)
            return UnlockResult.from_record(existing, UnlockOutcome.ALREADY_UNLOCKED)

        raise UnlockInProgressError(existing.user_id, existing.recipe_id)

    def _authorize_and_settle(self, record: UnlockRecord, token: str) -> UnlockResult:
        try:
            authorization = self._call_authorizer(record, token)
        except AuthorizationError as error:
            return self._fail(record, str(error), error.retryable)
        except Exception:
            logger.exception("Authorizer raised unexpectedly: record=%s", record.id)
            self._fail(record, "Authorizer error", retryable=True)
            raise

        if authorization.amount != record.amount_paid:
            return self._fail(
                record,
                f"Authorized amount {authorization.amount} does not match price {record.amount_paid}",
                retryable=False,
            )

        split = split_revenue(record.amount_paid, self.fee_percent)
        completed = self._ledger.transition(
            record,
            UnlockStatus.COMPLETED,
            platform_fee=split.platform_fee,
            creator_payout=split.creator_payout,
            external_authorization_id=authorization.authorization_id,
            now=self._clock(),
        )

        if completed is None:
            logger.warning(
                "Unlock attempt resolved concurrently after authorization: record=%s, authorization=%s",
                record.id, authorization.authorization_id,
            )
            raise LedgerConflictError(
                record.user_id, record.recipe_id,
                existing=self._ledger.get(record.user_id, record.recipe_id),
                message="Unlock attempt was resolved concurrently",
            )

        logger.info(
            "Unlock completed: record=%s, amount=%d, platform_fee=%d, creator_payout=%d",
            completed.id, completed.amount_paid, completed.platform_fee, completed.creator_payout,
        )
        return UnlockResult.from_record(completed, UnlockOutcome.COMPLETED)

    def _call_authorizer(self, record: UnlockRecord, token: str) -> AuthorizationResult:
        metadata = {
            "record_id": str(record.id),
            "recipe_id": str(record.recipe_id),
            "buyer_id": str(record.user_id),
            "seller_id": str(record.creator_id),
        }
        future = self._executor.submit(
            self._authorizer.authorize,
            token,
            record.amount_paid,
            record.currency,
            metadata,
        )

        try:
            return future.result(timeout=self.authorizer_timeout_seconds)
        except FutureTimeoutError as error:
            future.cancel()
            raise AuthorizationTimeoutError(self.authorizer_timeout_seconds) from error

    def _fail(self, record: UnlockRecord, reason: str, retryable: bool) -> UnlockResult:
        failed = self._ledger.transition(
            record,
            UnlockStatus.FAILED,
            failure_reason=reason,
            now=self._clock(),
        )

        if failed is None:
            logger.info("Unlock attempt already failed elsewhere: record=%s", record.id)
        else:
            logger.warning(
                "Unlock failed: record=%s, retryable=%s, reason=%s",
                record.id, retryable, reason,
            )

        return UnlockResult(
            status=UnlockOutcome.FAILED,
            amount_paid=record.amount_paid,
            record_id=record.id,
            failure_reason=reason,
            retryable=retryable,
        )
