from __future__ import annotations

import json
import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence
from uuid import UUID

from recipe_ledger.app.domain.errors import InvalidSettlementError, LedgerConflictError
from recipe_ledger.app.domain.models import (
    InteractionEvent,
    Recipe,
    UnlockRecord,
    UnlockStatus,
)
from recipe_ledger.app.infra.db.base import (
    InteractionEventRepository,
    RecipeCatalog,
    UnlockLedgerRepository,
)

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def check_transition(
    to_status: UnlockStatus,
    amount_paid: int,
    platform_fee: Optional[int],
    creator_payout: Optional[int],
) -> None:
    if to_status == UnlockStatus.PENDING:
        raise ValueError("Records can only leave PENDING, not enter it")

    if to_status != UnlockStatus.COMPLETED:
        return

    if platform_fee is None or creator_payout is None:
        raise InvalidSettlementError(
            amount_paid, platform_fee or 0, creator_payout or 0,
            "fee and payout are required to complete",
        )
    if platform_fee + creator_payout != amount_paid:
        raise InvalidSettlementError(
            amount_paid, platform_fee, creator_payout,
            "fee and payout do not sum to amount paid",
        )


class InMemoryUnlockLedgerRepository(UnlockLedgerRepository):
    """
    Ledger kept in process memory. A single lock makes put and transition
    behave like single-row atomic statements.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[UUID, UnlockRecord] = {}

    def put(self, record: UnlockRecord) -> UnlockRecord:
        with self._lock:
            if record.is_live:
                existing = self._live_record(record.user_id, record.recipe_id)
                if existing is not None:
                    raise LedgerConflictError(
                        record.user_id, record.recipe_id, existing=replace(existing),
                        message="Live unlock record already exists",
                    )
            if record.id in self._records:
                raise LedgerConflictError(
                    record.user_id, record.recipe_id, existing=replace(self._records[record.id]),
                    message="Duplicate unlock record id",
                )
            if record.status == UnlockStatus.COMPLETED:
                check_transition(
                    UnlockStatus.COMPLETED, record.amount_paid,
                    record.platform_fee, record.creator_payout,
                )

            stored = replace(record)
            self._records[stored.id] = stored
            return replace(stored)

    def transition(
        self,
        record: UnlockRecord,
        to_status: UnlockStatus,
        *,
        platform_fee: Optional[int] = None,
        creator_payout: Optional[int] = None,
        external_authorization_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[UnlockRecord]:
        check_transition(to_status, record.amount_paid, platform_fee, creator_payout)

        with self._lock:
            stored = self._records.get(record.id)
            if (
                stored is None
                or stored.user_id != record.user_id
                or stored.recipe_id != record.recipe_id
                or stored.status != UnlockStatus.PENDING
            ):
                return None

            stored.status = to_status
            stored.external_authorization_id = external_authorization_id
            stored.failure_reason = failure_reason
            stored.completed_at = now or _now_utc()
            if to_status == UnlockStatus.COMPLETED:
                stored.platform_fee = platform_fee
                stored.creator_payout = creator_payout
            return replace(stored)

    def get(self, user_id: UUID, recipe_id: UUID) -> Optional[UnlockRecord]:
        with self._lock:
            attempts = self._attempts(user_id, recipe_id)
            if not attempts:
                return None
            completed = [r for r in attempts if r.status == UnlockStatus.COMPLETED]
            return replace(completed[0] if completed else attempts[0])

    def find_stale_pending(self, cutoff: datetime, limit: int = 100) -> list[UnlockRecord]:
        with self._lock:
            stale = [
                r for r in self._records.values()
                if r.status == UnlockStatus.PENDING and r.created_at is not None and r.created_at < cutoff
            ]
            stale.sort(key=lambda r: r.created_at)
            return [replace(r) for r in stale[:limit]]

    def list_settlements(self, creator_id: UUID, limit: int = 50, offset: int = 0) -> list[UnlockRecord]:
        with self._lock:
            completed = [
                r for r in self._records.values()
                if r.creator_id == creator_id and r.status == UnlockStatus.COMPLETED
            ]
            completed.sort(key=self._sort_key, reverse=True)
            return [replace(r) for r in completed[offset:offset + limit]]

    def list_for_user(self, user_id: UUID) -> list[UnlockRecord]:
        with self._lock:
            completed = [
                r for r in self._records.values()
                if r.user_id == user_id and r.status == UnlockStatus.COMPLETED
            ]
            completed.sort(key=self._sort_key, reverse=True)
            return [replace(r) for r in completed]

    def _live_record(self, user_id: UUID, recipe_id: UUID) -> Optional[UnlockRecord]:
        for stored in self._records.values():
            if stored.user_id == user_id and stored.recipe_id == recipe_id and stored.is_live:
                return stored
        return None

    def _attempts(self, user_id: UUID, recipe_id: UUID) -> list[UnlockRecord]:
        attempts = [
            r for r in self._records.values()
            if r.user_id == user_id and r.recipe_id == recipe_id
        ]
        attempts.sort(key=lambda r: r.created_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return attempts

    @staticmethod
    def _sort_key(record: UnlockRecord) -> datetime:
        return record.completed_at or record.created_at or datetime.min.replace(tzinfo=timezone.utc)


class InMemoryInteractionEventRepository(InteractionEventRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[InteractionEvent] = []

    def append(self, event: InteractionEvent) -> InteractionEvent:
        stored = event if event.recorded_at else replace(event, recorded_at=_now_utc())
        with self._lock:
            self._events.append(stored)
        return stored

    def list_events(
        self,
        user_id: UUID,
        recipe_ids: Optional[Sequence[UUID]] = None,
    ) -> list[InteractionEvent]:
        wanted = set(recipe_ids) if recipe_ids is not None else None
        with self._lock:
            return [
                e for e in self._events
                if e.user_id == user_id and (wanted is None or e.recipe_id in wanted)
            ]


class InMemoryRecipeCatalog(RecipeCatalog):
    def __init__(self, recipes: Optional[Sequence[Recipe]] = None) -> None:
        self._recipes: dict[UUID, Recipe] = {r.id: r for r in recipes or []}

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryRecipeCatalog":
        """Load a JSON array of ``recipes`` rows (``id``, ``user_id``, ``price``, ``is_paid``)."""
        rows = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(rows, list):
            raise ValueError(f"Recipe seed file {path} must hold a JSON array")
        catalog = cls([Recipe.from_row(row) for row in rows])
        logger.info("Loaded %d recipes into the in-memory catalog from %s", len(rows), path)
        return catalog

    def add(self, recipe: Recipe) -> None:
        self._recipes[recipe.id] = recipe
        logger.debug("Catalog recipe added: id=%s, price=%d", recipe.id, recipe.price_minor)

    def get_recipe(self, recipe_id: UUID) -> Optional[Recipe]:
        return self._recipes.get(recipe_id)
