from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Optional, Sequence
from uuid import UUID

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from recipe_ledger.app.domain.errors import (
    InteractionRepositoryError,
    LedgerConflictError,
    LedgerRepositoryError,
)
from recipe_ledger.app.domain.models import (
    DEFAULT_CURRENCY,
    InteractionEvent,
    InteractionType,
    Recipe,
    UnlockRecord,
    UnlockStatus,
)
from recipe_ledger.app.infra.db.base import (
    InteractionEventRepository,
    RecipeCatalog,
    UnlockLedgerRepository,
)
from recipe_ledger.app.infra.db.memory_repo import check_transition

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
PAGE_SIZE = 1000

NETWORK_ERRORS = (httpx.HTTPError, ConnectionError, TimeoutError)
DB_ERRORS = (APIError,) + NETWORK_ERRORS


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None

    try:
        normalized = value.replace("Z", "+00:00") if value.endswith("Z") else value
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


def _optional_int(value: object) -> int | None:
    return int(value) if value is not None else None


def _safe_str(value: object) -> str | None:
    return str(value) if value else None


def _row_to_record(row: dict[str, object]) -> UnlockRecord:
    return UnlockRecord(
        id=UUID(str(row["id"])),
        user_id=UUID(str(row["user_id"])),
        recipe_id=UUID(str(row["recipe_id"])),
        creator_id=UUID(str(row["creator_id"])),
        amount_paid=int(row["amount_paid"]),
        status=UnlockStatus(str(row["status"])),
        currency=str(row.get("currency") or DEFAULT_CURRENCY),
        platform_fee=_optional_int(row.get("platform_fee")),
        creator_payout=_optional_int(row.get("creator_payout")),
        external_authorization_id=_safe_str(row.get("external_authorization_id")),
        failure_reason=_safe_str(row.get("failure_reason")),
        created_at=_parse_datetime(row.get("created_at")),
        completed_at=_parse_datetime(row.get("completed_at")),
    )


def _record_to_row(record: UnlockRecord) -> dict[str, object]:
    return {
        "id": str(record.id),
        "user_id": str(record.user_id),
        "recipe_id": str(record.recipe_id),
        "creator_id": str(record.creator_id),
        "amount_paid": record.amount_paid,
        "platform_fee": record.platform_fee,
        "creator_payout": record.creator_payout,
        "currency": record.currency,
        "status": record.status.value,
        "external_authorization_id": record.external_authorization_id,
        "failure_reason": record.failure_reason,
        "created_at": (record.created_at or _now_utc()).isoformat(),
        "completed_at": record.completed_at.isoformat() if record.completed_at else None,
    }


def _row_to_event(row: dict[str, object]) -> InteractionEvent:
    return InteractionEvent(
        id=UUID(str(row["id"])),
        user_id=UUID(str(row["user_id"])),
        recipe_id=UUID(str(row["recipe_id"])),
        event_type=InteractionType(str(row["event_type"])),
        occurred_at=_parse_datetime(row.get("occurred_at")),
        recorded_at=_parse_datetime(row.get("recorded_at")),
    )


def _create_supabase_client() -> Client:
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required")
    return create_client(url, key)


class SupabaseUnlockLedgerRepository(UnlockLedgerRepository):
    """
    Ledger on the ``unlock_records`` table. The partial unique index on
    (user_id, recipe_id) for live statuses turns a plain insert into the
    insert-if-absent primitive; transitions are conditional updates.
    """
    TABLE_NAME = "unlock_records"

    def __init__(self, client: Client | None = None):
        self._client = client or _create_supabase_client()
        logger.info("SupabaseUnlockLedgerRepository initialized")

    def put(self, record: UnlockRecord) -> UnlockRecord:
        if record.status == UnlockStatus.COMPLETED:
            check_transition(
                UnlockStatus.COMPLETED, record.amount_paid,
                record.platform_fee, record.creator_payout,
            )

        try:
            result = self._client.table(self.TABLE_NAME).insert(_record_to_row(record)).execute()
        except APIError as error:
            if error.code == UNIQUE_VIOLATION:
                existing = self._find_live(record.user_id, record.recipe_id)
                raise LedgerConflictError(
                    record.user_id, record.recipe_id, existing=existing,
                    message="Live unlock record already exists",
                ) from error
            logger.error("Database error inserting unlock record: %s", error)
            raise LedgerRepositoryError("put", str(error)) from error
        except NETWORK_ERRORS as error:
            logger.error("Network error inserting unlock record: %s", error)
            raise LedgerRepositoryError("put", str(error)) from error

        if not result.data:
            raise LedgerRepositoryError("put", "insert returned no row")

        stored = _row_to_record(result.data[0])
        logger.info(
            "Unlock record inserted: id=%s, user=%s, recipe=%s, status=%s",
            stored.id, stored.user_id, stored.recipe_id, stored.status.value,
        )
        return stored

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

        update_data: dict[str, object] = {
            "status": to_status.value,
            "external_authorization_id": external_authorization_id,
            "failure_reason": failure_reason,
            "completed_at": (now or _now_utc()).isoformat(),
        }
        if to_status == UnlockStatus.COMPLETED:
            update_data["platform_fee"] = platform_fee
            update_data["creator_payout"] = creator_payout

        try:
            result = (
                self._client.table(self.TABLE_NAME)
                .update(update_data)
                .eq("id", str(record.id))
                .eq("user_id", str(record.user_id))
                .eq("recipe_id", str(record.recipe_id))
                .eq("status", UnlockStatus.PENDING.value)
                .execute()
            )
        except DB_ERRORS as error:
            logger.error("Error transitioning unlock record %s: %s", record.id, error)
            raise LedgerRepositoryError("transition", str(error)) from error

        if not result.data:
            logger.info("Unlock record %s was no longer PENDING", record.id)
            return None

        return _row_to_record(result.data[0])

    def get(self, user_id: UUID, recipe_id: UUID) -> Optional[UnlockRecord]:
        try:
            result = (
                self._client.table(self.TABLE_NAME)
                .select("*")
                .eq("user_id", str(user_id))
                .eq("recipe_id", str(recipe_id))
                .order("created_at", desc=True)
                .execute()
            )
        except DB_ERRORS as error:
            logger.error("Error reading unlock record: %s", error)
            raise LedgerRepositoryError("get", str(error)) from error

        records = [_row_to_record(row) for row in (result.data or [])]
        if not records:
            return None

        completed = [r for r in records if r.status == UnlockStatus.COMPLETED]
        return completed[0] if completed else records[0]

    def _find_live(self, user_id: UUID, recipe_id: UUID) -> Optional[UnlockRecord]:
        try:
            result = (
                self._client.table(self.TABLE_NAME)
                .select("*")
                .eq("user_id", str(user_id))
                .eq("recipe_id", str(recipe_id))
                .in_("status", [UnlockStatus.PENDING.value, UnlockStatus.COMPLETED.value])
                .limit(1)
                .execute()
            )
        except DB_ERRORS as error:
            logger.error("Error reading live unlock record: %s", error)
            raise LedgerRepositoryError("get", str(error)) from error

        return _row_to_record(result.data[0]) if result.data else None

    def find_stale_pending(self, cutoff: datetime, limit: int = 100) -> list[UnlockRecord]:
        try:
            result = (
                self._client.table(self.TABLE_NAME)
                .select("*")
                .eq("status", UnlockStatus.PENDING.value)
                .lt("created_at", cutoff.isoformat())
                .order("created_at")
                .limit(limit)
                .execute()
            )
        except DB_ERRORS as error:
            logger.error("Error finding stale unlock records: %s", error)
            raise LedgerRepositoryError("find_stale_pending", str(error)) from error

        return [_row_to_record(row) for row in (result.data or [])]

    def list_settlements(self, creator_id: UUID, limit: int = 50, offset: int = 0) -> list[UnlockRecord]:
        try:
            result = (
                self._client.table(self.TABLE_NAME)
                .select("*")
                .eq("creator_id", str(creator_id))
                .eq("status", UnlockStatus.COMPLETED.value)
                .order("completed_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        except DB_ERRORS as error:
            logger.error("Error listing settlements: %s", error)
            raise LedgerRepositoryError("list_settlements", str(error)) from error

        return [_row_to_record(row) for row in (result.data or [])]

    def list_for_user(self, user_id: UUID) -> list[UnlockRecord]:
        try:
            result = (
                self._client.table(self.TABLE_NAME)
                .select("*")
                .eq("user_id", str(user_id))
                .eq("status", UnlockStatus.COMPLETED.value)
                .order("completed_at", desc=True)
                .execute()
            )
        except DB_ERRORS as error:
            logger.error("Error listing purchases: %s", error)
            raise LedgerRepositoryError("list_for_user", str(error)) from error

        return [_row_to_record(row) for row in (result.data or [])]


class SupabaseInteractionEventRepository(InteractionEventRepository):
    TABLE_NAME = "interaction_events"

    def __init__(self, client: Client | None = None):
        self._client = client or _create_supabase_client()

    def append(self, event: InteractionEvent) -> InteractionEvent:
        row = {
            "id": str(event.id),
            "user_id": str(event.user_id),
            "recipe_id": str(event.recipe_id),
            "event_type": event.event_type.value,
            "occurred_at": event.occurred_at.isoformat(),
            "recorded_at": (event.recorded_at or _now_utc()).isoformat(),
        }

        try:
            result = self._client.table(self.TABLE_NAME).insert(row).execute()
        except DB_ERRORS as error:
            logger.error("Error appending interaction event: %s", error)
            raise InteractionRepositoryError("append", str(error)) from error

        if not result.data:
            raise InteractionRepositoryError("append", "insert returned no row")

        return _row_to_event(result.data[0])

    def list_events(
        self,
        user_id: UUID,
        recipe_ids: Optional[Sequence[UUID]] = None,
    ) -> list[InteractionEvent]:
        if recipe_ids is not None and not recipe_ids:
            return []

        events: list[InteractionEvent] = []
        offset = 0

        try:
            while True:
                query = (
                    self._client.table(self.TABLE_NAME)
                    .select("*")
                    .eq("user_id", str(user_id))
                )
                if recipe_ids is not None:
                    query = query.in_("recipe_id", [str(r) for r in recipe_ids])

                result = query.order("id").range(offset, offset + PAGE_SIZE - 1).execute()
                rows = result.data or []
                events.extend(_row_to_event(row) for row in rows)

                if len(rows) < PAGE_SIZE:
                    break
                offset += PAGE_SIZE
        except DB_ERRORS as error:
            logger.error("Error listing interaction events: %s", error)
            raise InteractionRepositoryError("list_events", str(error)) from error

        return events


class SupabaseRecipeCatalog(RecipeCatalog):
    TABLE_NAME = "recipes"

    def __init__(self, client: Client | None = None):
        self._client = client or _create_supabase_client()

    def get_recipe(self, recipe_id: UUID) -> Optional[Recipe]:
        try:
            result = (
                self._client.table(self.TABLE_NAME)
                .select("id, user_id, price, is_paid")
                .eq("id", str(recipe_id))
                .limit(1)
                .execute()
            )
        except DB_ERRORS as error:
            logger.error("Error loading recipe %s: %s", recipe_id, error)
            raise LedgerRepositoryError("get_recipe", str(error)) from error

        if not result.data:
            return None

        return Recipe.from_row(result.data[0])
