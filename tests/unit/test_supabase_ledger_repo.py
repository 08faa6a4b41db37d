from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from uuid import uuid4

import httpx
import pytest
from postgrest.exceptions import APIError

from recipe_ledger.app.domain.errors import (
    InteractionRepositoryError,
    LedgerConflictError,
    LedgerRepositoryError,
)
from recipe_ledger.app.domain.models import InteractionEvent, InteractionType, UnlockRecord, UnlockStatus
from recipe_ledger.app.infra.db.supabase_ledger_repo import (
    SupabaseInteractionEventRepository,
    SupabaseRecipeCatalog,
    SupabaseUnlockLedgerRepository,
    _parse_datetime,
    _record_to_row,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class QueryStub:
    def __init__(self, client: "SupabaseClientStub", table: str) -> None:
        self._client = client
        self.table = table
        self.calls: list[tuple[str, tuple]] = []
        client.queries.append(self)

    def _chain(self, name: str, *args) -> "QueryStub":
        self.calls.append((name, args))
        return self

    def select(self, *args, **kwargs) -> "QueryStub":
        return self._chain("select", *args)

    def insert(self, row) -> "QueryStub":
        return self._chain("insert", row)

    def update(self, data) -> "QueryStub":
        return self._chain("update", data)

    def eq(self, column, value) -> "QueryStub":
        return self._chain("eq", column, value)

    def lt(self, column, value) -> "QueryStub":
        return self._chain("lt", column, value)

    def in_(self, column, values) -> "QueryStub":
        return self._chain("in_", column, values)

    def order(self, column, desc: bool = False) -> "QueryStub":
        return self._chain("order", column, desc)

    def limit(self, count) -> "QueryStub":
        return self._chain("limit", count)

    def range(self, start, end) -> "QueryStub":
        return self._chain("range", start, end)

    def execute(self) -> SimpleNamespace:
        outcome = self._client.results.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(data=outcome)


class SupabaseClientStub:
    def __init__(self, *results) -> None:
        self.results: list = list(results)
        self.queries: list[QueryStub] = []

    def table(self, name: str) -> QueryStub:
        return QueryStub(self, name)


def create_record(status: UnlockStatus = UnlockStatus.PENDING) -> UnlockRecord:
    record = UnlockRecord.pending(uuid4(), uuid4(), uuid4(), 499, NOW)
    record.status = status
    if status == UnlockStatus.COMPLETED:
        record.platform_fee = 75
        record.creator_payout = 424
        record.completed_at = NOW
    return record


def unique_violation() -> APIError:
    return APIError({
        "message": "duplicate key value violates unique constraint",
        "code": "23505",
        "hint": None,
        "details": None,
    })


class TestSupabaseUnlockLedgerPut:
    def test_insert_returns_stored_row(self) -> None:
        record = create_record()
        client = SupabaseClientStub([_record_to_row(record)])
        repo = SupabaseUnlockLedgerRepository(client)

        stored = repo.put(record)

        assert stored.id == record.id
        assert stored.status == UnlockStatus.PENDING
        assert stored.created_at == NOW
        assert client.queries[0].table == "unlock_records"
        assert client.queries[0].calls[0][0] == "insert"

    def test_unique_violation_becomes_conflict_with_existing(self) -> None:
        record = create_record()
        existing = create_record(UnlockStatus.COMPLETED)
        client = SupabaseClientStub(unique_violation(), [_record_to_row(existing)])
        repo = SupabaseUnlockLedgerRepository(client)

        with pytest.raises(LedgerConflictError) as exc_info:
            repo.put(record)

        assert exc_info.value.existing.id == existing.id
        assert exc_info.value.existing.status == UnlockStatus.COMPLETED
        lookup = client.queries[1].calls
        assert ("in_", ("status", ["PENDING", "COMPLETED"])) in lookup

    def test_other_api_error_becomes_repository_error(self) -> None:
        client = SupabaseClientStub(APIError({"message": "boom", "code": "XX000", "hint": None, "details": None}))

        with pytest.raises(LedgerRepositoryError) as exc_info:
            SupabaseUnlockLedgerRepository(client).put(create_record())

        assert exc_info.value.operation == "put"

    def test_network_error_becomes_repository_error(self) -> None:
        client = SupabaseClientStub(httpx.ConnectError("refused"))

        with pytest.raises(LedgerRepositoryError):
            SupabaseUnlockLedgerRepository(client).put(create_record())

    def test_empty_insert_result_is_error(self) -> None:
        client = SupabaseClientStub([])

        with pytest.raises(LedgerRepositoryError):
            SupabaseUnlockLedgerRepository(client).put(create_record())


class TestSupabaseUnlockLedgerTransition:
    def test_guarded_by_pending_status(self) -> None:
        record = create_record()
        completed = create_record(UnlockStatus.COMPLETED)
        completed.id = record.id
        client = SupabaseClientStub([_record_to_row(completed)])

        result = SupabaseUnlockLedgerRepository(client).transition(
            record, UnlockStatus.COMPLETED, platform_fee=75, creator_payout=424, now=NOW,
        )

        assert result.status == UnlockStatus.COMPLETED
        calls = client.queries[0].calls
        assert ("eq", ("id", str(record.id))) in calls
        assert ("eq", ("user_id", str(record.user_id))) in calls
        assert ("eq", ("recipe_id", str(record.recipe_id))) in calls
        assert ("eq", ("status", "PENDING")) in calls
        update = calls[0][1][0]
        assert update["platform_fee"] == 75
        assert update["creator_payout"] == 424

    def test_no_rows_means_already_resolved(self) -> None:
        client = SupabaseClientStub([])

        result = SupabaseUnlockLedgerRepository(client).transition(
            create_record(), UnlockStatus.FAILED, failure_reason="stale",
        )

        assert result is None

    def test_failed_update_omits_split(self) -> None:
        client = SupabaseClientStub([])

        SupabaseUnlockLedgerRepository(client).transition(create_record(), UnlockStatus.FAILED, failure_reason="x")

        update = client.queries[0].calls[0][1][0]
        assert "platform_fee" not in update

    def test_invalid_transition_never_reaches_database(self) -> None:
        client = SupabaseClientStub()

        with pytest.raises(ValueError):
            SupabaseUnlockLedgerRepository(client).transition(create_record(), UnlockStatus.PENDING)

        assert client.queries == []


class TestSupabaseUnlockLedgerQueries:
    def test_get_prefers_completed(self) -> None:
        failed = create_record(UnlockStatus.FAILED)
        completed = create_record(UnlockStatus.COMPLETED)
        client = SupabaseClientStub([_record_to_row(failed), _record_to_row(completed)])

        record = SupabaseUnlockLedgerRepository(client).get(uuid4(), uuid4())

        assert record.id == completed.id

    def test_get_none(self) -> None:
        assert SupabaseUnlockLedgerRepository(SupabaseClientStub([])).get(uuid4(), uuid4()) is None

    def test_find_stale_pending_filters(self) -> None:
        client = SupabaseClientStub([])

        SupabaseUnlockLedgerRepository(client).find_stale_pending(NOW, limit=10)

        calls = client.queries[0].calls
        assert ("eq", ("status", "PENDING")) in calls
        assert ("lt", ("created_at", NOW.isoformat())) in calls
        assert ("limit", (10,)) in calls

    def test_list_settlements_pages(self) -> None:
        client = SupabaseClientStub([])

        SupabaseUnlockLedgerRepository(client).list_settlements(uuid4(), limit=20, offset=40)

        assert ("range", (40, 59)) in client.queries[0].calls


class TestSupabaseInteractionEventRepository:
    def test_append(self) -> None:
        event = InteractionEvent(uuid4(), uuid4(), InteractionType.FAVORITE, NOW, recorded_at=NOW)
        row = {
            "id": str(event.id),
            "user_id": str(event.user_id),
            "recipe_id": str(event.recipe_id),
            "event_type": "FAVORITE",
            "occurred_at": NOW.isoformat(),
            "recorded_at": NOW.isoformat(),
        }
        client = SupabaseClientStub([row])

        stored = SupabaseInteractionEventRepository(client).append(event)

        assert stored.id == event.id
        assert stored.event_type == InteractionType.FAVORITE
        assert client.queries[0].table == "interaction_events"

    def test_append_failure(self) -> None:
        client = SupabaseClientStub(httpx.ReadTimeout("slow"))
        event = InteractionEvent(uuid4(), uuid4(), InteractionType.VIEW, NOW)

        with pytest.raises(InteractionRepositoryError):
            SupabaseInteractionEventRepository(client).append(event)

    def test_list_events_empty_recipe_filter_skips_query(self) -> None:
        client = SupabaseClientStub()

        assert SupabaseInteractionEventRepository(client).list_events(uuid4(), []) == []
        assert client.queries == []


class TestSupabaseRecipeCatalog:
    def test_price_converted_to_minor_units(self) -> None:
        recipe_id, creator_id = uuid4(), uuid4()
        client = SupabaseClientStub([
            {"id": str(recipe_id), "user_id": str(creator_id), "price": "4.99", "is_paid": True},
        ])

        recipe = SupabaseRecipeCatalog(client).get_recipe(recipe_id)

        assert recipe.price_minor == 499
        assert recipe.creator_id == creator_id
        assert recipe.requires_purchase is True

    def test_missing_price_not_for_sale(self) -> None:
        recipe_id = uuid4()
        client = SupabaseClientStub([
            {"id": str(recipe_id), "user_id": str(uuid4()), "price": None, "is_paid": True},
        ])

        assert SupabaseRecipeCatalog(client).get_recipe(recipe_id).requires_purchase is False

    def test_unknown_recipe(self) -> None:
        assert SupabaseRecipeCatalog(SupabaseClientStub([])).get_recipe(uuid4()) is None


class TestParseDatetime:
    def test_z_suffix(self) -> None:
        assert _parse_datetime("2026-03-01T12:00:00Z") == NOW

    def test_invalid(self) -> None:
        assert _parse_datetime("not a date") is None
