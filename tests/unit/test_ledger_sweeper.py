from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from recipe_ledger.app.domain.models import UnlockRecord, UnlockStatus
from recipe_ledger.app.infra.db.memory_repo import InMemoryUnlockLedgerRepository
from recipe_ledger.app.services.ledger_sweeper import STALE_FAILURE_REASON, LedgerSweeper

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def add_pending(ledger: InMemoryUnlockLedgerRepository, age_seconds: int) -> UnlockRecord:
    record = UnlockRecord.pending(
        user_id=uuid4(),
        recipe_id=uuid4(),
        creator_id=uuid4(),
        amount_paid=499,
        created_at=NOW - timedelta(seconds=age_seconds),
    )
    return ledger.put(record)


class TestLedgerSweeper:
    def test_fails_only_stale_records(self) -> None:
        ledger = InMemoryUnlockLedgerRepository()
        stale = add_pending(ledger, age_seconds=120)
        fresh = add_pending(ledger, age_seconds=10)
        sweeper = LedgerSweeper(ledger, stale_after_seconds=60)

        reclaimed = sweeper.sweep(now=NOW)

        assert reclaimed == 1
        failed = ledger.get(stale.user_id, stale.recipe_id)
        assert failed.status == UnlockStatus.FAILED
        assert failed.failure_reason == STALE_FAILURE_REASON
        assert ledger.get(fresh.user_id, fresh.recipe_id).status == UnlockStatus.PENDING

    def test_completed_records_untouched(self) -> None:
        ledger = InMemoryUnlockLedgerRepository()
        record = add_pending(ledger, age_seconds=600)
        ledger.transition(record, UnlockStatus.COMPLETED, platform_fee=75, creator_payout=424)

        assert LedgerSweeper(ledger, stale_after_seconds=60).sweep(now=NOW) == 0
        assert ledger.get(record.user_id, record.recipe_id).status == UnlockStatus.COMPLETED

    def test_processes_multiple_batches(self) -> None:
        ledger = InMemoryUnlockLedgerRepository()
        for _ in range(7):
            add_pending(ledger, age_seconds=300)
        sweeper = LedgerSweeper(ledger, stale_after_seconds=60, batch_size=3)

        assert sweeper.sweep(now=NOW) == 7
        assert ledger.find_stale_pending(NOW) == []

    def test_uses_clock_when_now_omitted(self) -> None:
        ledger = InMemoryUnlockLedgerRepository()
        add_pending(ledger, age_seconds=120)
        sweeper = LedgerSweeper(ledger, stale_after_seconds=60, clock=lambda: NOW)

        assert sweeper.sweep() == 1

    def test_concurrent_sweepers_transition_each_record_once(self) -> None:
        ledger = InMemoryUnlockLedgerRepository()
        for _ in range(20):
            add_pending(ledger, age_seconds=300)
        totals: list[int] = []
        barrier = threading.Barrier(4)

        def run() -> None:
            sweeper = LedgerSweeper(ledger, stale_after_seconds=60, batch_size=5)
            barrier.wait()
            totals.append(sweeper.sweep(now=NOW))

        threads = [threading.Thread(target=run) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(totals) == 20
