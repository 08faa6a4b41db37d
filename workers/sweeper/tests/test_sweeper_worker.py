from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from recipe_ledger.app.domain.errors import LedgerRepositoryError, WorkerConfigurationError
from recipe_ledger.app.domain.models import UnlockRecord, UnlockStatus
from recipe_ledger.app.infra.db.memory_repo import InMemoryUnlockLedgerRepository
from workers.sweeper.config import WorkerConfig
from workers.sweeper.main import SweeperWorker


class UnavailableLedgerStub(InMemoryUnlockLedgerRepository):
    def __init__(self) -> None:
        super().__init__()
        self.find_calls = 0

    def find_stale_pending(self, cutoff: datetime, limit: int = 100) -> list[UnlockRecord]:
        self.find_calls += 1
        raise LedgerRepositoryError("find_stale_pending", "connection refused")


def create_test_config() -> WorkerConfig:
    return WorkerConfig(
        worker_id="test-sweeper",
        sweep_interval_seconds=1,
        pending_stale_seconds=60,
        batch_size=10,
        max_sweeps_per_run=1,
        supabase_url="https://test.supabase.co",
        supabase_key="test-key",
    )


def add_pending(ledger: InMemoryUnlockLedgerRepository, age_seconds: int) -> UnlockRecord:
    created_at = datetime.now(timezone.utc) - timedelta(seconds=age_seconds)
    return ledger.put(UnlockRecord.pending(uuid4(), uuid4(), uuid4(), 499, created_at))


class TestSweeperWorkerRun:
    def test_run_once_reclaims_stale(self) -> None:
        ledger = InMemoryUnlockLedgerRepository()
        stale = add_pending(ledger, age_seconds=600)
        fresh = add_pending(ledger, age_seconds=1)
        worker = SweeperWorker(config=create_test_config(), ledger_repository=ledger)

        reclaimed = worker.run_once()

        assert reclaimed == 1
        assert ledger.get(stale.user_id, stale.recipe_id).status == UnlockStatus.FAILED
        assert ledger.get(fresh.user_id, fresh.recipe_id).status == UnlockStatus.PENDING
        assert worker.sweeps_run == 1
        assert worker.records_reclaimed == 1

    def test_repository_failure_does_not_stop_worker(self) -> None:
        ledger = UnavailableLedgerStub()
        worker = SweeperWorker(config=create_test_config(), ledger_repository=ledger)

        assert worker.run_once() == 0
        assert worker.sweeps_run == 1
        assert ledger.find_calls == 1

    def test_main_loop_stops_after_max_sweeps(self) -> None:
        ledger = InMemoryUnlockLedgerRepository()
        add_pending(ledger, age_seconds=600)
        config = create_test_config()
        config.max_sweeps_per_run = 1
        worker = SweeperWorker(config=config, ledger_repository=ledger)
        worker.running = True

        worker._run_main_loop()

        assert worker.sweeps_run == 1
        assert worker.records_reclaimed == 1

    def test_shutdown_signal_stops_loop(self) -> None:
        worker = SweeperWorker(config=create_test_config(), ledger_repository=InMemoryUnlockLedgerRepository())
        worker.running = True

        worker._handle_shutdown_signal(15, None)

        assert worker.running is False

    def test_reached_max_sweeps_unlimited(self) -> None:
        config = create_test_config()
        config.max_sweeps_per_run = 0
        worker = SweeperWorker(config=config, ledger_repository=InMemoryUnlockLedgerRepository())
        worker.sweeps_run = 1000

        assert worker._reached_max_sweeps() is False


class TestSweeperWorkerConfiguration:
    def test_configuration_validation_passes(self) -> None:
        assert create_test_config().validate() == []

    def test_missing_supabase_settings(self) -> None:
        config = create_test_config()
        config.supabase_url = ""
        config.supabase_key = ""

        errors = config.validate()

        assert "SUPABASE_URL is required" in errors
        assert "SUPABASE_SERVICE_ROLE_KEY is required" in errors

    def test_non_positive_values_rejected(self) -> None:
        config = create_test_config()
        config.batch_size = 0
        config.pending_stale_seconds = -1

        assert len(config.validate()) == 2

    def test_worker_refuses_invalid_configuration(self) -> None:
        config = create_test_config()
        config.supabase_url = ""
        worker = SweeperWorker(config=config, ledger_repository=InMemoryUnlockLedgerRepository())

        with pytest.raises(WorkerConfigurationError):
            worker._validate_configuration()
