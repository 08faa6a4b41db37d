from __future__ import annotations

import logging
import signal
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from dotenv import find_dotenv, load_dotenv

# WorkerConfig reads the environment when its module is imported
load_dotenv(find_dotenv(usecwd=True))

from recipe_ledger.app.domain.errors import LedgerRepositoryError, WorkerConfigurationError
from recipe_ledger.app.infra.db.base import UnlockLedgerRepository
from recipe_ledger.app.services.ledger_sweeper import LedgerSweeper
from workers.sweeper.config import WorkerConfig, get_config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("sweeper-worker")


class SweeperWorker:
    def __init__(
        self,
        config: WorkerConfig,
        ledger_repository: UnlockLedgerRepository,
    ):
        self.config = config
        self.sweeper = LedgerSweeper(
            ledger=ledger_repository,
            stale_after_seconds=config.pending_stale_seconds,
            batch_size=config.batch_size,
        )
        self.running = False
        self.sweeps_run = 0
        self.records_reclaimed = 0

    def start(self) -> None:
        self._validate_configuration()
        self._setup_signal_handlers()
        self._log_startup_info()
        self.running = True
        self._run_main_loop()
        self._shutdown()

    def _validate_configuration(self) -> None:
        errors = self.config.validate()
        if errors:
            raise WorkerConfigurationError(errors)

    def _setup_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_shutdown_signal)
        signal.signal(signal.SIGINT, self._handle_shutdown_signal)

    def _log_startup_info(self) -> None:
        logger.info(
            "Starting sweeper worker: id=%s, interval=%ds, stale_after=%ds",
            self.config.worker_id,
            self.config.sweep_interval_seconds,
            self.config.pending_stale_seconds,
        )

    def _run_main_loop(self) -> None:
        while self.running:
            self.run_once()

            if self._reached_max_sweeps():
                break

            time.sleep(self.config.sweep_interval_seconds)

    def run_once(self) -> int:
        try:
            reclaimed = self.sweeper.sweep()
        except LedgerRepositoryError as error:
            logger.error("Sweep failed, will retry next interval: %s", error)
            reclaimed = 0

        self.sweeps_run += 1
        self.records_reclaimed += reclaimed
        return reclaimed

    def _reached_max_sweeps(self) -> bool:
        if self.config.max_sweeps_per_run <= 0:
            return False

        if self.sweeps_run >= self.config.max_sweeps_per_run:
            logger.info(
                "Reached max sweeps per run (%d), shutting down",
                self.config.max_sweeps_per_run,
            )
            return True
        return False

    def _handle_shutdown_signal(self, signum: int, frame: object) -> None:
        logger.info("Received shutdown signal %d", signum)
        self.running = False

    def _shutdown(self) -> None:
        logger.info(
            "Worker shutting down: sweeps=%d, reclaimed=%d",
            self.sweeps_run,
            self.records_reclaimed,
        )


def create_default_dependencies(config: WorkerConfig) -> UnlockLedgerRepository:
    from supabase import create_client

    from recipe_ledger.app.infra.db.supabase_ledger_repo import SupabaseUnlockLedgerRepository

    client = create_client(config.supabase_url, config.supabase_key)
    return SupabaseUnlockLedgerRepository(client)


def main() -> None:
    config = get_config()
    errors = config.validate()
    if errors:
        raise WorkerConfigurationError(errors)

    worker = SweeperWorker(
        config=config,
        ledger_repository=create_default_dependencies(config),
    )

    worker.start()


if __name__ == "__main__":
    main()
