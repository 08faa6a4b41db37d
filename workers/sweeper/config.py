# workers/sweeper/config.py
"""
Configuration for the ledger sweeper worker.
"""
from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class WorkerConfig:
    """Configuration for the ledger sweeper worker."""

    # Worker identification
    worker_id: str = os.getenv("WORKER_ID", f"sweeper-{os.getpid()}")

    # Polling configuration
    sweep_interval_seconds: int = int(os.getenv("SWEEPER_INTERVAL_SECONDS", "30"))

    # PENDING records older than this are failed
    pending_stale_seconds: int = int(os.getenv("PENDING_STALE_SECONDS", "60"))
    batch_size: int = int(os.getenv("SWEEPER_BATCH_SIZE", "100"))

    max_sweeps_per_run: int = int(os.getenv("SWEEPER_MAX_SWEEPS_PER_RUN", "0"))  # 0 = infinite

    # Supabase (inherited from env)
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_key: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.supabase_url:
            errors.append("SUPABASE_URL is required")
        if not self.supabase_key:
            errors.append("SUPABASE_SERVICE_ROLE_KEY is required")
        if self.sweep_interval_seconds <= 0:
            errors.append("SWEEPER_INTERVAL_SECONDS must be positive")
        if self.pending_stale_seconds <= 0:
            errors.append("PENDING_STALE_SECONDS must be positive")
        if self.batch_size <= 0:
            errors.append("SWEEPER_BATCH_SIZE must be positive")

        return errors


def get_config() -> WorkerConfig:
    """Get worker configuration from environment."""
    return WorkerConfig()
