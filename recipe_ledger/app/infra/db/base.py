# recipe_ledger/app/infra/db/base.py
"""
Abstract base classes for the ledger, interaction log and recipe catalog.
These interfaces allow swapping between Supabase and in-memory backends.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID

from recipe_ledger.app.domain.models import (
    InteractionEvent,
    Recipe,
    UnlockRecord,
    UnlockStatus,
)


class UnlockLedgerRepository(ABC):
    """
    Durable record of unlock attempts.

    Implementations:
    - SupabaseUnlockLedgerRepository: Postgres table with a partial unique index
    - InMemoryUnlockLedgerRepository: lock-guarded dict (local mode, tests)
    """

    @abstractmethod
    def put(self, record: UnlockRecord) -> UnlockRecord:
        """
        Insert a new attempt if no live (PENDING or COMPLETED) record
        exists for the same (user_id, recipe_id).

        Args:
            record: The attempt to insert

        Returns:
            The stored record

        Raises:
            LedgerConflictError: a live record already exists; the error
                carries it in ``existing``
            LedgerRepositoryError: persistence failed
        """
        pass

    @abstractmethod
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
        """
        Atomically move a PENDING attempt to COMPLETED or FAILED.

        Args:
            record: The attempt, matched on id, user_id and recipe_id
            to_status: COMPLETED or FAILED
            platform_fee: Required for COMPLETED
            creator_payout: Required for COMPLETED
            external_authorization_id: Authorizer reference
            failure_reason: Why the attempt failed
            now: Completion timestamp (for testing)

        Returns:
            The updated record, or None if it was no longer PENDING
        """
        pass

    @abstractmethod
    def get(self, user_id: UUID, recipe_id: UUID) -> Optional[UnlockRecord]:
        """
        Current record for a pair: the COMPLETED one if any, otherwise the
        most recent attempt.
        """
        pass

    @abstractmethod
    def find_stale_pending(self, cutoff: datetime, limit: int = 100) -> list[UnlockRecord]:
        """
        PENDING attempts created before the cutoff, oldest first.
        """
        pass

    @abstractmethod
    def list_settlements(
        self,
        creator_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[UnlockRecord]:
        """
        COMPLETED records paying out to a creator, newest first.
        """
        pass

    @abstractmethod
    def list_for_user(self, user_id: UUID) -> list[UnlockRecord]:
        """
        COMPLETED records bought by a user, newest first.
        """
        pass


class InteractionEventRepository(ABC):
    """
    Append-only log of user/recipe interaction events.
    """

    @abstractmethod
    def append(self, event: InteractionEvent) -> InteractionEvent:
        """
        Store an event verbatim.

        Raises:
            InteractionRepositoryError: persistence failed
        """
        pass

    @abstractmethod
    def list_events(
        self,
        user_id: UUID,
        recipe_ids: Optional[Sequence[UUID]] = None,
    ) -> list[InteractionEvent]:
        """
        All events for a user, optionally restricted to some recipes.
        No ordering guarantee.
        """
        pass


class RecipeCatalog(ABC):
    """
    Read-only access to recipe pricing metadata.
    """

    @abstractmethod
    def get_recipe(self, recipe_id: UUID) -> Optional[Recipe]:
        pass
