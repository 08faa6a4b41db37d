from __future__ import annotations

import logging
from uuid import UUID

from recipe_ledger.app.domain.errors import RecipeNotFoundError
from recipe_ledger.app.domain.models import UnlockStatus
from recipe_ledger.app.infra.db.base import RecipeCatalog, UnlockLedgerRepository

logger = logging.getLogger(__name__)


class EntitlementGate:
    """Read-only answer to "can this user see this recipe's full content"."""

    def __init__(self, ledger: UnlockLedgerRepository, catalog: RecipeCatalog):
        self._ledger = ledger
        self._catalog = catalog

    def is_unlocked(self, user_id: UUID, recipe_id: UUID) -> bool:
        recipe = self._catalog.get_recipe(recipe_id)
        if recipe is None:
            raise RecipeNotFoundError(recipe_id)

        if not recipe.requires_purchase or recipe.creator_id == user_id:
            return True

        record = self._ledger.get(user_id, recipe_id)
        return record is not None and record.status == UnlockStatus.COMPLETED
