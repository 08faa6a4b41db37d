# recipe_ledger/app/deps.py (singletons exposed as FastAPI dependencies)

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from supabase import Client, create_client

from recipe_ledger.app.config import settings
from recipe_ledger.app.infra.db.base import (
    InteractionEventRepository,
    RecipeCatalog,
    UnlockLedgerRepository,
)
from recipe_ledger.app.infra.db.memory_repo import (
    InMemoryInteractionEventRepository,
    InMemoryRecipeCatalog,
    InMemoryUnlockLedgerRepository,
)
from recipe_ledger.app.infra.db.supabase_ledger_repo import (
    SupabaseInteractionEventRepository,
    SupabaseRecipeCatalog,
    SupabaseUnlockLedgerRepository,
)
from recipe_ledger.app.infra.payments.base import Authorizer
from recipe_ledger.app.infra.payments.http_authorizer import HttpAuthorizer
from recipe_ledger.app.infra.payments.simulated import SimulatedAuthorizer
from recipe_ledger.app.services.entitlement_gate import EntitlementGate
from recipe_ledger.app.services.interaction_recorder import InteractionRecorder
from recipe_ledger.app.services.ledger_sweeper import LedgerSweeper
from recipe_ledger.app.services.recommendation_scorer import AffinityCache, RecommendationScorer
from recipe_ledger.app.services.settlement_service import SettlementService
from recipe_ledger.app.services.unlock_service import UnlockService

_client: Client | None = None


def get_supabase() -> Client:
    global _client
    if _client is None:
        if settings.SUPABASE_URL is None or not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY required")
        _client = create_client(str(settings.SUPABASE_URL),
                                settings.SUPABASE_SERVICE_ROLE_KEY)
    return _client


def _use_memory_backend() -> bool:
    return settings.LEDGER_BACKEND == "memory"


@lru_cache(maxsize=1)
def get_ledger_repository() -> UnlockLedgerRepository:
    if _use_memory_backend():
        return InMemoryUnlockLedgerRepository()
    return SupabaseUnlockLedgerRepository(get_supabase())


@lru_cache(maxsize=1)
def get_interaction_repository() -> InteractionEventRepository:
    if _use_memory_backend():
        return InMemoryInteractionEventRepository()
    return SupabaseInteractionEventRepository(get_supabase())


@lru_cache(maxsize=1)
def get_recipe_catalog() -> RecipeCatalog:
    if _use_memory_backend():
        if settings.MEMORY_RECIPES_FILE:
            return InMemoryRecipeCatalog.from_json_file(settings.MEMORY_RECIPES_FILE)
        return InMemoryRecipeCatalog()
    return SupabaseRecipeCatalog(get_supabase())


@lru_cache(maxsize=1)
def get_authorizer() -> Authorizer:
    if settings.AUTHORIZER_URL:
        return HttpAuthorizer(
            base_url=settings.AUTHORIZER_URL,
            api_key=settings.AUTHORIZER_API_KEY or None,
            timeout=settings.AUTHORIZER_TIMEOUT_SECONDS,
        )
    return SimulatedAuthorizer(delay_seconds=settings.SIMULATED_AUTHORIZER_DELAY_SECONDS)


@lru_cache(maxsize=1)
def get_unlock_service() -> UnlockService:
    return UnlockService(
        ledger=get_ledger_repository(),
        catalog=get_recipe_catalog(),
        authorizer=get_authorizer(),
        fee_percent=settings.PLATFORM_FEE_PERCENT,
        currency=settings.CURRENCY,
        authorizer_timeout_seconds=settings.AUTHORIZER_TIMEOUT_SECONDS,
    )


@lru_cache(maxsize=1)
def get_ledger_sweeper() -> LedgerSweeper:
    return LedgerSweeper(
        ledger=get_ledger_repository(),
        stale_after_seconds=settings.PENDING_STALE_SECONDS,
    )


@lru_cache(maxsize=1)
def get_entitlement_gate() -> EntitlementGate:
    return EntitlementGate(ledger=get_ledger_repository(), catalog=get_recipe_catalog())


@lru_cache(maxsize=1)
def get_settlement_service() -> SettlementService:
    return SettlementService(ledger=get_ledger_repository(), currency=settings.CURRENCY)


@lru_cache(maxsize=1)
def get_recommendation_scorer() -> RecommendationScorer:
    cache = None
    if settings.RECOMMENDATION_CACHE_TTL_SECONDS > 0:
        cache = AffinityCache(ttl_seconds=settings.RECOMMENDATION_CACHE_TTL_SECONDS)
    return RecommendationScorer(
        repository=get_interaction_repository(),
        half_life_days=settings.DECAY_HALF_LIFE_DAYS,
        cache=cache,
    )


@lru_cache(maxsize=1)
def get_interaction_recorder() -> InteractionRecorder:
    recorder = InteractionRecorder(
        repository=get_interaction_repository(),
        max_clock_skew_seconds=settings.MAX_CLOCK_SKEW_SECONDS,
    )
    recorder.subscribe(get_recommendation_scorer().observe)
    return recorder


auth_scheme = HTTPBearer(auto_error=False)

class CurrentUser(BaseModel):
    id: str
    email: str | None = None
    name: str | None = None

async def get_current_user(
    cred: HTTPAuthorizationCredentials | None = Depends(auth_scheme),
    supa: Client = Depends(get_supabase),
) -> CurrentUser:
    """
    Takes Authorization: Bearer <access_token> issued by Supabase,
    validates it against GoTrue and returns the minimal user data.
    """
    if cred is None or cred.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    token = cred.credentials
    try:
        res = supa.auth.get_user(token)
        user = res.user
        if not user:
            raise HTTPException(status_code=401, detail="Invalid token")

        name = None
        meta = getattr(user, "user_metadata", None) or {}
        if isinstance(meta, dict):
            name = meta.get("name")

        return CurrentUser(id=str(user.id), email=user.email, name=name)
    except HTTPException:
        raise
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid/expired token")
