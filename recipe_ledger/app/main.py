# recipe_ledger/app/main.py
from __future__ import annotations
import asyncio
import logging
import sys
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from recipe_ledger.app.config import settings
from recipe_ledger.app.deps import get_ledger_sweeper, get_recipe_catalog, get_unlock_service
from recipe_ledger.app.routers.v2.interactions import router as interactions_v2_router
from recipe_ledger.app.routers.v2.recommendations import router as recommendations_v2_router
from recipe_ledger.app.routers.v2.unlocks import router as unlocks_v2_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Recipe Ledger API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(unlocks_v2_router)
app.include_router(interactions_v2_router)
app.include_router(recommendations_v2_router)

_sweeper_task: Optional[asyncio.Task] = None


async def _sweep_forever() -> None:
    # In-memory ledger lives in this process, so the standalone worker cannot reach it
    sweeper = get_ledger_sweeper()
    interval = max(1, settings.PENDING_STALE_SECONDS // 2)
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(sweeper.sweep)
        except Exception:
            logger.exception("In-process ledger sweep failed")


@app.on_event("startup")
async def startup() -> None:
    global _sweeper_task
    if settings.LEDGER_BACKEND == "memory":
        # Seed catalog is read once, at boot
        get_recipe_catalog()
        _sweeper_task = asyncio.create_task(_sweep_forever())
        logger.info("Ledger backend is in-memory; in-process sweeper started")


@app.on_event("shutdown")
async def shutdown() -> None:
    global _sweeper_task
    if _sweeper_task is not None:
        _sweeper_task.cancel()
        _sweeper_task = None
    get_unlock_service().close()


@app.get("/health")
def health():
    return {"ok": True}
