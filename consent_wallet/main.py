"""FastAPI application entry point: wires everything together.

Usage:
    python -m consent_wallet.main

Starts the background process (store, timers, router) behind a small HTTP API.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from consent_wallet.api.routes import router as wallet_router
from consent_wallet.config import settings
from consent_wallet.events.audit import audit_on_event
from consent_wallet.schemas.events import EventType, SystemEvent
from consent_wallet.service import ConsentWalletService
from consent_wallet.store.engine import store_lifespan

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting consent wallet (env=%s)", settings.environment)

    # 1. Service graph + audit subscriber on its event bus
    service = ConsentWalletService.build()
    service.events.subscribe(audit_on_event)
    await service.events.start()

    # 2. Store and timers; the store closes when this block exits
    async with store_lifespan(service.store):
        await service.start()
        app.state.service = service

        # 3. Ledger (only if an account and contract are configured)
        if settings.ledger.account and settings.ledger.contract_address:
            if not await service.ledger.connect(settings.ledger.account):
                logger.warning("Ledger connection failed: consents served from local cache only")
        else:
            logger.warning("LEDGER_ACCOUNT / LEDGER_CONTRACT_ADDRESS not set: ledger disabled")

        await service.events.emit(SystemEvent(event_type=EventType.SYSTEM_STARTUP, source_module="main"))

        try:
            yield
        finally:
            logger.info("Shutting down consent wallet...")
            await service.events.emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))

            await service.stop()
            await service.events.stop()

    logger.info("Consent wallet shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Consent Wallet API",
    description="Consent tokens recorded on-chain, reconciled locally",
    version="0.1.0",
    docs_url=None if settings.is_production else "/docs",
    lifespan=lifespan,
)
app.include_router(wallet_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "network": settings.ledger.network_name,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "consent_wallet.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
