from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from faucet.api.admin import router as admin_router
from faucet.api.error_handlers import register_error_handlers
from faucet.api.public import router as public_router
from faucet.config import Settings, settings as default_settings
from faucet.domain.coordinator import ClaimCoordinator
from faucet.integrations.distributor import Distributor, build_distributor
from faucet.middleware.cors import add_cors
from faucet.middleware.rate_limit import add_rate_limit_exception_handler, init_rate_limiter
from faucet.middleware.security_headers import SecurityHeadersMiddleware
from faucet.observability import setup_logging
from faucet.reconciliation import ReconciliationLog
from faucet.store.base import ClaimStore
from faucet.store.factory import build_claim_store

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parents[1]
STATIC_DIR = BASE_DIR / "static"


def build_coordinator(
    settings: Settings,
    store: Optional[ClaimStore] = None,
    distributor: Optional[Distributor] = None,
) -> ClaimCoordinator:
    if settings.TRANSFER_TIMEOUT_SEC >= settings.RESERVATION_TIMEOUT_SEC:
        raise ValueError("TRANSFER_TIMEOUT_SEC must be below RESERVATION_TIMEOUT_SEC")
    amount = settings.claim_amount
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"CLAIM_AMOUNT must be a positive number, got {settings.CLAIM_AMOUNT!r}")
    # the ledger transfers integer base units: amount * 10**TOKEN_DECIMALS
    if -amount.normalize().as_tuple().exponent > settings.TOKEN_DECIMALS:
        raise ValueError(
            f"CLAIM_AMOUNT {settings.CLAIM_AMOUNT} has more than {settings.TOKEN_DECIMALS} decimal places"
        )
    return ClaimCoordinator(
        store=store or build_claim_store(settings),
        distributor=distributor or build_distributor(settings),
        amount=amount,
        transfer_timeout_sec=settings.TRANSFER_TIMEOUT_SEC,
        commit_retries=settings.COMMIT_RETRIES,
        commit_retry_delay_sec=settings.COMMIT_RETRY_DELAY_SEC,
        reconciliation=ReconciliationLog(),
    )


def create_app(
    settings: Settings = default_settings,
    store: Optional[ClaimStore] = None,
    distributor: Optional[Distributor] = None,
) -> FastAPI:
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    coordinator = build_coordinator(settings, store, distributor)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"faucet up: store={coordinator.store.backend} amount={coordinator.amount} {settings.TOKEN_SYMBOL}",
            extra={"backend": coordinator.store.backend},
        )
        yield
        coordinator.store.close()

    app = FastAPI(title="Token Faucet", lifespan=lifespan)
    app.state.settings = settings
    app.state.coordinator = coordinator

    add_cors(app, settings)
    app.add_middleware(SecurityHeadersMiddleware, app_env=settings.APP_ENV)

    init_rate_limiter(app)
    add_rate_limit_exception_handler(app)
    register_error_handlers(app)

    app.include_router(public_router)
    app.include_router(admin_router)

    if STATIC_DIR.is_dir():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    @app.get("/", include_in_schema=False)
    def root():
        return FileResponse(str(STATIC_DIR / "index.html"))

    @app.get("/health", tags=["health"])
    def health():
        return {"ok": True, "env": settings.APP_ENV, "store": coordinator.store.backend}

    return app
