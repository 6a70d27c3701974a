"""
RECON API Server

FastAPI application serving the billing REST API under /api.
The BillingService lives on app.state so routers reach it without
importing this module.

Run with:
    uvicorn interfaces.api.server:app --host 0.0.0.0 --port 8080 --reload

or through recon_launcher.py.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from core.config import get_config
from tools.billing.service import BillingService


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("recon.server")


# ---------------------------------------------------------------------------
# App lifespan (startup / shutdown)
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Make sure the data file exists before the first request."""
    billing: BillingService = app.state.billing
    db = await billing.store.read()
    logger.info(
        "RECON API starting up (store=%s, %d customers, %d orders, %d invoices)",
        billing.store.path, len(db.customers), len(db.orders), len(db.invoices),
    )
    yield
    logger.info("RECON API shutting down (%d store mutations this run)",
                billing.store.mutation_count)


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

def create_app(service: Optional[BillingService] = None, config=None) -> FastAPI:
    """Build the API app around a BillingService (one from config by default)."""
    config = config or get_config()
    app = FastAPI(title="RECON Billing", lifespan=lifespan)

    # Shared state for routers
    app.state.config = config
    app.state.billing = service or BillingService.from_config(config)

    from interfaces.api.routes import register_error_handlers, router as api_router
    register_error_handlers(app)
    app.include_router(api_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
