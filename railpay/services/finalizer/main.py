"""Finalizer process: runs the pending-purchase reconciliation loop.

Run a single worker: uvicorn railpay.services.finalizer.main:app --host 0.0.0.0 --port 8001
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

from railpay.common.config import settings
from railpay.common.db import SessionLocal
from railpay.common.logging import configure_logging
from railpay.common.metrics import metrics_response
from railpay.common.startup import log_startup_config
from railpay.common.tracing import instrument_app, setup_tracing
from railpay.services.finalizer.service import FinalizerService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    [
        "service_name",
        "postgres_dsn",
        "finalizer_batch_size",
        "finalizer_interval_seconds",
        "rail_timeout_seconds",
        "btc_rpc_url",
        "btc_rpc_password",
        "xrpl_rpc_url",
        "pi_api_base",
        "pi_api_key",
    ],
)
service = FinalizerService(SessionLocal)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the reconciliation loop for the lifetime of the app."""

    finalizer_task = asyncio.create_task(service.run_forever())
    yield
    finalizer_task.cancel()


app = FastAPI(title="RailPay Purchase Finalizer", lifespan=lifespan)
instrument_app(app)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}
