"""HTTP surface for purchase verification, purchase lookup and rail admin.

Run: uvicorn railpay.services.purchases.main:app --host 0.0.0.0 --port 8000
"""

from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from railpay.common.config import settings
from railpay.common.db import SessionLocal
from railpay.common.logging import configure_logging, trace_id_ctx
from railpay.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
    verification_requests_total,
)
from railpay.common.startup import log_startup_config
from railpay.common.tracing import instrument_app, setup_tracing
from railpay.rails.types import Rail
from railpay.services.purchases import store
from railpay.services.purchases.models import Purchase
from railpay.services.purchases.schemas import (
    EntitlementResponse,
    PaymentRailResponse,
    PaymentRailUpsertRequest,
    PurchaseResponse,
    PurchaseVerifyRequest,
    PurchaseVerifyResponse,
    VerificationInfo,
)
from railpay.services.purchases.service import PurchaseRejected, PurchaseVerificationService, RailUnavailable

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    [
        "service_name",
        "postgres_dsn",
        "api_key",
        "verify_timeout_seconds",
        "rail_timeout_seconds",
        "evm_supported_chain_ids",
        "btc_rpc_url",
        "btc_rpc_password",
        "xrpl_rpc_url",
        "pi_api_base",
        "pi_api_key",
    ],
)
service = PurchaseVerificationService(SessionLocal)

# Bounds the rail label on request metrics.
KNOWN_RAILS = frozenset(rail.value for rail in Rail)

app = FastAPI(title="RailPay Purchases")
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(service=settings.service_name, route=route, method=method).observe(
            elapsed
        )
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def enforce_api_key(x_api_key: str | None) -> None:
    """Shared-key check for calls arriving from the authenticated edge."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


@app.post("/marketplace/purchase/verify", response_model=PurchaseVerifyResponse)
async def verify_purchase(
    req: PurchaseVerifyRequest,
    x_api_key: str | None = Header(default=None),
    x_buyer_address: str | None = Header(default=None),
    x_trace_id: str | None = Header(default=None),
):
    """Verify a buyer's transfer and complete the purchase when final enough.

    201 completed, 202 pending finality, 4xx terminal rejection, 502 when the
    rail could not be reached (the purchase stays pending).
    """

    enforce_api_key(x_api_key)
    if not x_buyer_address:
        raise HTTPException(status_code=401, detail="buyer identity required")
    trace_id_ctx.set(x_trace_id or str(uuid4()))
    rail_label = req.rail if req.rail in KNOWN_RAILS else "unknown"
    verification_requests_total.labels(service=settings.service_name, rail=rail_label).inc()

    try:
        result = await service.verify_purchase(x_buyer_address, req)
    except PurchaseRejected as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail()) from exc
    except RailUnavailable as exc:
        raise HTTPException(
            status_code=502,
            detail={"error": "rail_unavailable", "purchaseId": exc.purchase_id, "errorType": exc.cause.error_type},
        ) from exc

    verified = None
    if result.outcome is not None:
        verified = VerificationInfo.model_validate(result.outcome.model_dump())
    body = PurchaseVerifyResponse(
        status=result.status,
        purchase=PurchaseResponse.model_validate(result.purchase),
        entitlement=EntitlementResponse.model_validate(result.entitlement) if result.entitlement else None,
        verified=verified,
    )
    return JSONResponse(status_code=result.http_status, content=_dump(body))


@app.get("/purchases/{purchase_id}", response_model=PurchaseResponse)
def get_purchase(purchase_id: str, x_api_key: str | None = Header(default=None)):
    """Fetch current state for one purchase."""

    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        purchase = db.get(Purchase, purchase_id)
        if not purchase:
            raise HTTPException(status_code=404, detail="purchase not found")
        return JSONResponse(content=_dump(PurchaseResponse.model_validate(purchase)))


@app.get("/entitlements/{buyer}/{listing_id}")
def get_entitlement(buyer: str, listing_id: str, x_api_key: str | None = Header(default=None)):
    """Check whether a buyer holds access to a listing."""

    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        entitlement = store.get_entitlement(db, buyer.strip().lower(), listing_id)
        if not entitlement:
            raise HTTPException(status_code=404, detail="entitlement not found")
        return JSONResponse(content=_dump(EntitlementResponse.model_validate(entitlement)))


@app.get("/admin/payment-rails")
def list_payment_rails(x_api_key: str | None = Header(default=None)):
    """List configured rails."""

    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        items = [_dump(PaymentRailResponse.model_validate(row)) for row in store.list_rails(db)]
    return {"items": items}


@app.post("/admin/payment-rails", status_code=201)
def upsert_payment_rail(req: PaymentRailUpsertRequest, x_api_key: str | None = Header(default=None)):
    """Create or replace the `(rail, chainId)` configuration row."""

    enforce_api_key(x_api_key)
    with SessionLocal() as db:
        row = store.upsert_rail(
            db,
            rail=req.rail.value,
            chain_id=req.chain_id,
            currency=req.currency,
            treasury=req.treasury.strip(),
            rpc_url=req.rpc_url.strip() if req.rpc_url else None,
            enabled=req.enabled,
            min_confirmations=req.min_confirmations,
            meta=req.metadata,
        )
        db.commit()
        item = _dump(PaymentRailResponse.model_validate(row))
    return JSONResponse(status_code=201, content={"item": item})


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}
