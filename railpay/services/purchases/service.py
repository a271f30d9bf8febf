"""Synchronous purchase verification flow.

Resolves rail config and price, blocks replays, records a pending purchase,
runs the rail verifier once, and either completes the purchase (with its
entitlement) atomically, fails it, or leaves it pending for the finalizer.
"""

import asyncio
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from railpay.common.config import CommonSettings, settings
from railpay.common.logging import logger, purchase_id_ctx, rail_ctx
from railpay.common.metrics import (
    completion_conflicts_total,
    purchases_completed_total,
    purchases_failed_total,
    verification_outcomes_total,
)
from railpay.rails.errors import RailConfigurationError, RailError, RailTimeoutError
from railpay.rails.registry import build_verifier, rail_key
from railpay.rails.types import (
    Expectation,
    Rail,
    Reason,
    VerifyFailure,
    VerifyOutcome,
    VerifyRequest,
    VerifySuccess,
)
from railpay.services.purchases import store
from railpay.services.purchases.models import Entitlement, PaymentRail, Purchase
from railpay.services.purchases.schemas import PurchaseVerifyRequest


REQUEST_PATH = "request"


class PurchaseRejected(Exception):
    """Terminal, client-visible rejection of a verification request."""

    def __init__(self, status_code: int, error: str, reason: str | None = None, meta: dict | None = None) -> None:
        self.status_code = status_code
        self.error = error
        self.reason = reason
        self.meta = meta or {}
        super().__init__(error if reason is None else f"{error}: {reason}")

    def detail(self) -> dict:
        body = {"error": self.error}
        if self.reason is not None:
            body["reason"] = self.reason
        if self.meta:
            body["meta"] = self.meta
        return body


class RailUnavailable(Exception):
    """Upstream rail failed; the purchase stays pending for the finalizer."""

    def __init__(self, purchase_id: str, cause: RailError) -> None:
        self.purchase_id = purchase_id
        self.cause = cause
        super().__init__(f"rail unavailable for purchase {purchase_id}: {cause}")


@dataclass
class VerificationResult:
    status: str
    http_status: int
    purchase: Purchase
    entitlement: Entitlement | None = None
    outcome: VerifyOutcome | None = None


def verify_request_for(purchase: Purchase) -> VerifyRequest:
    """Rebuild the verifier request from the stored purchase (memo/tag live in metadata)."""

    meta = purchase.meta or {}
    return VerifyRequest(
        rail=Rail(purchase.rail),
        listing_id=purchase.listing_id,
        buyer=purchase.buyer,
        tx_reference=purchase.tx_reference,
        chain_id=purchase.chain_id,
        memo=meta.get("memo"),
        destination_tag=meta.get("destinationTag"),
    )


def expectation_for(rail_cfg: PaymentRail, purchase: Purchase) -> Expectation:
    """The amount comes from the purchase row, not the catalog, so price edits cannot race."""

    return Expectation(
        treasury=rail_cfg.treasury,
        min_atomic_amount=str(purchase.amount_int),
        min_confirmations=rail_cfg.min_confirmations,
        extras=dict(rail_cfg.meta or {}),
    )


def resolve_rail(value: str) -> Rail:
    try:
        return Rail(value.strip().lower())
    except ValueError as exc:
        raise PurchaseRejected(400, "unsupported_rail", meta={"rail": value}) from exc


def normalize_reference(rail: Rail, tx_reference: str) -> str:
    reference = tx_reference.strip()
    if rail is Rail.EVM:
        return reference.lower()
    return reference


def record_outcome(rail: str, outcome: VerifyOutcome) -> None:
    if outcome.ok:
        verification_outcomes_total.labels(rail=rail, result="success", reason="").inc()
    else:
        verification_outcomes_total.labels(rail=rail, result="failure", reason=outcome.reason).inc()


class PurchaseVerificationService:
    """Owns the request-time verification flow."""

    def __init__(self, session_factory, config: CommonSettings = settings, verifier_factory=None) -> None:
        self.session_factory = session_factory
        self.config = config
        self.verifier_factory = verifier_factory or (lambda row: build_verifier(row, config))

    def _open_pending(
        self, buyer: str, req: PurchaseVerifyRequest, rail: Rail, chain_id: int | None, tx_reference: str
    ):
        """Resolve config and price, reject replays, insert the pending row."""

        with self.session_factory() as db:
            rail_cfg = store.get_rail(db, rail.value, chain_id)
            if rail_cfg is None:
                raise PurchaseRejected(400, "rail_not_configured")
            if not rail_cfg.enabled:
                raise PurchaseRejected(400, "rail_disabled")

            price = store.get_active_price(db, req.listing_id, rail_cfg.currency)
            if price is None:
                raise PurchaseRejected(404, "price_not_found", meta={"currency": rail_cfg.currency})

            try:
                verifier = self.verifier_factory(rail_cfg)
            except RailConfigurationError as exc:
                logger.error("rail_misconfigured rail=%s error=%s", rail_key(rail.value, chain_id), exc)
                raise PurchaseRejected(400, "rail_misconfigured") from exc

            if store.find_by_reference(db, rail.value, chain_id, tx_reference) is not None:
                raise PurchaseRejected(409, "tx_already_used")

            meta = {"method": "verify_v1", "created_from": "api"}
            if req.memo is not None:
                meta["memo"] = req.memo
            if req.destination_tag is not None:
                meta["destinationTag"] = req.destination_tag
            purchase = store.create_pending_purchase(
                db,
                buyer=buyer,
                listing_id=req.listing_id,
                price=price,
                rail=rail.value,
                chain_id=chain_id,
                tx_reference=tx_reference,
                meta=meta,
            )
            try:
                db.commit()
            except IntegrityError as exc:
                # Lost an insert race on (rail, chain_id, tx_reference).
                db.rollback()
                raise PurchaseRejected(409, "tx_already_used") from exc
            return rail_cfg, purchase, verifier

    async def verify_purchase(self, buyer: str, req: PurchaseVerifyRequest) -> VerificationResult:
        """Run the full request-path verification for one buyer claim."""

        buyer = buyer.strip().lower()
        rail = resolve_rail(req.rail)
        chain_id = req.chain_id if rail is Rail.EVM else None
        if rail is Rail.EVM and chain_id is None:
            raise PurchaseRejected(400, "chainId_required_for_eth")
        tx_reference = normalize_reference(rail, req.tx_reference)

        rail_cfg, purchase, verifier = self._open_pending(buyer, req, rail, chain_id, tx_reference)
        token = purchase_id_ctx.set(purchase.id)
        rail_token = rail_ctx.set(rail_key(purchase.rail, chain_id))
        try:
            logger.info(
                "purchase_pending_created listing_id=%s tx=%s",
                purchase.listing_id,
                tx_reference,
            )
            try:
                outcome = await asyncio.wait_for(
                    verifier.verify(
                        verify_request_for(purchase),
                        expectation_for(rail_cfg, purchase),
                    ),
                    timeout=self.config.verify_timeout_seconds,
                )
            except (asyncio.TimeoutError, RailTimeoutError):
                # A slow network is not proof of invalidity.
                outcome = VerifyFailure(reason=Reason.VERIFICATION_TIMEOUT.value)
            except RailError as exc:
                logger.warning(
                    "purchase_verification_unavailable error_type=%s detail=%s", exc.error_type, exc.detail
                )
                raise RailUnavailable(purchase.id, exc) from exc

            record_outcome(purchase.rail, outcome)
            return self._apply_outcome(rail_cfg, purchase, outcome)
        finally:
            rail_ctx.reset(rail_token)
            purchase_id_ctx.reset(token)

    def _apply_outcome(self, rail_cfg: PaymentRail, purchase: Purchase, outcome: VerifyOutcome) -> VerificationResult:
        if isinstance(outcome, VerifyFailure):
            if outcome.retryable:
                logger.info("purchase_awaiting_finality reason=%s", outcome.reason)
                return VerificationResult("pending", 202, purchase, outcome=outcome)
            failed = store.fail_purchase(self.session_factory, purchase, outcome.reason, REQUEST_PATH, outcome.meta)
            if failed is None:
                # The finalizer settled the row while this request was verifying.
                completion_conflicts_total.labels(path=REQUEST_PATH).inc()
                raise PurchaseRejected(409, "purchase_not_pending", reason=outcome.reason)
            purchases_failed_total.labels(rail=purchase.rail, path=REQUEST_PATH).inc()
            logger.info("purchase_verification_failed reason=%s", outcome.reason)
            raise PurchaseRejected(400, "payment_not_verified", reason=outcome.reason, meta=outcome.meta)

        if outcome.confirmations < rail_cfg.min_confirmations:
            return VerificationResult("pending", 202, purchase, outcome=outcome)

        result = self.complete(purchase, outcome)
        if result is None:
            raise PurchaseRejected(409, "purchase_not_pending")
        completed, entitlement = result
        return VerificationResult("completed", 201, completed, entitlement=entitlement, outcome=outcome)

    def complete(self, purchase: Purchase, outcome: VerifySuccess):
        result = store.complete_and_grant(self.session_factory, purchase, outcome, REQUEST_PATH)
        if result is None:
            completion_conflicts_total.labels(path=REQUEST_PATH).inc()
            return None
        purchases_completed_total.labels(rail=purchase.rail, path=REQUEST_PATH).inc()
        logger.info(
            "purchase_completed canonical_id=%s amount_atomic=%s confirmations=%s",
            outcome.canonical_id,
            outcome.amount_atomic,
            outcome.confirmations,
        )
        return result
