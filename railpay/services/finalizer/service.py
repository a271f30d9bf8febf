"""Reconciliation worker for purchases still pending after the request path.

Each cycle re-verifies the oldest pending purchases one at a time and
converges them to `completed` or `failed`. A failure on one purchase never
aborts the rest of the batch, and each purchase gets its own short-lived
session so no transaction survives across iterations.
"""

import asyncio
import time
from collections import Counter
from datetime import datetime, timezone

from railpay.common.config import CommonSettings, settings
from railpay.common.logging import logger, purchase_id_ctx, rail_ctx
from railpay.common.metrics import (
    completion_conflicts_total,
    finalizer_batch_size,
    finalizer_cycle_seconds,
    purchases_completed_total,
    purchases_failed_total,
)
from railpay.rails.errors import RailConfigurationError, RailError
from railpay.rails.registry import build_verifier, rail_key
from railpay.rails.types import Reason, VerifyFailure
from railpay.services.purchases import store
from railpay.services.purchases.models import Purchase
from railpay.services.purchases.service import expectation_for, record_outcome, verify_request_for


FINALIZER_PATH = "finalizer"

# The transfer itself was never seen; depth or upstream trouble does not expire a purchase.
EXPIRABLE_REASONS = frozenset({Reason.UNCONFIRMED.value, Reason.NOT_VALIDATED.value})


def pending_age_seconds(purchase: Purchase, now: datetime) -> float:
    created = purchase.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (now - created).total_seconds()


class FinalizerService:
    """Polls pending purchases and finalizes them through the same guarded store calls."""

    def __init__(
        self,
        session_factory,
        config: CommonSettings = settings,
        verifier_factory=None,
        service_name: str = "finalizer",
    ) -> None:
        self.session_factory = session_factory
        self.config = config
        self.verifier_factory = verifier_factory or (lambda row: build_verifier(row, config))
        self.service_name = service_name

    async def process_purchase(self, purchase: Purchase) -> str:
        """Re-verify one pending purchase; returns what happened to it."""

        if not purchase.rail or not purchase.tx_reference:
            return "skipped"

        with self.session_factory() as db:
            rail_cfg = store.get_rail(db, purchase.rail, purchase.chain_id)
        if rail_cfg is None or not rail_cfg.enabled:
            # Config may come back; leave the purchase pending.
            return "skipped"

        verifier = self.verifier_factory(rail_cfg)
        try:
            outcome = await asyncio.wait_for(
                verifier.verify(verify_request_for(purchase), expectation_for(rail_cfg, purchase)),
                timeout=self.config.verify_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("finalizer_verification_timeout rail=%s", purchase.rail)
            return "pending"
        record_outcome(purchase.rail, outcome)

        if isinstance(outcome, VerifyFailure):
            if outcome.retryable:
                if not self._expired(purchase, outcome):
                    return "pending"
                logger.info("purchase_expired last_reason=%s", outcome.reason)
                outcome = VerifyFailure(
                    reason=Reason.VERIFICATION_EXPIRED.value, meta={"lastReason": outcome.reason, **outcome.meta}
                )
            failed = store.fail_purchase(self.session_factory, purchase, outcome.reason, FINALIZER_PATH, outcome.meta)
            if failed is None:
                completion_conflicts_total.labels(path=FINALIZER_PATH).inc()
                return "conflict"
            purchases_failed_total.labels(rail=purchase.rail, path=FINALIZER_PATH).inc()
            logger.info("purchase_failed reason=%s", outcome.reason)
            return "failed"

        if outcome.confirmations < rail_cfg.min_confirmations:
            return "pending"

        result = store.complete_and_grant(self.session_factory, purchase, outcome, FINALIZER_PATH)
        if result is None:
            completion_conflicts_total.labels(path=FINALIZER_PATH).inc()
            return "conflict"
        purchases_completed_total.labels(rail=purchase.rail, path=FINALIZER_PATH).inc()
        logger.info(
            "purchase_completed canonical_id=%s confirmations=%s", outcome.canonical_id, outcome.confirmations
        )
        return "completed"

    def _expired(self, purchase: Purchase, outcome: VerifyFailure) -> bool:
        max_age = self.config.finalizer_max_pending_age_seconds
        if max_age <= 0 or outcome.reason not in EXPIRABLE_REASONS:
            return False
        return pending_age_seconds(purchase, datetime.now(timezone.utc)) > max_age

    async def run_once(self) -> dict[str, int]:
        """Run one reconciliation cycle over up to `finalizer_batch_size` purchases."""

        started = time.perf_counter()
        with self.session_factory() as db:
            pending = store.list_pending_purchases(db, self.config.finalizer_batch_size)

        stats = Counter({"scanned": len(pending)})
        for purchase in pending:
            token = purchase_id_ctx.set(purchase.id)
            rail_token = rail_ctx.set(rail_key(purchase.rail or "", purchase.chain_id))
            try:
                stats[await self.process_purchase(purchase)] += 1
            except (RailError, RailConfigurationError) as exc:
                stats["errors"] += 1
                logger.warning("finalizer_verification_error rail=%s error=%s", purchase.rail, exc)
            except Exception as exc:
                stats["errors"] += 1
                logger.exception("finalizer_purchase_failed error=%s", exc)
            finally:
                rail_ctx.reset(rail_token)
                purchase_id_ctx.reset(token)

        finalizer_batch_size.labels(service=self.service_name).set(len(pending))
        finalizer_cycle_seconds.labels(service=self.service_name).observe(time.perf_counter() - started)
        keys = ("scanned", "completed", "failed", "pending", "skipped", "conflict", "errors")
        summary = {key: stats.get(key, 0) for key in keys}
        if pending:
            logger.info("finalizer_cycle %s", " ".join(f"{k}={v}" for k, v in summary.items()))
        return summary

    async def run_forever(self) -> None:
        """Continuously reconcile pending purchases on a fixed interval."""

        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("finalizer_cycle_error error=%s", exc)
            await asyncio.sleep(self.config.finalizer_interval_seconds)
