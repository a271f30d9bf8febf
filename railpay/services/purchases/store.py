"""Purchase lifecycle store.

Every status change is a single conditional UPDATE guarded by
`status = 'pending'`. The affected row count is the only synchronization
between the request path and the finalizer: zero rows means another caller
already finalized the purchase, which is not an error.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite

from railpay.common.logging import logger
from railpay.common.state_machine import COMPLETED, FAILED, PENDING, validate_transition
from railpay.rails.types import VerifySuccess
from railpay.services.purchases.models import Entitlement, ListingPrice, PaymentRail, Purchase, PurchaseTimeline


# Dialects offering INSERT .. ON CONFLICT DO UPDATE.
_UPSERT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def get_rail(db, rail: str, chain_id: int | None) -> PaymentRail | None:
    return db.execute(
        select(PaymentRail).where(PaymentRail.rail == rail, PaymentRail.chain_id.is_not_distinct_from(chain_id))
    ).scalar_one_or_none()


def list_rails(db) -> list[PaymentRail]:
    return list(
        db.execute(select(PaymentRail).order_by(PaymentRail.rail, PaymentRail.chain_id.nulls_first())).scalars()
    )


def upsert_rail(
    db,
    rail: str,
    chain_id: int | None,
    currency: str,
    treasury: str,
    rpc_url: str | None,
    enabled: bool,
    min_confirmations: int,
    meta: dict | None = None,
) -> PaymentRail:
    """Insert or update the `(rail, chain_id)` row; caller commits."""

    row = get_rail(db, rail, chain_id)
    if row is None:
        row = PaymentRail(rail=rail, chain_id=chain_id)
        db.add(row)
    row.currency = currency
    row.treasury = treasury
    row.rpc_url = rpc_url
    row.enabled = enabled
    row.min_confirmations = min_confirmations
    row.meta = meta or {}
    db.flush()
    return row


def get_active_price(db, listing_id: str, currency: str) -> ListingPrice | None:
    return db.execute(
        select(ListingPrice)
        .where(
            ListingPrice.listing_id == listing_id,
            ListingPrice.currency == currency,
            ListingPrice.active.is_(True),
        )
        .order_by(ListingPrice.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def find_by_reference(db, rail: str, chain_id: int | None, tx_reference: str) -> Purchase | None:
    """Any purchase, in any status, already claiming this transfer."""

    return db.execute(
        select(Purchase)
        .where(
            Purchase.rail == rail,
            Purchase.chain_id.is_not_distinct_from(chain_id),
            Purchase.tx_reference == tx_reference,
        )
        .limit(1)
    ).scalar_one_or_none()


def create_pending_purchase(
    db,
    buyer: str,
    listing_id: str,
    price: ListingPrice,
    rail: str,
    chain_id: int | None,
    tx_reference: str,
    meta: dict | None = None,
) -> Purchase:
    """Add a `pending` purchase with the price locked from `price`; caller commits."""

    purchase = Purchase(
        buyer=buyer,
        listing_id=listing_id,
        price_id=price.id,
        currency=price.currency,
        amount_int=price.amount_int,
        status=PENDING,
        rail=rail,
        chain_id=chain_id,
        tx_reference=tx_reference,
        meta=meta or {},
    )
    db.add(purchase)
    db.flush()
    db.add(
        PurchaseTimeline(
            purchase_id=purchase.id,
            from_state=None,
            to_state=PENDING,
            reason="purchase_created",
            path=(meta or {}).get("created_from"),
        )
    )
    return purchase


def list_pending_purchases(db, limit: int) -> list[Purchase]:
    return list(
        db.execute(
            select(Purchase).where(Purchase.status == PENDING).order_by(Purchase.created_at.asc()).limit(limit)
        ).scalars()
    )


def _guarded_transition(db, purchase_id: str, new_status: str, reason: str, path: str, values: dict) -> bool:
    validate_transition(PENDING, new_status)
    values = {Purchase.status: new_status, Purchase.updated_at: datetime.now(timezone.utc), **values}
    result = db.execute(
        update(Purchase)
        .where(Purchase.id == purchase_id, Purchase.status == PENDING)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(
            "purchase_transition_skipped purchase_id=%s to=%s reason=already_finalized", purchase_id, new_status
        )
        return False
    db.add(
        PurchaseTimeline(purchase_id=purchase_id, from_state=PENDING, to_state=new_status, reason=reason, path=path)
    )
    return True


def mark_purchase_completed(db, purchase: Purchase, outcome: VerifySuccess, path: str) -> Purchase | None:
    """Guarded `pending -> completed`; returns the refreshed row or None if already finalized."""

    now = datetime.now(timezone.utc)
    meta = dict(purchase.meta or {})
    meta["verified"] = {
        "rail": purchase.rail,
        "canonicalId": outcome.canonical_id,
        "confirmations": outcome.confirmations,
        "amountAtomic": outcome.amount_atomic,
        "meta": outcome.meta,
    }
    if not _guarded_transition(
        db,
        purchase.id,
        COMPLETED,
        reason="payment_verified",
        path=path,
        values={
            Purchase.canonical_id: outcome.canonical_id,
            Purchase.verified_amount_int: int(outcome.amount_atomic),
            Purchase.verified_confirmations: outcome.confirmations,
            Purchase.verified_at: now,
            Purchase.meta: meta,
        },
    ):
        return None
    return db.get(Purchase, purchase.id, populate_existing=True)


def mark_purchase_failed(db, purchase: Purchase, reason: str, path: str, detail: dict | None = None) -> Purchase | None:
    """Guarded `pending -> failed`; returns the refreshed row or None if already finalized."""

    meta = dict(purchase.meta or {})
    meta["failure"] = {
        "reason": reason,
        "detail": detail or {},
        "failed_at": datetime.now(timezone.utc).isoformat(),
    }
    values = {Purchase.failure_reason: reason, Purchase.meta: meta}
    if not _guarded_transition(db, purchase.id, FAILED, reason=reason, path=path, values=values):
        return None
    return db.get(Purchase, purchase.id, populate_existing=True)


def grant_entitlement(db, purchase: Purchase) -> Entitlement:
    """Grant (or re-point) the buyer's entitlement to the purchased listing.

    A single INSERT .. ON CONFLICT DO UPDATE, so two different purchases of
    the same listing completing at once cannot collide on `(buyer, listing_id)`.
    """

    insert = _UPSERT_INSERTS[db.get_bind().dialect.name]
    stmt = insert(Entitlement).values(
        id=str(uuid4()),
        buyer=purchase.buyer,
        listing_id=purchase.listing_id,
        granted_by_purchase_id=purchase.id,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Entitlement.buyer, Entitlement.listing_id],
        set_={"granted_by_purchase_id": stmt.excluded.granted_by_purchase_id},
    ).returning(Entitlement)
    return db.scalars(stmt, execution_options={"populate_existing": True}).one()


def get_entitlement(db, buyer: str, listing_id: str) -> Entitlement | None:
    return db.execute(
        select(Entitlement).where(Entitlement.buyer == buyer, Entitlement.listing_id == listing_id)
    ).scalar_one_or_none()


def complete_and_grant(
    session_factory, purchase: Purchase, outcome: VerifySuccess, path: str
) -> tuple[Purchase, Entitlement] | None:
    """Complete the purchase and grant its entitlement in one transaction.

    Returns None (after rolling back) when the guarded UPDATE found the
    purchase no longer pending.
    """

    with session_factory() as db:
        completed = mark_purchase_completed(db, purchase, outcome, path)
        if completed is None:
            db.rollback()
            return None
        entitlement = grant_entitlement(db, completed)
        db.commit()
        return completed, entitlement


def fail_purchase(
    session_factory, purchase: Purchase, reason: str, path: str, detail: dict | None = None
) -> Purchase | None:
    with session_factory() as db:
        failed = mark_purchase_failed(db, purchase, reason, path, detail)
        db.commit()
        return failed
