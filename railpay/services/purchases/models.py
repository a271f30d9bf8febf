"""Purchases database models.

`purchases` and `entitlements` are owned here. `payment_rails` and
`listing_prices` are maintained by the admin/catalog side and only read by the
verification paths.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from railpay.common.db import AtomicAmount, Base, JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentRail(Base):
    """One configured rail instance, unique per `(rail, chain_id)`."""

    __tablename__ = "payment_rails"
    __table_args__ = (
        UniqueConstraint("rail", "chain_id", name="uq_payment_rails_rail_chain", postgresql_nulls_not_distinct=True),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    rail: Mapped[str] = mapped_column(String(16))
    chain_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(8))
    treasury: Mapped[str] = mapped_column(String(200))
    rpc_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    min_confirmations: Mapped[int] = mapped_column(Integer, default=1)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )


class ListingPrice(Base):
    """Catalog price row; the newest active row per (listing, currency) wins."""

    __tablename__ = "listing_prices"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    listing_id: Mapped[str] = mapped_column(String, index=True)
    currency: Mapped[str] = mapped_column(String(8))
    amount_int: Mapped[int] = mapped_column(AtomicAmount)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class Purchase(Base):
    """A buyer's claim that a transfer paid for a listing."""

    __tablename__ = "purchases"
    __table_args__ = (
        UniqueConstraint(
            "rail",
            "chain_id",
            "tx_reference",
            name="uq_purchases_rail_chain_tx",
            postgresql_nulls_not_distinct=True,
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    buyer: Mapped[str] = mapped_column(String(200), index=True)
    listing_id: Mapped[str] = mapped_column(String, index=True)
    price_id: Mapped[str | None] = mapped_column(String, nullable=True)
    currency: Mapped[str] = mapped_column(String(8))
    amount_int: Mapped[int] = mapped_column(AtomicAmount)
    status: Mapped[str] = mapped_column(String(16), index=True, default="pending")
    rail: Mapped[str | None] = mapped_column(String(16), nullable=True)
    chain_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tx_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    canonical_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    verified_amount_int: Mapped[int | None] = mapped_column(AtomicAmount, nullable=True)
    verified_confirmations: Mapped[int | None] = mapped_column(Integer, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )


class PurchaseTimeline(Base):
    """Immutable audit trail of every purchase status transition."""

    __tablename__ = "purchase_timeline"

    timeline_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    purchase_id: Mapped[str] = mapped_column(ForeignKey("purchases.id"), index=True)
    from_state: Mapped[str | None] = mapped_column(String(16), nullable=True)
    to_state: Mapped[str] = mapped_column(String(16))
    reason: Mapped[str] = mapped_column(String)
    path: Mapped[str | None] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class Entitlement(Base):
    """Access grant for a listing, unique per buyer."""

    __tablename__ = "entitlements"
    __table_args__ = (UniqueConstraint("buyer", "listing_id", name="uq_entitlements_buyer_listing"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    buyer: Mapped[str] = mapped_column(String(200))
    listing_id: Mapped[str] = mapped_column(String)
    granted_by_purchase_id: Mapped[str] = mapped_column(ForeignKey("purchases.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
