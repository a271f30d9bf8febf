"""API request/response schemas for purchase verification and rail admin endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from pydantic.alias_generators import to_camel

from railpay.rails.ledger import configured_destination_tag
from railpay.rails.types import Rail


class _ApiModel(BaseModel):
    """Accepts camelCase or snake_case keys and emits camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PurchaseVerifyRequest(_ApiModel):
    """Buyer-submitted claim that `tx_reference` paid for `listing_id`.

    `rail` stays a plain string so an unknown rail is answered with a reason
    code instead of a body validation error.
    """

    rail: str = Field(min_length=1, max_length=16)
    listing_id: str = Field(min_length=1, max_length=100)
    tx_reference: str = Field(min_length=8, max_length=200)
    chain_id: int | None = None
    memo: str | None = Field(default=None, max_length=200)
    destination_tag: int | None = Field(default=None, ge=0)


class PurchaseResponse(_ApiModel):
    id: str
    buyer: str
    listing_id: str
    price_id: str | None
    currency: str
    amount_int: int
    status: str
    rail: str | None
    chain_id: int | None
    tx_reference: str | None
    canonical_id: str | None = None
    verified_amount_int: int | None = None
    verified_confirmations: int | None = None
    failure_reason: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")
    created_at: datetime | None = None

    # Atomic amounts travel as decimal strings to survive JSON number limits.
    @field_serializer("amount_int", "verified_amount_int")
    def _amount_as_string(self, value: int | None) -> str | None:
        return None if value is None else str(value)


class EntitlementResponse(_ApiModel):
    id: str
    buyer: str
    listing_id: str
    granted_by_purchase_id: str


class VerificationInfo(_ApiModel):
    ok: bool
    canonical_id: str | None = None
    amount_atomic: str | None = None
    confirmations: int | None = None
    reason: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class PurchaseVerifyResponse(_ApiModel):
    ok: bool = True
    status: str
    purchase: PurchaseResponse
    entitlement: EntitlementResponse | None = None
    verified: VerificationInfo | None = None


class PaymentRailUpsertRequest(_ApiModel):
    rail: Rail
    chain_id: int | None = None
    currency: str = Field(pattern="^(usd|usdc|eth|btc|xrp|pi)$")
    treasury: str = Field(min_length=3, max_length=200)
    rpc_url: str | None = Field(default=None, max_length=500)
    enabled: bool
    min_confirmations: int = Field(ge=0, le=10_000)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_rail_shape(self):
        if self.rail is Rail.EVM and self.chain_id is None:
            raise ValueError("chainId is required for the eth rail")
        if self.rail is not Rail.EVM and self.chain_id is not None:
            raise ValueError("chainId is only meaningful for the eth rail")
        if self.rail is Rail.PLATFORM and self.min_confirmations > 1:
            raise ValueError("the pi rail reports a single confirmation; minConfirmations must be <= 1")
        if self.rail is Rail.LEDGER:
            configured_destination_tag(self.metadata)
        return self


class PaymentRailResponse(_ApiModel):
    id: str
    rail: str
    chain_id: int | None
    currency: str
    treasury: str
    rpc_url: str | None
    enabled: bool
    min_confirmations: int
    meta: dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")
