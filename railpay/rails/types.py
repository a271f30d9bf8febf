"""Uniform verification contract shared by every payment rail.

A verifier answers one question: is this off-chain purchase backed by a real,
sufficiently final transfer to our treasury? Business-rule outcomes come back
as `VerifySuccess` / `VerifyFailure`; transport problems are raised as
`RailError` subclasses (see `railpay.rails.errors`).
"""

from enum import Enum
from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field, field_validator


class Rail(str, Enum):
    """Supported value-transfer networks."""

    EVM = "eth"
    UTXO = "btc"
    LEDGER = "xrp"
    PLATFORM = "pi"


class Reason(str, Enum):
    """Stable failure reason codes returned by verifiers."""

    UNCONFIRMED = "unconfirmed"
    INSUFFICIENT_CONFIRMATIONS = "insufficient_confirmations"
    NOT_VALIDATED = "not_validated"
    VERIFICATION_TIMEOUT = "verification_timeout"

    UNSUPPORTED_CHAIN = "unsupported_chain"
    RPC_NOT_CONFIGURED = "rpc_not_configured"
    MISSING_BLOCK_NUMBER = "missing_blockNumber"
    TX_FAILED = "tx_failed"
    MISSING_TO = "missing_to"
    BUYER_MISMATCH = "buyer_mismatch"
    TREASURY_MISMATCH = "treasury_mismatch"
    INSUFFICIENT_VALUE = "insufficient_value"
    NO_MATCHING_TRANSFER = "no_matching_transfer"
    NOT_PAYMENT = "not_payment"
    DESTINATION_TAG_MISMATCH = "destination_tag_mismatch"
    MISSING_DELIVERED_AMOUNT = "missing_delivered_amount"
    UNSUPPORTED_DELIVERED_AMOUNT = "unsupported_delivered_amount"
    PAYMENT_NOT_COMPLETED = "payment_not_completed"
    PAYMENT_CANCELLED = "payment_cancelled"
    VERIFICATION_EXPIRED = "verification_expired"


# Finality/availability conditions: the purchase stays pending and is retried.
RETRYABLE_REASONS: frozenset[str] = frozenset(
    {
        Reason.UNCONFIRMED.value,
        Reason.INSUFFICIENT_CONFIRMATIONS.value,
        Reason.NOT_VALIDATED.value,
        Reason.VERIFICATION_TIMEOUT.value,
    }
)


def is_retryable(reason: str) -> bool:
    return reason in RETRYABLE_REASONS


class VerifyRequest(BaseModel):
    """What the buyer claims: this transfer paid for this listing."""

    rail: Rail
    listing_id: str
    buyer: str
    tx_reference: str
    chain_id: int | None = None
    memo: str | None = None
    destination_tag: int | None = None


class Expectation(BaseModel):
    """Policy the transfer must satisfy, derived from rail config + locked price."""

    treasury: str
    min_atomic_amount: str
    min_confirmations: int = Field(ge=0)
    extras: dict[str, Any] = Field(default_factory=dict)

    @field_validator("min_atomic_amount", mode="before")
    @classmethod
    def _integer_string(cls, value: Any) -> str:
        if isinstance(value, bool) or isinstance(value, float):
            raise ValueError("min_atomic_amount must be an integer or decimal string")
        text = str(value).strip()
        if not text.isdigit():
            raise ValueError("min_atomic_amount must be a non-negative base-10 integer")
        return str(int(text))

    @property
    def min_atomic(self) -> int:
        return int(self.min_atomic_amount)


class VerifySuccess(BaseModel):
    ok: Literal[True] = True
    canonical_id: str
    amount_atomic: str
    confirmations: int
    meta: dict[str, Any] = Field(default_factory=dict)


class VerifyFailure(BaseModel):
    ok: Literal[False] = False
    reason: str
    meta: dict[str, Any] = Field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return is_retryable(self.reason)


VerifyOutcome = VerifySuccess | VerifyFailure


def fail(reason: Reason, **meta: Any) -> VerifyFailure:
    return VerifyFailure(reason=reason.value, meta=meta)


class PaymentVerifier(Protocol):
    """One implementation per rail; selected by `railpay.rails.registry`."""

    rail: Rail

    async def verify(self, req: VerifyRequest, expect: Expectation) -> VerifyOutcome: ...
