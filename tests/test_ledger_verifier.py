"""Ledger rail verifier against a mocked rippled endpoint."""

import asyncio

import pytest
from prometheus_client import REGISTRY

from conftest import rpc_transport
from railpay.rails.errors import RailConfigurationError, RailRpcError
from railpay.rails.ledger import LedgerVerifier
from railpay.rails.types import Expectation, Rail, VerifyRequest


TREASURY = "rTreasuryAccount1111111111111111"
TX = "e3fe6ea3d48f0c2b639448020ea4f03d4f4f8ffdb243a852a0f59177921b4879"


def _tx(**overrides):
    tx = {
        "hash": TX.upper(),
        "TransactionType": "Payment",
        "Destination": TREASURY,
        "ledger_index": 1000,
        "validated": True,
        "meta": {"TransactionResult": "tesSUCCESS", "delivered_amount": "2500000"},
        "status": "success",
    }
    tx.update(overrides)
    return tx


def _verify(handlers, min_atomic=2_500_000, min_confirmations=1, extras=None, destination_tag=None, calls=None):
    verifier = LedgerVerifier("http://xrpl.test", transport=rpc_transport(handlers, calls))
    req = VerifyRequest(
        rail=Rail.LEDGER, listing_id="listing-1", buyer="buyer", tx_reference=TX, destination_tag=destination_tag
    )
    expect = Expectation(
        treasury=TREASURY,
        min_atomic_amount=str(min_atomic),
        min_confirmations=min_confirmations,
        extras=extras or {},
    )
    return asyncio.run(verifier.verify(req, expect))


def test_validated_payment_counts_as_one_confirmation():
    """A validated payment with no depth requirement has one confirmation."""

    calls = []
    outcome = _verify({"tx": _tx()}, calls=calls)
    assert outcome.ok
    assert outcome.amount_atomic == "2500000"
    assert outcome.confirmations == 1
    assert outcome.canonical_id == TX.upper()
    # No depth lookup when minimal finality suffices.
    assert [c["method"] for c in calls] == ["tx"]
    assert calls[0]["params"] == [{"transaction": TX, "binary": False}]


def test_unvalidated_is_retryable():
    """A transaction not yet in a validated ledger is retryable."""

    for tx in (_tx(validated=False), {k: v for k, v in _tx().items() if k != "validated"}):
        outcome = _verify({"tx": tx})
        assert outcome.reason == "not_validated"
        assert outcome.retryable


def test_non_payment_and_failed_results_are_terminal():
    """Other transaction types and failed results fail the purchase."""

    assert _verify({"tx": _tx(TransactionType="OfferCreate")}).reason == "not_payment"
    failed = _tx(meta={"TransactionResult": "tecPATH_DRY", "delivered_amount": "2500000"})
    assert _verify({"tx": failed}).reason == "tx_failed"


def test_destination_must_match_exactly():
    """The destination is compared exactly."""

    outcome = _verify({"tx": _tx(Destination=TREASURY.lower())})
    assert outcome.reason == "treasury_mismatch"


def test_issued_currency_delivery_is_rejected():
    """Only native drops count as delivered."""

    delivered = {"currency": "USD", "issuer": "rIssuer", "value": "100"}
    outcome = _verify({"tx": _tx(meta={"TransactionResult": "tesSUCCESS", "delivered_amount": delivered})})
    assert outcome.reason == "unsupported_delivered_amount"
    assert not outcome.retryable


def test_missing_delivered_amount():
    """A payment without delivered_amount is terminal."""

    for delivered in (None, "unavailable"):
        outcome = _verify({"tx": _tx(meta={"TransactionResult": "tesSUCCESS", "delivered_amount": delivered})})
        assert outcome.reason == "missing_delivered_amount"


def test_amount_boundary():
    """Exactly the minimum passes and one unit less fails."""

    assert _verify({"tx": _tx()}, min_atomic=2_500_000).ok
    assert _verify({"tx": _tx()}, min_atomic=2_500_001).reason == "insufficient_value"


def test_destination_tag_from_config_or_request():
    """A tag pinned on the rail wins over the one in the request."""

    tagged = _tx(DestinationTag=42)
    assert _verify({"tx": tagged}, extras={"destination_tag": 42}).ok
    assert _verify({"tx": tagged}, destination_tag=42).ok
    assert _verify({"tx": tagged}, destination_tag=7).reason == "destination_tag_mismatch"
    assert _verify({"tx": _tx()}, extras={"destination_tag": 42}).reason == "destination_tag_mismatch"


def test_depth_from_validated_ledger():
    """Depth is measured against the latest validated ledger."""

    handlers = {"tx": _tx(ledger_index=1000), "ledger": {"ledger_index": 1004, "validated": True, "status": "success"}}
    outcome = _verify(handlers, min_confirmations=3)
    assert outcome.ok
    assert outcome.confirmations == 5


def test_shallow_depth_is_retryable():
    """Too shallow a ledger depth is retryable."""

    handlers = {"tx": _tx(ledger_index=1000), "ledger": {"ledger_index": 1001, "status": "success"}}
    outcome = _verify(handlers, min_confirmations=3)
    assert outcome.reason == "insufficient_confirmations"
    assert outcome.meta == {"confirmations": 2}


def test_depth_lookup_failure_falls_back_to_one():
    """A failed depth lookup counts as one confirmation."""

    # No "ledger" handler: the mock answers a JSON-RPC error.
    outcome = _verify({"tx": _tx()}, min_confirmations=2)
    assert outcome.reason == "insufficient_confirmations"
    assert outcome.meta == {"confirmations": 1}


def test_tx_not_found_is_an_upstream_error():
    """txnNotFound is raised rather than reported as a mismatch."""

    not_found = {"error": "txnNotFound", "status": "error", "request": {"command": "tx"}}
    with pytest.raises(RailRpcError):
        _verify({"tx": not_found})


def test_rpc_error_is_counted():
    """Errors reported inside a 200 response land in the rail error metric."""

    labels = {"rail": "xrp", "method": "tx", "error_type": "upstream_error"}
    before = REGISTRY.get_sample_value("rail_errors_total", labels) or 0.0
    with pytest.raises(RailRpcError):
        _verify({"tx": {"error": "txnNotFound", "status": "error"}})
    assert REGISTRY.get_sample_value("rail_errors_total", labels) == before + 1


def test_non_integer_configured_tag_is_a_configuration_error():
    """A destination tag in rail metadata must be an integer."""

    for tag in ("abc", -1, True, "4.2"):
        with pytest.raises(RailConfigurationError):
            _verify({"tx": _tx(DestinationTag=42)}, extras={"destination_tag": tag})
