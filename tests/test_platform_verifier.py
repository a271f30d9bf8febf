"""Platform rail verifier against a mocked payments REST API."""

import asyncio
import json

import httpx
import pytest

from railpay.rails.errors import RailHttpStatusError, RailResponseError
from railpay.rails.platform import PlatformVerifier
from railpay.rails.types import Expectation, Rail, VerifyRequest


TREASURY = "GAPPWALLET"
PAYMENT_ID = "pay_0123456789"


def _payment(**overrides):
    payment = {
        "identifier": PAYMENT_ID,
        "status": "approved",
        "amount": "3000",
        "to_address": TREASURY,
        "transaction": {"txid": "chain-tx-1"},
    }
    payment.update(overrides)
    return payment


def _transport(payment, complete_status=200, seen=None):
    def handle(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.method == "GET":
            return httpx.Response(200, json=payment)
        return httpx.Response(complete_status, json={"error": "already_completed"} if complete_status >= 400 else {})

    return httpx.MockTransport(handle)


def _verify(transport, min_atomic=3000):
    verifier = PlatformVerifier("http://pi.test/v2/", "pi-key", transport=transport)
    req = VerifyRequest(rail=Rail.PLATFORM, listing_id="listing-1", buyer="buyer", tx_reference=PAYMENT_ID)
    expect = Expectation(treasury=TREASURY, min_atomic_amount=str(min_atomic), min_confirmations=1)
    return asyncio.run(verifier.verify(req, expect))


def test_approved_payment_completes_with_one_confirmation():
    """An approved payment verifies with one confirmation and is completed upstream."""

    seen = []
    outcome = _verify(_transport(_payment(), seen=seen))
    assert outcome.ok
    assert outcome.confirmations == 1
    assert outcome.canonical_id == PAYMENT_ID
    assert outcome.amount_atomic == "3000"

    get, complete = seen
    assert str(get.url) == f"http://pi.test/v2/payments/{PAYMENT_ID}"
    assert get.headers["authorization"] == "Key pi-key"
    assert complete.method == "POST"
    assert str(complete.url).endswith(f"/payments/{PAYMENT_ID}/complete")
    assert json.loads(complete.content) == {"txid": "chain-tx-1"}


def test_completion_handshake_errors_are_not_fatal():
    """A failed completion call does not undo the verification."""

    outcome = _verify(_transport(_payment(status="completed"), complete_status=400))
    assert outcome.ok


def test_pending_and_cancelled_statuses():
    """Pending statuses retry and cancelled ones fail."""

    assert _verify(_transport(_payment(status="created"))).reason == "payment_not_completed"
    outcome = _verify(_transport(_payment(status="cancelled")))
    assert outcome.reason == "payment_cancelled"
    assert not outcome.retryable


def test_amount_boundary():
    """Exactly the minimum passes and one unit less fails."""

    assert _verify(_transport(_payment(amount=3000)), min_atomic=3000).ok
    assert _verify(_transport(_payment(amount="2999")), min_atomic=3000).reason == "insufficient_value"


def test_wrong_receiver_is_a_mismatch():
    """A payment to another receiver is a treasury mismatch."""

    outcome = _verify(_transport(_payment(to_address="GSOMEONEELSE")))
    assert outcome.reason == "treasury_mismatch"


def test_no_completion_when_verification_fails():
    """The completion call is only made after a successful verification."""

    seen = []
    _verify(_transport(_payment(amount="1"), seen=seen))
    assert [r.method for r in seen] == ["GET"]


def test_fractional_amount_is_malformed():
    """Amounts finer than the platform's precision are malformed."""

    with pytest.raises(RailResponseError):
        _verify(_transport(_payment(amount=3.5)))


def test_rejected_lookup_raises():
    """A rejected payment lookup raises."""

    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "invalid_key"}))
    with pytest.raises(RailHttpStatusError) as excinfo:
        _verify(transport)
    assert excinfo.value.status_code == 401
