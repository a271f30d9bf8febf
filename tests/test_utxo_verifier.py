"""UTXO rail verifier against a mocked Bitcoin Core node."""

import asyncio
import base64
import json

import httpx
import pytest

from conftest import rpc_transport
from railpay.rails.errors import RailResponseError, RailRpcError
from railpay.rails.types import Expectation, Rail, VerifyRequest
from railpay.rails.utxo import UtxoVerifier


TREASURY = "bc1qtreasury0000000000000000000000000000"
TXID = "f" * 64


def _raw_tx(vouts, confirmations=3):
    return {"txid": TXID, "confirmations": confirmations, "blockhash": "00" * 32, "vout": vouts}


def _vout(value, address=None, addresses=None):
    script = {}
    if address is not None:
        script["address"] = address
    if addresses is not None:
        script["addresses"] = addresses
    return {"value": value, "n": 0, "scriptPubKey": script}


def _raw_transport(payload):
    # Raw body so fixed-point literals reach the parser exactly as a node prints them.
    def handle(request):
        return httpx.Response(200, content=payload.encode(), headers={"content-type": "application/json"})

    return httpx.MockTransport(handle)


def _verify(transport, min_atomic=1, min_confirmations=2):
    verifier = UtxoVerifier("http://btc.test", "rpc", "secret", transport=transport)
    req = VerifyRequest(rail=Rail.UTXO, listing_id="listing-1", buyer="buyer", tx_reference=TXID)
    expect = Expectation(treasury=TREASURY, min_atomic_amount=str(min_atomic), min_confirmations=min_confirmations)
    return asyncio.run(verifier.verify(req, expect))


def test_one_satoshi_converts_exactly():
    """A one-satoshi output converts exactly."""

    body = (
        '{"result": {"txid": "%s", "confirmations": 6, '
        '"vout": [{"value": 0.00000001, "n": 0, "scriptPubKey": {"address": "%s"}}]}, '
        '"error": null, "id": 1}'
    ) % (TXID, TREASURY)
    outcome = _verify(_raw_transport(body), min_atomic=1)
    assert outcome.ok
    assert outcome.amount_atomic == "1"


def test_all_outputs_to_treasury_are_summed():
    """Every output paying the treasury counts toward the amount."""

    vouts = [
        _vout("0.5", address=TREASURY),
        _vout("0.25", addresses=["3Multisig", TREASURY]),
        _vout("7", address="bc1qsomeoneelse"),
    ]
    outcome = _verify(rpc_transport({"getrawtransaction": _raw_tx(vouts)}), min_atomic=75_000_000)
    assert outcome.ok
    assert outcome.amount_atomic == "75000000"
    assert outcome.canonical_id == TXID
    assert outcome.confirmations == 3


def test_bech32_treasury_matches_case_insensitively():
    """Bech32 treasury addresses match in either case."""

    vouts = [_vout("1", address=TREASURY.upper())]
    outcome = _verify(rpc_transport({"getrawtransaction": _raw_tx(vouts)}), min_atomic=100_000_000)
    assert outcome.ok


def test_below_minimum_by_one_satoshi():
    """One satoshi short is an underpayment."""

    vouts = [_vout("0.99999999", address=TREASURY)]
    outcome = _verify(rpc_transport({"getrawtransaction": _raw_tx(vouts)}), min_atomic=100_000_000)
    assert outcome.reason == "insufficient_value"
    assert outcome.meta == {"matchedSats": "99999999"}


def test_no_output_to_treasury():
    """A transaction with no treasury output is terminal."""

    vouts = [_vout("1", address="bc1qsomeoneelse")]
    outcome = _verify(rpc_transport({"getrawtransaction": _raw_tx(vouts)}))
    assert outcome.reason == "treasury_mismatch"
    assert not outcome.retryable


def test_mempool_transaction_is_retryable():
    """A mempool transaction has no confirmations yet and is retryable."""

    vouts = [_vout("1", address=TREASURY)]
    for raw in (_raw_tx(vouts, confirmations=0), {"txid": TXID, "vout": vouts}):
        outcome = _verify(rpc_transport({"getrawtransaction": raw}))
        assert outcome.reason == "unconfirmed"
        assert outcome.retryable


def test_shallow_transaction_is_retryable():
    """Too few confirmations is retryable."""

    vouts = [_vout("1", address=TREASURY)]
    outcome = _verify(rpc_transport({"getrawtransaction": _raw_tx(vouts, confirmations=1)}), min_confirmations=3)
    assert outcome.reason == "insufficient_confirmations"


def test_request_uses_basic_auth_and_verbose_flag():
    """The node call uses basic auth and verbose output."""

    calls = []
    seen = {}

    def handle(request):
        seen["auth"] = request.headers.get("authorization")
        body = json.loads(request.content)
        calls.append(body)
        return httpx.Response(200, json={"result": _raw_tx([_vout("1", address=TREASURY)]), "error": None, "id": 1})

    _verify(httpx.MockTransport(handle))
    assert seen["auth"] == "Basic " + base64.b64encode(b"rpc:secret").decode()
    assert calls[0]["method"] == "getrawtransaction"
    assert calls[0]["params"] == [TXID, True]
    assert calls[0]["jsonrpc"] == "1.0"


def test_node_error_with_http_500_is_rpc_error():
    """A node error body on HTTP 500 is an upstream error."""

    def handle(request):
        error = {"code": -5, "message": "No such mempool or blockchain transaction"}
        return httpx.Response(500, json={"result": None, "error": error, "id": 1})

    with pytest.raises(RailRpcError) as excinfo:
        _verify(httpx.MockTransport(handle))
    assert excinfo.value.detail["code"] == -5


def test_unparseable_output_value():
    """A non-numeric output value is a malformed response."""

    vouts = [_vout("lots", address=TREASURY)]
    with pytest.raises(RailResponseError):
        _verify(rpc_transport({"getrawtransaction": _raw_tx(vouts)}))


def test_unparseable_confirmation_count():
    """A non-numeric confirmation count is a malformed node response."""

    raw = _raw_tx([_vout(1, address=TREASURY)], confirmations="many")
    with pytest.raises(RailResponseError):
        _verify(rpc_transport({"getrawtransaction": raw}))
