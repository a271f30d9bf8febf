"""UTXO rail verifier against a Bitcoin Core JSON-RPC node."""

import httpx

from railpay.rails.amounts import decimal_to_atomic
from railpay.rails.types import (
    Expectation,
    Rail,
    Reason,
    VerifyOutcome,
    VerifyRequest,
    VerifySuccess,
    fail,
)
from railpay.rails.upstream import JsonRpcClient, make_client, malformed


SATOSHI_DECIMALS = 8
BECH32_PREFIXES = ("bc1", "tb1", "bcrt1")


def normalize_address(address: str) -> str:
    """Bech32 is case-insensitive (canonically lower); base58 is case-sensitive."""

    address = address.strip()
    if address.lower().startswith(BECH32_PREFIXES):
        return address.lower()
    return address


def output_addresses(vout: dict) -> list[str]:
    """Addresses an output pays to; newer nodes report `address`, older `addresses`."""

    script = vout.get("scriptPubKey") or {}
    addresses = script.get("addresses")
    if addresses is None:
        addresses = [script["address"]] if script.get("address") else []
    return [normalize_address(a) for a in addresses if isinstance(a, str)]


class UtxoVerifier:
    """Sums every output paying the treasury in a verbose `getrawtransaction`."""

    rail = Rail.UTXO

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.auth = (username, password)
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def verify(self, req: VerifyRequest, expect: Expectation) -> VerifyOutcome:
        treasury = normalize_address(expect.treasury)

        async with make_client(self.timeout_seconds, self.transport) as http:
            rpc = JsonRpcClient(http, self.rail.value, self.url, version="1.0", auth=self.auth)
            tx = await rpc.call("getrawtransaction", [req.tx_reference.strip(), True])

        if not isinstance(tx, dict) or not isinstance(tx.get("vout"), list):
            raise malformed(self.rail.value, "getrawtransaction", tx)

        matched_sats = 0
        matched = False
        for vout in tx["vout"]:
            if treasury not in output_addresses(vout):
                continue
            try:
                matched_sats += decimal_to_atomic(vout.get("value"), SATOSHI_DECIMALS)
            except ValueError as exc:
                raise malformed(self.rail.value, "getrawtransaction", vout.get("value")) from exc
            matched = True

        if not matched:
            return fail(Reason.TREASURY_MISMATCH)
        if matched_sats < expect.min_atomic:
            return fail(Reason.INSUFFICIENT_VALUE, matchedSats=str(matched_sats))

        try:
            confirmations = int(tx.get("confirmations") or 0)
        except (TypeError, ValueError) as exc:
            raise malformed(self.rail.value, "getrawtransaction", tx.get("confirmations")) from exc
        if confirmations <= 0:
            return fail(Reason.UNCONFIRMED)
        if confirmations < expect.min_confirmations:
            return fail(Reason.INSUFFICIENT_CONFIRMATIONS, confirmations=confirmations)

        return VerifySuccess(
            canonical_id=str(tx.get("txid") or req.tx_reference.strip()),
            amount_atomic=str(matched_sats),
            confirmations=confirmations,
            meta={"blockhash": tx.get("blockhash")},
        )
