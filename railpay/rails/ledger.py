"""Ledger rail verifier against a rippled JSON-RPC endpoint."""

import httpx

from railpay.common.logging import logger
from railpay.rails.amounts import parse_atomic
from railpay.rails.errors import RailConfigurationError, RailError
from railpay.rails.types import (
    Expectation,
    Rail,
    Reason,
    VerifyOutcome,
    VerifyRequest,
    VerifySuccess,
    fail,
)
from railpay.rails.upstream import JsonRpcClient, make_client, malformed, rpc_error


def configured_destination_tag(extras: dict) -> int | None:
    """Destination tag pinned by rail metadata, if any."""

    tag = extras.get("destination_tag")
    if tag is None:
        return None
    if isinstance(tag, bool) or not str(tag).strip().isdigit():
        raise RailConfigurationError(f"xrp rail destination_tag must be a non-negative integer, got {tag!r}")
    return int(tag)


class LedgerVerifier:
    """Accepts validated, successful native-currency Payments to the treasury.

    "validated" is already strong finality on this ledger. Depth is only
    computed when the rail demands more than one confirmation, as
    `validated_index - tx.ledger_index + 1`; if that lookup fails the
    transaction counts as exactly one confirmation.
    """

    rail = Rail.LEDGER

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def _call(self, rpc: JsonRpcClient, method: str, params: dict) -> dict:
        # rippled reports errors inside `result` with HTTP 200.
        result = await rpc.call(method, [params])
        if not isinstance(result, dict):
            raise malformed(self.rail.value, method, result)
        if result.get("status") == "error" or result.get("error"):
            raise rpc_error(self.rail.value, method, result)
        return result

    async def verify(self, req: VerifyRequest, expect: Expectation) -> VerifyOutcome:
        treasury = expect.treasury.strip()

        async with make_client(self.timeout_seconds, self.transport) as http:
            rpc = JsonRpcClient(http, self.rail.value, self.url, version=None)
            tx = await self._call(rpc, "tx", {"transaction": req.tx_reference.strip(), "binary": False})

            if tx.get("validated") is not True:
                return fail(Reason.NOT_VALIDATED)
            if tx.get("TransactionType") != "Payment":
                return fail(Reason.NOT_PAYMENT, transactionType=tx.get("TransactionType"))
            meta = tx.get("meta") or {}
            if meta.get("TransactionResult") != "tesSUCCESS":
                return fail(Reason.TX_FAILED, transactionResult=meta.get("TransactionResult"))
            if (tx.get("Destination") or "") != treasury:
                return fail(Reason.TREASURY_MISMATCH)

            required_tag = configured_destination_tag(expect.extras)
            if required_tag is None:
                required_tag = req.destination_tag
            if required_tag is not None and tx.get("DestinationTag") != required_tag:
                return fail(Reason.DESTINATION_TAG_MISMATCH, destinationTag=tx.get("DestinationTag"))

            delivered = meta.get("delivered_amount")
            if isinstance(delivered, dict):
                # Issued-currency delivery; only native drops are accepted.
                return fail(Reason.UNSUPPORTED_DELIVERED_AMOUNT, currency=delivered.get("currency"))
            try:
                delivered_drops = parse_atomic(delivered)
            except ValueError:
                return fail(Reason.MISSING_DELIVERED_AMOUNT, deliveredAmount=delivered)
            if delivered_drops < expect.min_atomic:
                return fail(Reason.INSUFFICIENT_VALUE, deliveredDrops=str(delivered_drops))

            confirmations = 1
            if expect.min_confirmations > 1:
                confirmations = await self._depth(rpc, tx.get("ledger_index"))

        if confirmations < expect.min_confirmations:
            return fail(Reason.INSUFFICIENT_CONFIRMATIONS, confirmations=confirmations)

        return VerifySuccess(
            canonical_id=str(tx.get("hash") or req.tx_reference.strip()).upper(),
            amount_atomic=str(delivered_drops),
            confirmations=confirmations,
            meta={"ledger_index": tx.get("ledger_index")},
        )

    async def _depth(self, rpc: JsonRpcClient, tx_ledger_index) -> int:
        try:
            result = await self._call(rpc, "ledger", {"ledger_index": "validated"})
            current = int(result["ledger_index"])
            return max(1, current - int(tx_ledger_index) + 1)
        except (RailError, KeyError, TypeError, ValueError) as exc:
            logger.warning("ledger_depth_unavailable falling back to 1 confirmation error=%s", exc)
            return 1
