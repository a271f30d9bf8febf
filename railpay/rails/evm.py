"""EVM rail verifier (native value or ERC-20 transfers over JSON-RPC 2.0)."""

from typing import Any

import httpx

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


# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

DEFAULT_CHAIN_IDS = frozenset({1, 8453, 137})


def _hex_int(value: Any, method: str) -> int:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise malformed(Rail.EVM.value, method, value)
    try:
        return int(value, 16)
    except ValueError as exc:
        raise malformed(Rail.EVM.value, method, value) from exc


def _topic_address(topic: str) -> str:
    """Last 20 bytes of a 32-byte indexed topic, as lower-case 0x hex."""

    return "0x" + topic[-40:].lower()


class EvmVerifier:
    """Verifies a payment by transaction hash on one of the configured EVM chains."""

    rail = Rail.EVM

    def __init__(
        self,
        rpc_by_chain_id: dict[int, str],
        supported_chain_ids=DEFAULT_CHAIN_IDS,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_by_chain_id = dict(rpc_by_chain_id)
        self.supported_chain_ids = frozenset(supported_chain_ids)
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def verify(self, req: VerifyRequest, expect: Expectation) -> VerifyOutcome:
        if req.chain_id is None or req.chain_id not in self.supported_chain_ids:
            return fail(Reason.UNSUPPORTED_CHAIN, chainId=req.chain_id)
        rpc_url = self.rpc_by_chain_id.get(req.chain_id)
        if not rpc_url:
            return fail(Reason.RPC_NOT_CONFIGURED, chainId=req.chain_id)

        tx_hash = req.tx_reference.strip().lower()
        buyer = req.buyer.strip().lower()
        treasury = expect.treasury.strip().lower()
        token = str(expect.extras.get("token") or "").strip().lower()

        async with make_client(self.timeout_seconds, self.transport) as http:
            rpc = JsonRpcClient(http, self.rail.value, rpc_url)

            receipt = await rpc.call("eth_getTransactionReceipt", [tx_hash])
            if receipt is None:
                # Not mined yet (or not yet seen by this node).
                return fail(Reason.UNCONFIRMED)
            if not isinstance(receipt, dict):
                raise malformed(self.rail.value, "eth_getTransactionReceipt", receipt)
            if receipt.get("status") != "0x1":
                return fail(Reason.TX_FAILED, status=receipt.get("status"))
            if receipt.get("blockNumber") is None:
                return fail(Reason.MISSING_BLOCK_NUMBER)
            block_number = _hex_int(receipt["blockNumber"], "eth_getTransactionReceipt")

            tx = await rpc.call("eth_getTransactionByHash", [tx_hash])
            if not isinstance(tx, dict):
                raise malformed(self.rail.value, "eth_getTransactionByHash", tx)
            if str(tx.get("from") or "").lower() != buyer:
                return fail(Reason.BUYER_MISMATCH)

            if token:
                amount = self._token_amount(receipt, token, buyer, treasury)
                if amount is None:
                    return fail(Reason.NO_MATCHING_TRANSFER, token=token)
            else:
                if not tx.get("to"):
                    return fail(Reason.MISSING_TO)
                if str(tx["to"]).lower() != treasury:
                    return fail(Reason.TREASURY_MISMATCH)
                amount = _hex_int(tx.get("value") or "0x0", "eth_getTransactionByHash")

            if amount < expect.min_atomic:
                return fail(Reason.INSUFFICIENT_VALUE, amountAtomic=str(amount))

            head = _hex_int(await rpc.call("eth_blockNumber", []), "eth_blockNumber")

        confirmations = max(0, head - block_number + 1)
        if confirmations < expect.min_confirmations:
            return fail(Reason.INSUFFICIENT_CONFIRMATIONS, confirmations=confirmations)

        meta = {"chainId": req.chain_id, "blockNumber": str(block_number)}
        if token:
            meta["token"] = token
        return VerifySuccess(
            canonical_id=tx_hash,
            amount_atomic=str(amount),
            confirmations=confirmations,
            meta=meta,
        )

    def _token_amount(self, receipt: dict, token: str, buyer: str, treasury: str) -> int | None:
        """Sum ERC-20 Transfer values from buyer to treasury emitted by `token`."""

        total = 0
        matched = False
        for log in receipt.get("logs") or []:
            topics = log.get("topics") or []
            if str(log.get("address") or "").lower() != token:
                continue
            if len(topics) < 3 or str(topics[0]).lower() != TRANSFER_TOPIC:
                continue
            if _topic_address(topics[1]) != buyer or _topic_address(topics[2]) != treasury:
                continue
            total += _hex_int(log.get("data") or "0x0", "eth_getTransactionReceipt")
            matched = True
        return total if matched else None
