"""Custodial platform rail verifier (Pi Platform REST API)."""

from urllib.parse import quote

import httpx

from railpay.common.logging import logger
from railpay.rails.amounts import parse_atomic
from railpay.rails.errors import RailError
from railpay.rails.types import (
    Expectation,
    Rail,
    Reason,
    VerifyOutcome,
    VerifyRequest,
    VerifySuccess,
    fail,
)
from railpay.rails.upstream import make_client, malformed, send_json


SUCCESS_STATUSES = {"approved", "completed", "complete"}
CANCELLED_STATUSES = {"cancelled", "canceled", "user_cancelled", "failed"}


class PlatformVerifier:
    rail = Rail.PLATFORM

    def __init__(
        self,
        api_base: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.headers = {"Authorization": f"Key {api_key}"}
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def verify(self, req: VerifyRequest, expect: Expectation) -> VerifyOutcome:
        payment_id = req.tx_reference.strip()
        url = f"{self.api_base}/payments/{quote(payment_id, safe='')}"

        async with make_client(self.timeout_seconds, self.transport) as http:
            payment = await send_json(http, self.rail.value, "get_payment", "GET", url, headers=self.headers)
            if not isinstance(payment, dict):
                raise malformed(self.rail.value, "get_payment", payment)

            status = str(payment.get("status") or "").lower()
            if status in CANCELLED_STATUSES:
                return fail(Reason.PAYMENT_CANCELLED, status=status)
            if status not in SUCCESS_STATUSES:
                return fail(Reason.PAYMENT_NOT_COMPLETED, status=status)

            destination = payment.get("to_address")
            if destination is not None and str(destination).strip() != expect.treasury.strip():
                return fail(Reason.TREASURY_MISMATCH)

            try:
                amount = parse_atomic(payment.get("amount"))
            except ValueError as exc:
                raise malformed(self.rail.value, "get_payment", payment.get("amount")) from exc
            if amount < expect.min_atomic:
                return fail(Reason.INSUFFICIENT_VALUE, amount=str(amount))

            await self._complete(http, url, payment)

        # No depth concept on a custodial platform.
        return VerifySuccess(
            canonical_id=payment_id,
            amount_atomic=str(amount),
            confirmations=1,
            meta={"status": status},
        )

    async def _complete(self, http: httpx.AsyncClient, url: str, payment: dict) -> None:
        """Best-effort completion handshake; "already completed" answers are fine."""

        body = {}
        txid = (payment.get("transaction") or {}).get("txid")
        if txid:
            body["txid"] = txid
        try:
            await send_json(
                http,
                self.rail.value,
                "complete_payment",
                "POST",
                f"{url}/complete",
                body=body,
                headers=self.headers,
            )
        except RailError as exc:
            logger.info("platform_completion_ignored payment_url=%s error=%s", url, exc)
