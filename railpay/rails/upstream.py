"""Shared upstream HTTP plumbing for rail verifiers.

Every outbound call goes through `send_json`, which applies the time budget,
records latency, and maps the three distinguishable failure shapes (could not
parse, upstream returned an error, upstream rejected the request) to typed
`RailError`s.
"""

import json
import time
from decimal import Decimal
from typing import Any

import httpx

from railpay.common.logging import logger
from railpay.common.metrics import rail_errors_total, rail_request_duration_seconds
from railpay.common.tracing import rail_span
from railpay.rails.errors import (
    RailError,
    RailHttpStatusError,
    RailResponseError,
    RailRpcError,
    RailTimeoutError,
    RailTransportError,
)


def make_client(timeout_seconds: float, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Build a short-lived async client with a hard per-request timeout."""

    return httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds), transport=transport)


def _record_error(exc: RailError) -> RailError:
    rail_errors_total.labels(rail=exc.rail, method=exc.method, error_type=exc.error_type).inc()
    logger.warning(
        "rail_call_failed rail=%s method=%s error_type=%s detail=%s",
        exc.rail,
        exc.method,
        exc.error_type,
        exc.detail,
    )
    return exc


async def send_json(
    client: httpx.AsyncClient,
    rail: str,
    method: str,
    http_method: str,
    url: str,
    *,
    body: Any = None,
    headers: dict[str, str] | None = None,
    auth: tuple[str, str] | None = None,
    error_key: str | None = None,
) -> Any:
    """Perform one upstream call and return the decoded JSON body.

    Floats in the body are decoded as `Decimal`. When `error_key` is given and
    the decoded body carries a non-null value under it, `RailRpcError` is
    raised even if the HTTP status was not 2xx (Bitcoin Core answers RPC
    errors with HTTP 500).
    """

    started = time.perf_counter()
    with rail_span(rail, method, httpx.URL(url).host) as span:
        try:
            resp = await client.request(http_method, url, json=body, headers=headers, auth=auth)
        except httpx.TimeoutException as exc:
            raise _record_error(RailTimeoutError(rail, method, str(exc) or type(exc).__name__)) from exc
        except httpx.HTTPError as exc:
            raise _record_error(RailTransportError(rail, method, str(exc) or type(exc).__name__)) from exc
        finally:
            rail_request_duration_seconds.labels(rail=rail, method=method).observe(time.perf_counter() - started)
        span.set_attribute("http.response.status_code", resp.status_code)

    try:
        payload = resp.json(parse_float=Decimal)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        if resp.is_success:
            raise _record_error(RailResponseError(rail, method, resp.text[:500])) from exc
        raise _record_error(RailHttpStatusError(rail, method, resp.status_code, resp.text[:500])) from exc

    if error_key is not None and isinstance(payload, dict) and payload.get(error_key) is not None:
        raise _record_error(RailRpcError(rail, method, payload[error_key]))
    if not resp.is_success:
        raise _record_error(RailHttpStatusError(rail, method, resp.status_code, payload))
    return payload


class JsonRpcClient:
    """Minimal JSON-RPC over HTTP caller bound to one endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        rail: str,
        url: str,
        *,
        version: str | None = "2.0",
        auth: tuple[str, str] | None = None,
    ) -> None:
        self.client = client
        self.rail = rail
        self.url = url
        self.version = version
        self.auth = auth
        self._next_id = 0

    async def call(self, method: str, params: list) -> Any:
        """Invoke `method` and return its `result` member."""

        self._next_id += 1
        body: dict[str, Any] = {"method": method, "params": params, "id": self._next_id}
        if self.version is not None:
            body["jsonrpc"] = self.version
        payload = await send_json(
            self.client, self.rail, method, "POST", self.url, body=body, auth=self.auth, error_key="error"
        )
        if not isinstance(payload, dict) or "result" not in payload:
            raise _record_error(RailResponseError(self.rail, method, payload))
        return payload["result"]


def malformed(rail: str, method: str, detail: Any) -> RailResponseError:
    """Build (and count) a malformed-response error for rail-specific shape checks."""

    return _record_error(RailResponseError(rail, method, detail))


def rpc_error(rail: str, method: str, detail: Any) -> RailRpcError:
    """Build (and count) an upstream error reported inside an otherwise successful response."""

    return _record_error(RailRpcError(rail, method, detail))
