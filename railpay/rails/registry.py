"""Builds the verifier for a `payment_rails` row.

Non-secret fields (endpoint, treasury, confirmation policy) come from the row;
credentials come only from process settings.
"""

import httpx

from railpay.common.config import CommonSettings, settings
from railpay.rails.errors import RailConfigurationError
from railpay.rails.evm import EvmVerifier
from railpay.rails.ledger import LedgerVerifier, configured_destination_tag
from railpay.rails.platform import PlatformVerifier
from railpay.rails.types import PaymentVerifier, Rail
from railpay.rails.utxo import UtxoVerifier


def rail_key(rail: str, chain_id: int | None) -> str:
    return f"{rail}:{chain_id if chain_id is not None else 'null'}"


def build_verifier(
    row,
    config: CommonSettings = settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PaymentVerifier:
    """Construct the verifier for one rail config row.

    Raises `RailConfigurationError` for unknown rails or when a required
    endpoint/credential is missing.
    """

    try:
        rail = Rail(row.rail)
    except ValueError as exc:
        raise RailConfigurationError(f"unknown rail: {row.rail!r}") from exc
    timeout = config.rail_timeout_seconds

    if rail is Rail.EVM:
        rpc_by_chain_id = {int(k): v for k, v in config.evm_rpc_urls.items() if v}
        if row.chain_id is not None and row.rpc_url:
            rpc_by_chain_id[row.chain_id] = row.rpc_url
        # A missing endpoint is reported per request as `rpc_not_configured`.
        return EvmVerifier(
            rpc_by_chain_id,
            supported_chain_ids=config.evm_supported_chain_ids,
            timeout_seconds=timeout,
            transport=transport,
        )

    if rail is Rail.UTXO:
        url = row.rpc_url or config.btc_rpc_url
        if not url:
            raise RailConfigurationError("btc rail has no RPC endpoint")
        if not config.btc_rpc_user or not config.btc_rpc_password:
            raise RailConfigurationError("btc rail RPC credentials are not configured")
        return UtxoVerifier(
            url,
            config.btc_rpc_user,
            config.btc_rpc_password,
            timeout_seconds=timeout,
            transport=transport,
        )

    if rail is Rail.LEDGER:
        url = row.rpc_url or config.xrpl_rpc_url
        if not url:
            raise RailConfigurationError("xrp rail has no RPC endpoint")
        configured_destination_tag(row.meta or {})
        return LedgerVerifier(url, timeout_seconds=timeout, transport=transport)

    if not config.pi_api_base or not config.pi_api_key:
        raise RailConfigurationError("pi rail API base/key are not configured")
    return PlatformVerifier(config.pi_api_base, config.pi_api_key, timeout_seconds=timeout, transport=transport)
