"""Verifier construction from rail config rows."""

from types import SimpleNamespace

import pytest

from railpay.rails.errors import RailConfigurationError
from railpay.rails.evm import EvmVerifier
from railpay.rails.ledger import LedgerVerifier
from railpay.rails.platform import PlatformVerifier
from railpay.rails.registry import build_verifier, rail_key
from railpay.rails.utxo import UtxoVerifier


def _row(rail, chain_id=None, rpc_url=None, meta=None):
    return SimpleNamespace(rail=rail, chain_id=chain_id, rpc_url=rpc_url, meta=meta or {})


def test_builds_each_rail(config):
    """Each rail builds its own verifier type."""

    assert isinstance(build_verifier(_row("eth", 1), config), EvmVerifier)
    assert isinstance(build_verifier(_row("btc"), config), UtxoVerifier)
    assert isinstance(build_verifier(_row("xrp"), config), LedgerVerifier)
    assert isinstance(build_verifier(_row("pi"), config), PlatformVerifier)


def test_row_endpoint_overrides_settings(config):
    """An endpoint on the rail row wins over the settings default."""

    evm = build_verifier(_row("eth", 8453, "http://base.rpc"), config)
    assert evm.rpc_by_chain_id == {1: "http://evm.test", 8453: "http://base.rpc"}
    assert build_verifier(_row("btc", rpc_url="http://node.rpc"), config).url == "http://node.rpc"


def test_credentials_come_from_settings_only(config):
    """Node and platform credentials are read from settings."""

    btc = build_verifier(_row("btc"), config)
    assert btc.auth == ("rpc", "secret")
    pi = build_verifier(_row("pi"), config)
    assert pi.headers == {"Authorization": "Key pi-key"}


def test_missing_credentials_are_configuration_errors(config):
    """A rail without its credentials or endpoint cannot be built."""

    with pytest.raises(RailConfigurationError):
        build_verifier(_row("btc"), config.model_copy(update={"btc_rpc_password": ""}))
    with pytest.raises(RailConfigurationError):
        build_verifier(_row("xrp"), config.model_copy(update={"xrpl_rpc_url": ""}))
    with pytest.raises(RailConfigurationError):
        build_verifier(_row("pi"), config.model_copy(update={"pi_api_key": ""}))


def test_unknown_rail_is_a_hard_error(config):
    """An unknown rail name is a configuration error."""

    with pytest.raises(RailConfigurationError):
        build_verifier(_row("doge"), config)


def test_rail_key():
    """Rail keys spell a missing chain id as null."""

    assert rail_key("eth", 1) == "eth:1"
    assert rail_key("btc", None) == "btc:null"


def test_bad_destination_tag_is_rejected_at_build(config):
    """The xrp rail refuses to build with a non-integer pinned destination tag."""

    assert isinstance(build_verifier(_row("xrp", meta={"destination_tag": "17"}), config), LedgerVerifier)
    with pytest.raises(RailConfigurationError):
        build_verifier(_row("xrp", meta={"destination_tag": "seventeen"}), config)
