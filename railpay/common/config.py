"""Central environment-driven settings shared by the purchases and finalizer processes.

Each process loads this once at startup. Rail secrets (RPC credentials, platform
API keys) are only ever read from here, never from the `payment_rails` table.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    postgres_dsn: str
    api_key: str
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"

    # Per upstream call; the request path additionally caps the whole verification.
    rail_timeout_seconds: float = 10.0
    verify_timeout_seconds: float = 25.0

    evm_supported_chain_ids: list[int] = [1, 8453, 137]
    evm_rpc_urls: dict[int, str] = {}
    btc_rpc_url: str = ""
    btc_rpc_user: str = ""
    btc_rpc_password: str = ""
    xrpl_rpc_url: str = ""
    pi_api_base: str = "https://api.minepi.com/v2"
    pi_api_key: str = ""

    finalizer_batch_size: int = 50
    finalizer_interval_seconds: float = 15.0
    # Purchases whose transfer is still unseen after this long are failed; 0 keeps them pending forever.
    finalizer_max_pending_age_seconds: float = 7 * 24 * 3600
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
