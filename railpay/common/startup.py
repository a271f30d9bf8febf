"""Startup-time helpers for safe config logging."""

from railpay.common.config import CommonSettings
from railpay.common.logging import logger


SECRET_MARKERS = ("key", "secret", "password", "token", "dsn")


def redacted_config(config: CommonSettings, fields: list[str]) -> dict:
    """Return selected settings with secret-like values masked.

    Empty secrets are reported as `<unset>` so a missing credential is visible
    in the startup line without leaking a configured one.
    """

    out = {}
    for name in fields:
        value = getattr(config, name, None)
        if value in (None, ""):
            out[name] = "<unset>"
        elif any(marker in name for marker in SECRET_MARKERS):
            out[name] = "<redacted>"
        else:
            out[name] = value
    return out


def log_startup_config(config: CommonSettings, fields: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    logger.info("startup_config service=%s config=%s", config.service_name, redacted_config(config, fields))
