"""Infrastructure and configuration errors raised by rail verifiers.

These are never folded into a failure reason code: callers treat them as
transient and keep the purchase pending.
"""


class RailConfigurationError(ValueError):
    """Unknown rail, missing endpoint or missing credentials."""


class RailError(Exception):
    """Base class for upstream infrastructure failures."""

    error_type = "rail_error"

    def __init__(self, rail: str, method: str, detail=None) -> None:
        self.rail = rail
        self.method = method
        self.detail = detail
        super().__init__(f"{self.error_type} rail={rail} method={method} detail={detail!r}")


class RailTimeoutError(RailError):
    """The upstream call did not finish within its time budget."""

    error_type = "timeout"


class RailTransportError(RailError):
    """Connection-level failure before any response was received."""

    error_type = "transport"


class RailResponseError(RailError):
    """The upstream answered but the body could not be parsed or understood."""

    error_type = "malformed_response"


class RailRpcError(RailError):
    """The upstream explicitly returned an error object."""

    error_type = "upstream_error"


class RailHttpStatusError(RailError):
    """The upstream rejected the request with a non-success HTTP status."""

    error_type = "http_status"

    def __init__(self, rail: str, method: str, status_code: int, detail=None) -> None:
        self.status_code = status_code
        super().__init__(rail, method, {"status_code": status_code, "body": detail})
