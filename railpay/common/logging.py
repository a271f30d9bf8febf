"""Structured JSON logging with request, purchase and rail context fields."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from railpay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
purchase_id_ctx: ContextVar[str] = ContextVar("purchase_id", default="")
rail_ctx: ContextVar[str] = ContextVar("rail", default="")

# httpx logs every request line at INFO; rail calls are already covered by
# metrics and spans.
QUIET_LOGGERS = ("httpx", "httpcore")


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.purchase_id = purchase_id_ctx.get()
        record.rail = rail_ctx.get()
        return True


def configure_logging() -> None:
    """Configure root logger once per service process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(purchase_id)s %(rail)s %(message)s",
        rename_fields={"levelname": "level", "asctime": "ts"},
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))


logger = logging.getLogger("railpay")
