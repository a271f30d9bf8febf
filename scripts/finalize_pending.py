"""Run a single reconciliation cycle over pending purchases and print the counters."""

import argparse
import asyncio
import json

from railpay.common.config import settings
from railpay.common.db import SessionLocal
from railpay.common.logging import configure_logging
from railpay.services.finalizer.service import FinalizerService


def main() -> None:
    """CLI entrypoint for one-shot finalization (cron or manual replay)."""

    parser = argparse.ArgumentParser(description="Re-verify pending purchases once.")
    parser.add_argument("--batch-size", type=int, default=settings.finalizer_batch_size)
    args = parser.parse_args()

    configure_logging()
    config = settings.model_copy(update={"finalizer_batch_size": args.batch_size})
    summary = asyncio.run(FinalizerService(SessionLocal, config=config).run_once())
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
