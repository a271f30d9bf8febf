"""Create or update one payment rail configuration through the admin endpoint."""

import argparse
import json
import os

import httpx


def main() -> None:
    """CLI entrypoint for rail configuration."""

    parser = argparse.ArgumentParser(description="POST /admin/payment-rails")
    parser.add_argument("--purchases-url", default="http://localhost:8010")
    parser.add_argument("--api-key", default=os.getenv("API_KEY", ""))
    parser.add_argument("--rail", required=True, choices=["eth", "btc", "xrp", "pi"])
    parser.add_argument("--chain-id", type=int, default=None)
    parser.add_argument("--currency", required=True)
    parser.add_argument("--treasury", required=True)
    parser.add_argument("--rpc-url", default=None)
    parser.add_argument("--min-confirmations", type=int, default=1)
    parser.add_argument("--disabled", action="store_true")
    parser.add_argument("--metadata", default="{}", help="JSON object, e.g. '{\"token\": \"0x...\"}'")
    args = parser.parse_args()

    body = {
        "rail": args.rail,
        "chainId": args.chain_id,
        "currency": args.currency,
        "treasury": args.treasury,
        "rpcUrl": args.rpc_url,
        "enabled": not args.disabled,
        "minConfirmations": args.min_confirmations,
        "metadata": json.loads(args.metadata),
    }
    resp = httpx.post(
        f"{args.purchases_url}/admin/payment-rails",
        json=body,
        headers={"X-API-Key": args.api_key},
        timeout=10.0,
    )
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
