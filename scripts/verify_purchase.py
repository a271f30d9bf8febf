"""Submit one purchase verification to the purchases service and print the response."""

import argparse
import json
import os

import httpx


def main() -> None:
    """CLI entrypoint for manual verification checks."""

    parser = argparse.ArgumentParser(description="POST /marketplace/purchase/verify")
    parser.add_argument("--purchases-url", default="http://localhost:8010")
    parser.add_argument("--api-key", default=os.getenv("API_KEY", ""))
    parser.add_argument("--buyer", required=True)
    parser.add_argument("--rail", required=True, choices=["eth", "btc", "xrp", "pi"])
    parser.add_argument("--listing-id", required=True)
    parser.add_argument("--tx", required=True, help="tx hash / txid / platform payment id")
    parser.add_argument("--chain-id", type=int, default=None)
    parser.add_argument("--destination-tag", type=int, default=None)
    args = parser.parse_args()

    body = {"rail": args.rail, "listingId": args.listing_id, "txReference": args.tx}
    if args.chain_id is not None:
        body["chainId"] = args.chain_id
    if args.destination_tag is not None:
        body["destinationTag"] = args.destination_tag

    resp = httpx.post(
        f"{args.purchases_url}/marketplace/purchase/verify",
        json=body,
        headers={"X-API-Key": args.api_key, "X-Buyer-Address": args.buyer},
        timeout=60.0,
    )
    print(resp.status_code)
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
