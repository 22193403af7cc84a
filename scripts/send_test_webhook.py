#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
from uuid import uuid4

import requests

from storefront.core.signing import REQUEST_ID_HEADER, SIGNATURE_HEADER, sign_request


def main() -> None:
    parser = argparse.ArgumentParser(description="Send a correctly signed payment notification to a running server")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--payment-id", required=True)
    parser.add_argument("--topic", default="payment", choices=["payment", "merchant_order"])
    parser.add_argument("--secret", required=True, help="Same value as SF_MP_WEBHOOK_SECRET on the server")
    args = parser.parse_args()

    request_id = str(uuid4())
    signature, _ = sign_request(args.secret, args.payment_id, request_id)
    resp = requests.post(
        f"{args.base_url}/webhooks/mercadopago",
        params={"type": args.topic, "data.id": args.payment_id},
        headers={SIGNATURE_HEADER: signature, REQUEST_ID_HEADER: request_id},
        json={"type": args.topic, "action": f"{args.topic}.updated", "data": {"id": args.payment_id}},
        timeout=30,
    )
    print(json.dumps({"status_code": resp.status_code, "body": resp.json()}, indent=2, ensure_ascii=False))
    if resp.status_code >= 400:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
