#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json

import requests


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed the demo catalog and place a sample order")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default="sf-storefront-dev-key")
    parser.add_argument("--no-order", action="store_true", help="Only seed the catalog")
    args = parser.parse_args()

    resp = requests.post(f"{args.base_url}/demo/seed", timeout=60)
    resp.raise_for_status()
    catalog = resp.json()
    output = {"catalog": catalog}

    if not args.no_order:
        order = requests.post(
            f"{args.base_url}/orders",
            headers={"Authorization": f"Bearer {args.api_key}"},
            json={
                "cliente_id": catalog["cliente_id"],
                "forma_pagamento": "pix",
                "cupom": "PROMO10",
                "frete": "15.00",
                "endereco_entrega": {"cep": "01310-100", "logradouro": "Av. Paulista", "numero": "1000"},
                "itens": [{"variante_id": "camiseta-basica-m-preta", "quantidade": 2}],
            },
            timeout=30,
        )
        order.raise_for_status()
        output["order"] = order.json()

    print(json.dumps(output, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
