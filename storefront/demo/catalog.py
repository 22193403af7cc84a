from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.timeutil import now_utc
from storefront.persistence.models import CouponModel, CustomerModel, ProductModel, ProductVariantModel

DEMO_CATALOG_VERSION = "1.0.0"

DEMO_PRODUCTS: list[dict[str, Any]] = [
    {
        "id": "camiseta-basica",
        "nome": "Camiseta Basica",
        "preco": Decimal("50.00"),
        "imagem": "/img/camiseta-basica.jpg",
        "variants": [
            {"id": "camiseta-basica-p-preta", "tamanho": "P", "cor": "preta", "estoque": 10},
            {"id": "camiseta-basica-m-preta", "tamanho": "M", "cor": "preta", "estoque": 10},
            {"id": "camiseta-basica-g-branca", "tamanho": "G", "cor": "branca", "estoque": 5},
        ],
    },
    {
        "id": "moletom-capuz",
        "nome": "Moletom com Capuz",
        "preco": Decimal("189.90"),
        "imagem": "/img/moletom-capuz.jpg",
        "variants": [
            {"id": "moletom-capuz-m-cinza", "tamanho": "M", "cor": "cinza", "estoque": 3},
            {"id": "moletom-capuz-g-cinza", "tamanho": "G", "cor": "cinza", "estoque": 1},
        ],
    },
    {
        "id": "bone-aba-curva",
        "nome": "Bone Aba Curva",
        "preco": Decimal("79.00"),
        "imagem": "/img/bone-aba-curva.jpg",
        "variants": [{"id": "bone-aba-curva-unico-azul", "tamanho": "U", "cor": "azul", "estoque": 20}],
    },
]

DEMO_COUPONS: list[dict[str, Any]] = [
    {"codigo": "PROMO10", "desconto_percentual": Decimal("10"), "status": "ativo"},
    {"codigo": "BEMVINDO15", "desconto_percentual": Decimal("15"), "status": "ativo", "days": 30},
    {"codigo": "NATAL2020", "desconto_percentual": Decimal("20"), "status": "inativo"},
]

DEMO_CUSTOMER = {"nome": "Cliente Demo", "email": "cliente.demo@example.com", "cpf": "123.456.789-09"}


def seed_demo_catalog(session: Session) -> dict[str, Any]:
    """Insert the demo catalog once; later calls only report what exists."""
    now = now_utc()
    created = {"produtos": 0, "variantes": 0, "cupons": 0, "clientes": 0}

    for entry in DEMO_PRODUCTS:
        if session.get(ProductModel, entry["id"]) is not None:
            continue
        product = ProductModel(id=entry["id"], nome=entry["nome"], preco=entry["preco"], imagem=entry["imagem"], ativo=True)
        session.add(product)
        created["produtos"] += 1
        for variant in entry["variants"]:
            product.variants.append(ProductVariantModel(ativo=True, **variant))
            created["variantes"] += 1

    for entry in DEMO_COUPONS:
        exists = session.scalar(select(CouponModel.id).where(CouponModel.codigo == entry["codigo"]))
        if exists is not None:
            continue
        days = entry.get("days")
        session.add(
            CouponModel(
                codigo=entry["codigo"],
                desconto_percentual=entry["desconto_percentual"],
                status=entry["status"],
                inicio_em=now if days else None,
                fim_em=now + timedelta(days=days) if days else None,
            )
        )
        created["cupons"] += 1

    customer = session.scalar(select(CustomerModel).where(CustomerModel.email == DEMO_CUSTOMER["email"]))
    if customer is None:
        customer = CustomerModel(created_at=now, **DEMO_CUSTOMER)
        session.add(customer)
        created["clientes"] += 1

    session.flush()
    return {
        "catalog_version": DEMO_CATALOG_VERSION,
        "seeded_now": any(created.values()),
        "created": created,
        "cliente_id": customer.id,
        "produtos": [
            {"id": entry["id"], "variantes": [variant["id"] for variant in entry["variants"]]}
            for entry in DEMO_PRODUCTS
        ],
        "cupons": [entry["codigo"] for entry in DEMO_COUPONS],
    }
