from __future__ import annotations

import json
import re
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import httpx
import pytest
from fastapi.testclient import TestClient

import storefront.persistence.pg as pg
from storefront.core.config import get_settings
from storefront.persistence.models import Base, CouponModel, ProductModel, ProductVariantModel

WEBHOOK_SECRET = "test-webhook-secret"
PROVIDER_BASE_URL = "https://api.mercadopago.test"
DOWNSTREAM_URL = "https://n8n.example.test/webhook/pedidos"


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("db") / "test.sqlite"


@pytest.fixture(scope="session", autouse=True)
def configure_test_engine(test_db_path: Path):
    settings = get_settings()
    settings.env = "dev"
    settings.auth_enabled = True
    settings.mp_access_token = "TEST-access-token"
    settings.mp_api_base_url = PROVIDER_BASE_URL
    settings.mp_webhook_secret = WEBHOOK_SECRET
    settings.site_url = "https://loja.example.com"
    settings.public_api_url = "https://api.loja.example.com"
    settings.dispatch_url = None

    engine = pg.create_engine_from_url(f"sqlite+pysqlite:///{test_db_path}")
    pg.engine = engine
    pg.SessionLocal = pg.make_session_factory(engine)

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables(configure_test_engine):
    with pg.engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture()
def settings():
    return get_settings()


@pytest.fixture()
def client(configure_test_engine):
    from storefront.main import app

    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def session(configure_test_engine):
    with pg.session_scope() as s:
        yield s


@pytest.fixture()
def auth_headers():
    settings = get_settings()
    return {
        "storefront": {"X-API-Key": settings.storefront_api_key},
        "admin": {"X-API-Key": settings.admin_api_key},
        "system": {"X-API-Key": settings.system_api_key},
    }


@pytest.fixture()
def make_variant():
    def _make(
        estoque: int = 10,
        preco: str = "50.00",
        *,
        produto_ativo: bool = True,
        ativo: bool = True,
        tamanho: str = "M",
        cor: str = "preta",
    ) -> dict[str, str]:
        product_id = f"prod-{uuid4().hex[:8]}"
        variant_id = f"var-{uuid4().hex[:8]}"
        with pg.session_scope() as s:
            product = ProductModel(id=product_id, nome=f"Produto {product_id}", preco=Decimal(preco), ativo=produto_ativo)
            product.variants.append(
                ProductVariantModel(id=variant_id, tamanho=tamanho, cor=cor, estoque=estoque, ativo=ativo)
            )
            s.add(product)
        return {"produto_id": product_id, "variante_id": variant_id}

    return _make


@pytest.fixture()
def make_coupon():
    def _make(codigo: str, percent: str = "10", status: str = "ativo", inicio_em=None, fim_em=None) -> str:
        with pg.session_scope() as s:
            s.add(
                CouponModel(
                    codigo=codigo,
                    desconto_percentual=Decimal(percent),
                    status=status,
                    inicio_em=inicio_em,
                    fim_em=fim_em,
                )
            )
        return codigo

    return _make


@pytest.fixture()
def stock_of():
    def _stock(variant_id: str) -> int:
        with pg.session_scope() as s:
            return s.get(ProductVariantModel, variant_id).estoque

    return _stock


class FakeMercadoPago:
    """In-memory stand-in for the provider REST API, served through httpx.MockTransport."""

    def __init__(self):
        self.payments: dict[str, dict] = {}
        self.merchant_orders: dict[str, dict] = {}
        self.preferences: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.scripted_statuses: list[int] = []
        self.created_payments: list[dict] = []
        self.direct_status: str | None = None
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.scripted_statuses:
            status = self.scripted_statuses.pop(0)
            return httpx.Response(status, json={"message": "scripted failure", "status": status})

        path = request.url.path
        if request.method == "POST" and path == "/checkout/preferences":
            payload = json.loads(request.content)
            self.preferences.append(payload)
            pref_id = f"pref-{len(self.preferences)}"
            return httpx.Response(
                201,
                json={
                    "id": pref_id,
                    "init_point": f"https://www.mercadopago.test/checkout?pref_id={pref_id}",
                    "sandbox_init_point": f"https://sandbox.mercadopago.test/checkout?pref_id={pref_id}",
                },
            )

        if request.method == "POST" and path == "/v1/payments":
            return httpx.Response(201, json=self.create_payment(json.loads(request.content)))

        match = re.fullmatch(r"/v1/payments/(\w+)", path)
        if request.method == "GET" and match:
            payment = self.payments.get(match.group(1))
            if payment is None:
                return httpx.Response(404, json={"message": "payment not found"})
            return httpx.Response(200, json=payment)

        match = re.fullmatch(r"/merchant_orders/(\w+)", path)
        if request.method == "GET" and match:
            merchant_order = self.merchant_orders.get(match.group(1))
            if merchant_order is None:
                return httpx.Response(404, json={"message": "merchant order not found"})
            return httpx.Response(200, json=merchant_order)

        return httpx.Response(404, json={"message": f"unexpected {request.method} {path}"})

    def create_payment(self, payload: dict) -> dict:
        self.created_payments.append(payload)
        payment_id = str(700000 + len(self.created_payments))
        pix = payload["payment_method_id"] == "pix"
        status = self.direct_status or ("pending" if pix else "approved")
        payment = self.add_payment(
            payment_id,
            status,
            payload["transaction_amount"],
            payment_method_id=payload["payment_method_id"],
            external_reference=payload.get("external_reference"),
            metadata=payload.get("metadata") or {},
        )
        if status == "pending":
            payment["status_detail"] = "pending_waiting_transfer"
        if pix:
            payment["date_of_expiration"] = "2030-01-01T00:00:00.000-03:00"
            payment["point_of_interaction"] = {
                "transaction_data": {
                    "qr_code": f"00020126-pix-{payment_id}",
                    "qr_code_base64": "iVBORw0KGgo=",
                    "ticket_url": f"https://www.mercadopago.test/payments/{payment_id}/ticket",
                }
            }
        return payment

    def add_payment(self, payment_id: str, status: str, amount, pedido_id: str | None = None, **extra) -> dict:
        payment = {
            "id": int(payment_id) if str(payment_id).isdigit() else payment_id,
            "status": status,
            "status_detail": extra.pop("status_detail", "accredited" if status == "approved" else status),
            "transaction_amount": float(amount),
            "payment_method_id": extra.pop("payment_method_id", "pix"),
            "external_reference": extra.pop("external_reference", None),
            "metadata": extra.pop("metadata", {"pedido_id": pedido_id} if pedido_id else {}),
        }
        payment.update(extra)
        self.payments[str(payment_id)] = payment
        return payment

    def client(self):
        from storefront.payments.client import MercadoPagoClient

        return MercadoPagoClient(get_settings(), transport=self.transport, sleep=lambda _seconds: None)


class FakeDownstream:
    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.statuses: list[int] = []
        self.sleeps: list[float] = []
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, json={"received": status < 400})

    def dispatcher(self):
        from storefront.dispatch.dispatcher import OrderDispatcher

        return OrderDispatcher(get_settings(), transport=self.transport, sleep=self.sleeps.append)


@pytest.fixture()
def fake_provider():
    return FakeMercadoPago()


@pytest.fixture()
def fake_downstream(settings):
    fake = FakeDownstream()
    previous_url = settings.dispatch_url
    settings.dispatch_url = DOWNSTREAM_URL
    yield fake
    settings.dispatch_url = previous_url


@pytest.fixture()
def provider(client, fake_provider):
    from storefront.main import app
    from storefront.payments.client import get_payment_client

    fake = fake_provider
    app.dependency_overrides[get_payment_client] = fake.client
    yield fake
    app.dependency_overrides.pop(get_payment_client, None)


@pytest.fixture()
def downstream(client, fake_downstream):
    from storefront.dispatch.dispatcher import get_dispatcher
    from storefront.main import app

    app.dependency_overrides[get_dispatcher] = fake_downstream.dispatcher
    yield fake_downstream
    app.dependency_overrides.pop(get_dispatcher, None)
