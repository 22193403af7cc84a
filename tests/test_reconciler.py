from __future__ import annotations

import pytest

import storefront.persistence.pg as pg
from storefront.core.errors import PaymentProviderError
from storefront.domain.orders.commands import CreateOrderRequest
from storefront.domain.orders.service import OrderService
from storefront.payments.reconciler import PaymentReconciler, process_notification
from storefront.payments.webhooks import Notification
from storefront.persistence.models import OrderModel, PaymentEventModel


def _pending_order(variant_id: str, qty: int = 1) -> OrderModel:
    with pg.session_scope() as session:
        return OrderService(session).create_order(
            CreateOrderRequest(forma_pagamento="pix", itens=[{"variante_id": variant_id, "quantidade": qty}])
        )


def _reconcile(fake_provider, payment_id: str):
    with pg.session_scope() as session:
        return PaymentReconciler(session, fake_provider.client()).reconcile_payment(payment_id)


def test_unmapped_status_is_recorded_without_mutation(fake_provider, make_variant):
    ids = make_variant()
    order = _pending_order(ids["variante_id"])
    fake_provider.add_payment("11", "authorized", order.total, pedido_id=order.id)

    outcome = _reconcile(fake_provider, "11")

    assert outcome.action == "unmapped"
    with pg.session_scope() as session:
        assert session.get(OrderModel, order.id).status == "pendente"
        event = session.query(PaymentEventModel).filter(PaymentEventModel.provider_payment_id == "11").one()
        assert event.status == "authorized"
        assert event.pedido_id == order.id
        assert event.raw["status"] == "authorized"


@pytest.mark.parametrize(
    "provider_status,order_status",
    [
        ("approved", "pago"),
        ("pending", "pendente"),
        ("in_process", "pendente"),
        ("rejected", "recusado"),
        ("cancelled", "cancelado"),
    ],
)
def test_status_map_from_pending(fake_provider, make_variant, provider_status, order_status):
    ids = make_variant()
    order = _pending_order(ids["variante_id"])
    fake_provider.add_payment("12", provider_status, order.total, pedido_id=order.id)

    outcome = _reconcile(fake_provider, "12")

    assert outcome.order_status == order_status
    assert outcome.finalized is (order_status == "pago")


def test_charged_back_moves_paid_order_to_dispute(fake_provider, make_variant, stock_of):
    ids = make_variant(estoque=3)
    order = _pending_order(ids["variante_id"])
    fake_provider.add_payment("13", "approved", order.total, pedido_id=order.id)
    _reconcile(fake_provider, "13")

    fake_provider.add_payment("13", "charged_back", order.total, pedido_id=order.id)
    outcome = _reconcile(fake_provider, "13")

    assert outcome.order_status == "contestacao"
    assert stock_of(ids["variante_id"]) == 2


def test_payment_without_order_or_metadata_is_only_logged(fake_provider):
    fake_provider.add_payment("14", "approved", "10.00")

    outcome = _reconcile(fake_provider, "14")

    assert outcome.action == "order_not_found"
    assert outcome.pedido_id is None
    with pg.session_scope() as session:
        assert session.query(OrderModel).count() == 0
        assert session.query(PaymentEventModel).count() == 1


def test_non_approved_payment_never_reconstructs(fake_provider, make_variant):
    ids = make_variant()
    fake_provider.add_payment(
        "15",
        "rejected",
        "50.00",
        metadata={"items": [{"produto_id": ids["produto_id"], "variante_id": ids["variante_id"], "quantidade": 1, "preco": "50.00"}]},
    )

    assert _reconcile(fake_provider, "15").action == "order_not_found"
    with pg.session_scope() as session:
        assert session.query(OrderModel).count() == 0


def test_pay_first_reconstructs_paid_order_through_the_ledger(fake_provider, make_variant, stock_of):
    ids = make_variant(estoque=4, preco="50.00")
    fake_provider.add_payment(
        "16",
        "approved",
        "115.00",
        external_reference="LOJA-777",
        metadata={
            "numero_pedido": "LOJA-777",
            "forma_pagamento": "pix",
            "customer": {"nome": "Joana", "email": "joana@example.com", "cpf": "111.222.333-44"},
            "shipping": {"frete": "15.00", "endereco": {"cep": "20000-000"}},
            "items": [{"produto_id": ids["produto_id"], "variante_id": ids["variante_id"], "quantidade": 2, "preco": "50.00"}],
        },
    )

    outcome = _reconcile(fake_provider, "16")

    assert outcome.action == "reconstructed:applied"
    assert outcome.finalized
    assert stock_of(ids["variante_id"]) == 2
    with pg.session_scope() as session:
        order = session.get(OrderModel, outcome.pedido_id)
        assert order.numero_pedido == "LOJA-777"
        assert order.status == "pago"
        assert order.total == order.subtotal - order.desconto + order.frete
        assert str(order.total) == "115.00"
        assert order.provider_payment_id == "16"
        assert order.customer.cpf == "111.222.333-44"
        assert not order.needs_review


def test_pay_first_without_stock_never_goes_negative(fake_provider, make_variant, stock_of):
    ids = make_variant(estoque=0, preco="50.00")
    fake_provider.add_payment(
        "17",
        "approved",
        "50.00",
        metadata={"items": [{"produto_id": ids["produto_id"], "variante_id": ids["variante_id"], "quantidade": 1, "preco": "50.00"}]},
    )

    outcome = _reconcile(fake_provider, "17")

    assert outcome.order_status == "pago"
    assert stock_of(ids["variante_id"]) == 0
    with pg.session_scope() as session:
        order = session.get(OrderModel, outcome.pedido_id)
        assert order.needs_review
        assert order.review_reason == f"insufficient_stock:{ids['variante_id']}"


def test_replayed_pay_first_payment_reuses_the_rebuilt_order(fake_provider, make_variant, stock_of):
    ids = make_variant(estoque=5, preco="50.00")
    fake_provider.add_payment(
        "18",
        "approved",
        "50.00",
        external_reference="LOJA-888",
        metadata={
            "numero_pedido": "LOJA-888",
            "items": [{"produto_id": ids["produto_id"], "variante_id": ids["variante_id"], "quantidade": 1, "preco": "50.00"}],
        },
    )

    first = _reconcile(fake_provider, "18")
    second = _reconcile(fake_provider, "18")

    assert second.pedido_id == first.pedido_id
    assert second.action == "unchanged"
    assert stock_of(ids["variante_id"]) == 4


def test_replayed_pay_first_payment_without_reference_is_applied_once(fake_provider, make_variant, stock_of):
    ids = make_variant(estoque=5, preco="50.00")
    fake_provider.add_payment(
        "19",
        "approved",
        "50.00",
        metadata={"items": [{"produto_id": ids["produto_id"], "variante_id": ids["variante_id"], "quantidade": 2, "preco": "25.00"}]},
    )

    first = _reconcile(fake_provider, "19")
    second = _reconcile(fake_provider, "19")

    assert first.action == "reconstructed:applied"
    assert second.action == "unchanged"
    assert second.pedido_id == first.pedido_id
    assert stock_of(ids["variante_id"]) == 3
    with pg.session_scope() as session:
        assert session.query(OrderModel).count() == 1
        assert session.get(OrderModel, first.pedido_id).provider_payment_id == "19"


def test_rebuilt_order_with_colliding_number_is_found_again(fake_provider, make_variant, stock_of):
    taken = make_variant(estoque=5, preco="50.00")
    existing = _pending_order(taken["variante_id"])
    ids = make_variant(estoque=5, preco="50.00")
    fake_provider.add_payment(
        "20",
        "approved",
        "50.00",
        external_reference="LOJA-404",
        metadata={
            "numero_pedido": existing.numero_pedido,
            "items": [{"produto_id": ids["produto_id"], "variante_id": ids["variante_id"], "quantidade": 1, "preco": "50.00"}],
        },
    )

    first = _reconcile(fake_provider, "20")
    second = _reconcile(fake_provider, "20")

    assert first.pedido_id != existing.id
    assert second.pedido_id == first.pedido_id
    assert second.action == "unchanged"
    assert stock_of(ids["variante_id"]) == 4
    with pg.session_scope() as session:
        assert session.get(OrderModel, existing.id).status == "pendente"


def test_unknown_payment_raises_provider_error(fake_provider):
    with pytest.raises(PaymentProviderError) as excinfo:
        _reconcile(fake_provider, "404404")
    assert excinfo.value.status == 404


def test_process_notification_ignores_unknown_topics(fake_provider):
    assert process_notification(fake_provider.client(), Notification("plan", "1", "1")) == []
    assert fake_provider.requests == []
