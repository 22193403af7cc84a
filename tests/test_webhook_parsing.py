from __future__ import annotations

import pytest

from storefront.core.errors import ValidationError
from storefront.payments.webhooks import decode_body, parse_notification


def test_query_data_id_wins_and_is_the_signed_id():
    notification = parse_notification({"type": "payment", "data.id": "123"}, {"data": {"id": "999"}})
    assert notification.topic == "payment"
    assert notification.resource_id == "123"
    assert notification.signed_id == "123"


def test_body_data_id_and_action_prefix():
    notification = parse_notification({}, {"action": "payment.created", "data": {"id": 456}})
    assert notification.topic == "payment"
    assert notification.resource_id == "456"


def test_legacy_topic_and_id_in_query():
    notification = parse_notification({"topic": "merchant_order", "id": "789"}, {})
    assert notification.topic == "merchant_order"
    assert notification.resource_id == "789"
    assert notification.is_known


def test_resource_url_sets_topic_and_id():
    notification = parse_notification({}, {"resource": "https://api.mercadopago.com/merchant_orders/321"})
    assert notification.topic == "merchant_order"
    assert notification.resource_id == "321"


def test_unknown_topic_is_not_known():
    assert not parse_notification({"type": "plan", "id": "1"}, {}).is_known


def test_missing_id_is_validation_error():
    with pytest.raises(ValidationError):
        parse_notification({"type": "payment"}, {})


def test_decode_body_variants():
    assert decode_body(b"", "application/json") == {}
    assert decode_body(b"not json", "application/json") == {}
    assert decode_body(b"[1, 2]", "application/json") == {}
    assert decode_body(b'{"type": "payment"}', None) == {"type": "payment"}
    assert decode_body(b"topic=payment&id=5", "application/x-www-form-urlencoded") == {"topic": "payment", "id": "5"}
