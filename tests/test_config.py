from __future__ import annotations

from decimal import Decimal

import pytest

from storefront.core.config import Settings

SECURE = {
    "storefront_api_key": "k1",
    "admin_api_key": "k2",
    "system_api_key": "k3",
    "mp_webhook_secret": "whsec",
    "site_url": "https://loja.example.com",
}


def test_dev_defaults():
    settings = Settings(_env_file=None, env="dev")
    assert settings.is_dev
    assert settings.payment_method_discounts == {"pix": Decimal("10")}
    assert settings.mp_timeout_seconds == 15
    assert settings.dispatch_timeout_seconds == 12


def test_production_accepts_explicit_secrets():
    settings = Settings(_env_file=None, env="prod", **SECURE)
    assert not settings.is_dev


@pytest.mark.parametrize("missing", ["storefront_api_key", "admin_api_key", "system_api_key", "mp_webhook_secret"])
def test_production_refuses_defaults_or_missing_secrets(missing):
    values = dict(SECURE)
    values.pop(missing)
    with pytest.raises(ValueError):
        Settings(_env_file=None, env="prod", **values)


def test_production_requires_https_site_url():
    with pytest.raises(ValueError):
        Settings(_env_file=None, env="prod", **{**SECURE, "site_url": "http://loja.example.com"})


def test_environment_variables_use_prefix(monkeypatch):
    monkeypatch.setenv("SF_DISPATCH_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("SF_PAYMENT_METHOD_DISCOUNTS", '{"pix": "5", "card": "2.5"}')
    settings = Settings(_env_file=None)
    assert settings.dispatch_max_attempts == 7
    assert settings.payment_method_discounts == {"pix": Decimal("5"), "card": Decimal("2.5")}
