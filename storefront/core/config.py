from __future__ import annotations

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STOREFRONT_API_KEY = "sf-storefront-dev-key"
DEFAULT_ADMIN_API_KEY = "sf-admin-dev-key"
DEFAULT_SYSTEM_API_KEY = "sf-system-dev-key"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="SF_", extra="ignore")

    app_name: str = "Storefront Core"
    env: str = "dev"
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    database_url: str = "sqlite+pysqlite:///./storefront.db"
    sqlite_busy_timeout_seconds: int = 15

    bootstrap_demo_on_startup: bool = False

    auth_enabled: bool = True
    storefront_api_key: str = DEFAULT_STOREFRONT_API_KEY
    admin_api_key: str = DEFAULT_ADMIN_API_KEY
    system_api_key: str = DEFAULT_SYSTEM_API_KEY
    storefront_actor_id: str = "storefront-web"
    admin_actor_id: str = "admin-panel"
    system_actor_id: str = "system-001"

    # Mercado Pago
    mp_access_token: str | None = None
    mp_api_base_url: str = "https://api.mercadopago.com"
    mp_webhook_secret: str | None = None
    # Maximum age of a webhook signature timestamp; 0 disables the check.
    mp_signature_tolerance_seconds: int = 0
    mp_notification_url: str | None = None
    mp_timeout_seconds: float = 15.0
    mp_max_attempts: int = 3

    site_url: str = "https://loja.example.com"
    public_api_url: str = "https://api.loja.example.com"
    currency_id: str = "BRL"
    max_installments: int = 12
    statement_descriptor: str = "STOREFRONT"
    payment_method_discounts: dict[str, Decimal] = Field(
        default_factory=lambda: {"pix": Decimal("10")},
        description="Percent discount per payment method kind, applied on the subtotal",
    )

    order_number_max_attempts: int = 5

    # Downstream order automation (n8n)
    dispatch_url: str | None = None
    dispatch_token: str | None = None
    dispatch_secret: str | None = None
    dispatch_timeout_seconds: float = 12.0
    dispatch_max_attempts: int = 5
    dispatch_backoff_initial_seconds: float = 0.5
    dispatch_backoff_max_seconds: float = 8.0
    dispatch_backoff_jitter_seconds: float = 0.0

    @property
    def is_dev(self) -> bool:
        return self.env.lower() == "dev"

    def model_post_init(self, __context) -> None:
        if self.is_dev:
            return

        insecure_items: list[str] = []
        if self.storefront_api_key == DEFAULT_STOREFRONT_API_KEY:
            insecure_items.append("SF_STOREFRONT_API_KEY")
        if self.admin_api_key == DEFAULT_ADMIN_API_KEY:
            insecure_items.append("SF_ADMIN_API_KEY")
        if self.system_api_key == DEFAULT_SYSTEM_API_KEY:
            insecure_items.append("SF_SYSTEM_API_KEY")
        if not self.mp_webhook_secret:
            insecure_items.append("SF_MP_WEBHOOK_SECRET")

        if insecure_items:
            raise ValueError(
                "insecure or missing secrets are not allowed outside dev mode; set env vars: "
                + ", ".join(sorted(insecure_items))
            )
        if not self.site_url.lower().startswith("https://"):
            raise ValueError("SF_SITE_URL must be an https URL outside dev mode")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
