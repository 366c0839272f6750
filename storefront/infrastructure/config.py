"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # API
    api_version: str = "0.1.0"
    debug: bool = False
    public_base_url: str = "http://localhost:4321"

    # Database
    database_url: str = "postgresql+asyncpg://storefront:storefront_dev_password@db:5432/storefront"
    use_database: bool = False
    create_tables: bool = False

    # Authentication
    auth_secret: str = "dev-auth-secret-change-in-production"
    auth_token_ttl_minutes: int = 1440

    # Checkout pricing
    base_currency: str = "USD"
    invoice_currencies: list[str] = ["BTC", "BCH", "ETH", "USD"]
    shipping_cents: int = 1000
    free_shipping_threshold_cents: int = 10000
    tax_rate: Decimal = Decimal("0.15")

    # Abandoned orders
    order_payment_ttl_minutes: int = 1440
    expiry_sweep_interval_seconds: int = 300

    # Card provider
    card_provider: str = "stripe"
    card_api_url: str = "https://api.stripe.com"
    card_secret_key: str = "sk_test_change_me"
    card_webhook_secret: str = "whsec_dev_change_me"

    # Invoice provider
    invoice_provider: str = "bitpay"
    invoice_api_url: str = "https://test.bitpay.com"
    invoice_token: str = "dev-bitpay-token"
    invoice_webhook_secret: str = "dev-invoice-webhook-secret"

    provider_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"


settings = Settings()
