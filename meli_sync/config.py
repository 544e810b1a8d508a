"""meli-sync service configuration."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-driven settings for the notification service."""

    # Marketplace API
    api_base_url: str = "https://api.mercadolibre.com"
    client_id: str = ""
    client_secret: str = ""
    bootstrap_refresh_token: str = ""
    seller_id: str = ""
    site_sale_url: str = "https://www.mercadolibre.com.ar/ventas/{order_id}/detalle"
    external_product_url: str = "https://www.amazon.com/dp/{sku}"

    request_timeout_seconds: float = 10.0
    token_refresh_leeway_seconds: int = 0

    # Fee settlement lags the order; see EnrichmentPipeline
    fee_retry_attempts: int = 1
    fee_retry_delay_seconds: float = 5.0

    # Business-process system (Flokzu)
    process_base_url: str = "https://app.flokzu.com/flokzuopenapi/api/v2"
    process_id: str = ""
    process_api_key: str = ""
    process_username: str = ""

    spreadsheet_webhook_url: str = ""

    post_sale_message_enabled: bool = True
    post_sale_message_template: str = (
        "Hola! Gracias por tu compra de {product}. "
        "Ya estamos preparando tu pedido y te avisaremos cuando sea despachado. "
        "Cualquier consulta estamos a disposicion por este medio."
    )
    post_sale_message_max_length: int = 350

    adjust_stock_on_sale: bool = False

    worker_count: int = 4

    database_url: str = ""
    redis_url: str = ""
    refresh_lock_timeout_seconds: int = 30

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = {"env_prefix": "MELI_SYNC_", "env_file": ".env", "extra": "ignore"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once from the environment."""
    return Settings()
