"""Application settings loaded from environment variables."""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Bridge configuration. All values come from environment variables."""

    # Telegram
    telegram_bot_token: str = Field(default="")
    telegram_proxy_url: str = Field(default="")

    # Intercom
    intercom_access_token: str = Field(default="")
    intercom_api_url: str = Field(default="https://api.intercom.io")
    intercom_api_version: str = Field(default="2.11")
    intercom_client_secret: str = Field(default="")
    intercom_timeout_seconds: float = Field(default=30.0)

    # Redis
    redis_url: str = Field(default="redis://localhost:6379")

    # Routing
    lock_ttl_seconds: int = Field(default=30)
    contact_ttl_seconds: int = Field(default=86400)
    contention_wait_seconds: float = Field(default=1.0)
    max_delivery_attempts: int = Field(default=5)
    recover_bindings: bool = Field(default=True)

    # Webhooks
    webhook_host: str = Field(default="0.0.0.0")
    webhook_port: int = Field(default=3000)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def missing_required(self) -> list[str]:
        """Return env var names of required secrets that are not set."""
        missing = []
        if not self.telegram_bot_token.strip():
            missing.append("TELEGRAM_BOT_TOKEN")
        if not self.intercom_access_token.strip():
            missing.append("INTERCOM_ACCESS_TOKEN")
        if not self.intercom_client_secret.strip():
            missing.append("INTERCOM_CLIENT_SECRET")
        return missing

    def get_telegram_proxy(self) -> str | None:
        """Proxy URL for the Bot API, falling back to the standard proxy env vars."""
        if self.telegram_proxy_url.strip():
            return self.telegram_proxy_url.strip()
        for name in ("HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy"):
            value = os.getenv(name, "").strip()
            if value:
                return value
        return None


settings = Settings()
