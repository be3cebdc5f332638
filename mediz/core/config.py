import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class Settings:
    """Centralised application configuration sourced from environment variables."""

    def __init__(self) -> None:
        load_dotenv()
        self.database_path = Path(os.getenv("DATABASE_PATH", "data/billing.db")).resolve()
        self.stripe_secret_key = os.getenv("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
        self.hotmart_hottok = os.getenv("HOTMART_HOTTOK")
        self.hotmart_product_id = os.getenv("HOTMART_PRODUCT_ID")
        self.hotmart_auto_provision_users = self._get_bool("HOTMART_AUTO_PROVISION_USERS", default=True)
        self.enforce_event_ordering = self._get_bool("ENFORCE_EVENT_ORDERING", default=True)
        self.admin_token_secret = os.getenv("ADMIN_TOKEN_SECRET", "change-me")
        self.admin_token_exp_minutes = self._get_int("ADMIN_TOKEN_EXP_MINUTES", default=60 * 24)
        self.admin_default_email = os.getenv("ADMIN_EMAIL")
        self.admin_default_password = os.getenv("ADMIN_PASSWORD")
        origins = os.getenv("CORS_ALLOW_ORIGINS")
        if origins:
            self.cors_allow_origins = [item.strip() for item in origins.split(",") if item.strip()]
        else:
            self.cors_allow_origins = ["*"]

    @staticmethod
    def _get_int(key: str, default: Optional[int] = None) -> int:
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise RuntimeError(f"Missing required environment variable: {key}")
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Environment variable {key} must be an integer") from exc

    @staticmethod
    def _get_bool(key: str, default: bool) -> bool:
        value = os.getenv(key)
        if value is None or not value.strip():
            return default
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise RuntimeError(f"Environment variable {key} must be a boolean")
