"""Environment driven runtime configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning({"event": "invalid_config", "name": name, "value": value, "default": default})
        return default


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning({"event": "invalid_config", "name": name, "value": value, "default": default})
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_extra_keys(raw: str) -> Dict[str, str]:
    """Parse ``index:key`` pairs separated by commas."""

    keys: Dict[str, str] = {}
    for part in raw.split(","):
        index, sep, key = part.strip().partition(":")
        if not sep or not index.strip() or not key.strip():
            continue
        keys[index.strip()] = key.strip()
    return keys


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one application instance."""

    db_path: str = "data/billing.db"
    merchant_id: str = ""
    salt_key: str = ""
    salt_index: str = "1"
    extra_salt_keys: Dict[str, str] = field(default_factory=dict)
    gateway_base_url: str = "https://api.phonepe.com/apis/pg-sandbox"
    gateway_domain: str = "phonepe.com"
    app_base_url: str = "http://localhost:8000"
    gateway_timeout_sec: float = 10.0
    sweep_interval_sec: float = 60.0
    sweeper_enabled: bool = True
    webhook_rate_limit: int = 100
    webhook_rate_window_sec: float = 60.0
    pending_order_ttl_min: int = 60
    jwt_secret: str = ""
    jwt_expire_min: int = 30
    log_level: str = "INFO"

    @property
    def signing_keys(self) -> Dict[str, str]:
        """Every salt key accepted for verification, indexed by salt index."""

        keys = dict(self.extra_salt_keys)
        keys[self.salt_index] = self.salt_key
        return keys

    @property
    def callback_url(self) -> str:
        return f"{self.app_base_url.rstrip('/')}/payments/webhook"

    @property
    def redirect_url(self) -> str:
        return f"{self.app_base_url.rstrip('/')}/payment/return"


def load_settings() -> Settings:
    """Build :class:`Settings` from the process environment."""

    return Settings(
        db_path=os.getenv("BILLING_DB_PATH", "data/billing.db"),
        merchant_id=os.getenv("PHONEPE_MERCHANT_ID", ""),
        salt_key=os.getenv("PHONEPE_SALT_KEY", ""),
        salt_index=os.getenv("PHONEPE_SALT_INDEX", "1") or "1",
        extra_salt_keys=_parse_extra_keys(os.getenv("PHONEPE_EXTRA_SALT_KEYS", "")),
        gateway_base_url=os.getenv("PHONEPE_BASE_URL", "https://api.phonepe.com/apis/pg-sandbox"),
        gateway_domain=os.getenv("PHONEPE_GATEWAY_DOMAIN", "phonepe.com"),
        app_base_url=os.getenv("APP_BASE_URL", "http://localhost:8000"),
        gateway_timeout_sec=max(_float_env("GATEWAY_TIMEOUT_SEC", 10.0), 0.1),
        sweep_interval_sec=max(_float_env("WEBHOOK_SWEEP_INTERVAL_SEC", 60.0), 1.0),
        sweeper_enabled=_bool_env("WEBHOOK_SWEEPER_ENABLED", True),
        webhook_rate_limit=max(_int_env("WEBHOOK_RATE_LIMIT", 100), 1),
        webhook_rate_window_sec=max(_float_env("WEBHOOK_RATE_WINDOW_SEC", 60.0), 1.0),
        pending_order_ttl_min=max(_int_env("PAYMENT_PENDING_TTL_MIN", 60), 1),
        jwt_secret=os.getenv("JWT_SECRET", ""),
        jwt_expire_min=max(_int_env("JWT_EXPIRE_MIN", 30), 1),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
