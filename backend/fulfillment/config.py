# backend/fulfillment/config.py
from __future__ import annotations

import os
from dataclasses import dataclass

from flask import current_app


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///fulfillment.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Fulfillment tuning
    ORDER_NUMBER_MAX_ATTEMPTS = int(os.environ.get("ORDER_NUMBER_MAX_ATTEMPTS", "5"))
    REMITTANCE_ALERT_THRESHOLD_HOURS = int(os.environ.get("REMITTANCE_ALERT_THRESHOLD_HOURS", "48"))
    STALE_ORDER_HOURS = int(os.environ.get("STALE_ORDER_HOURS", "72"))
    AUTO_ASSIGN_PAYMENT_ACCOUNTS = _env_bool("AUTO_ASSIGN_PAYMENT_ACCOUNTS", True)
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))
    ADMIN_ROLES = os.environ.get("ADMIN_ROLES", "admin,super_admin")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    DB_RETRY_BACKOFF = 0.0


@dataclass(frozen=True)
class FulfillmentSettings:
    """
    Immutable snapshot of the fulfillment tuning knobs.

    Built once by create_app() from the Flask config and stored on
    app.extensions["fulfillment"]; services read it through get_settings().
    """
    order_number_max_attempts: int = 5
    remittance_alert_threshold_hours: int = 48
    stale_order_hours: int = 72
    auto_assign_payment_accounts: bool = True
    db_retry_attempts: int = 3
    db_retry_backoff: float = 0.1
    admin_roles: tuple[str, ...] = ("admin", "super_admin")

    @classmethod
    def from_mapping(cls, config) -> "FulfillmentSettings":
        admin_roles = config.get("ADMIN_ROLES", "admin,super_admin")
        if isinstance(admin_roles, str):
            admin_roles = tuple(r.strip() for r in admin_roles.split(",") if r.strip())
        return cls(
            order_number_max_attempts=int(config.get("ORDER_NUMBER_MAX_ATTEMPTS", 5)),
            remittance_alert_threshold_hours=int(config.get("REMITTANCE_ALERT_THRESHOLD_HOURS", 48)),
            stale_order_hours=int(config.get("STALE_ORDER_HOURS", 72)),
            auto_assign_payment_accounts=bool(config.get("AUTO_ASSIGN_PAYMENT_ACCOUNTS", True)),
            db_retry_attempts=int(config.get("DB_RETRY_ATTEMPTS", 3)),
            db_retry_backoff=float(config.get("DB_RETRY_BACKOFF", 0.1)),
            admin_roles=tuple(admin_roles),
        )


def get_settings() -> FulfillmentSettings:
    """Settings of the active application (requires an app context)."""
    settings = current_app.extensions.get("fulfillment")
    if settings is None:
        settings = FulfillmentSettings.from_mapping(current_app.config)
        current_app.extensions["fulfillment"] = settings
    return settings
