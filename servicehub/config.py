"""Application configuration loaded from config.yaml + environment variables."""

from __future__ import annotations

import yaml
from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings

_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


def _load_yaml() -> dict:
    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            return yaml.safe_load(f) or {}
    return {}


_yaml = _load_yaml()


class PaymentsConfig(BaseSettings):
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    currency: str = "usd"
    # Replacement intents allowed per proposal before the request is refused
    max_stale_intents: int = 5


class FeesConfig(BaseSettings):
    platform_fee_percentage: float = 0.10
    platform_fee_minimum: float = 0.0  # dollars


class LeadsConfig(BaseSettings):
    default_lead_cost_cents: int = 2000
    category_pricing: dict[str, int] = Field(default_factory=dict)
    priority_window_hours: int = 24
    max_alternates: int = 3


class EmailConfig(BaseSettings):
    resend_api_key: str = ""
    from_address: str = "ServiceHub <noreply@servicehub.local>"
    app_url: str = "http://localhost:3000"


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/servicehub.db"
    scheduled_tasks_api_key: str = ""
    payments: PaymentsConfig = Field(default_factory=PaymentsConfig)
    fees: FeesConfig = Field(default_factory=FeesConfig)
    leads: LeadsConfig = Field(default_factory=LeadsConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


def get_settings() -> Settings:
    """Build Settings by merging YAML defaults with env overrides."""
    y = _yaml
    payments = PaymentsConfig(**y.get("payments", {}))
    fees = FeesConfig(**y.get("fees", {}))
    leads = LeadsConfig(**y.get("leads", {}))
    email = EmailConfig(**y.get("email", {}))
    overrides = {}
    db_url = y.get("database", {}).get("url")
    if db_url:
        overrides["database_url"] = db_url
    if y.get("scheduled_tasks_api_key"):
        overrides["scheduled_tasks_api_key"] = y["scheduled_tasks_api_key"]
    return Settings(
        payments=payments,
        fees=fees,
        leads=leads,
        email=email,
        **overrides,
    )
