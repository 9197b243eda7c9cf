from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

SUPPORTED_ORDER_STORE_BACKENDS = {"memory", "mongodb"}
SUPPORTED_LOCK_BACKENDS = {"local", "redis"}
_TRUTHY = {"1", "true", "yes"}


def _split_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return tuple()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _env(name: str) -> str | None:
    raw_value = os.getenv(name)
    if raw_value is None:
        return None
    normalized = raw_value.strip()
    return normalized or None


def _flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in _TRUTHY


def collect_missing_required_env_vars() -> list[str]:
    missing: list[str] = []

    for var_name in ("MERCHANT_ID", "MERCHANT_PASSWORD"):
        if _env(var_name) is None:
            missing.append(var_name)

    store_backend = (_env("ORDER_STORE_BACKEND") or "memory").lower()
    if store_backend == "mongodb":
        for var_name in ("MONGO_URL", "DB_NAME"):
            if _env(var_name) is None:
                missing.append(var_name)

    lock_backend = (_env("LOCK_BACKEND") or "local").lower()
    if lock_backend == "redis" and _env("REDIS_URL") is None:
        missing.append("REDIS_URL")

    return sorted(set(missing))


def _check_positive_int(name: str, invalid_values: list[str]) -> None:
    value = _env(name)
    if value is None:
        return
    try:
        if int(value) <= 0:
            raise ValueError("must be positive")
    except ValueError:
        invalid_values.append(f"{name} must be a positive integer")


def _check_positive_number(name: str, invalid_values: list[str]) -> None:
    value = _env(name)
    if value is None:
        return
    try:
        if float(value) <= 0:
            raise ValueError("must be positive")
    except ValueError:
        invalid_values.append(f"{name} must be a positive number")


def collect_invalid_env_values() -> list[str]:
    invalid_values: list[str] = []

    store_backend = (_env("ORDER_STORE_BACKEND") or "memory").lower()
    if store_backend not in SUPPORTED_ORDER_STORE_BACKENDS:
        invalid_values.append("ORDER_STORE_BACKEND must be one of: memory, mongodb")

    lock_backend = (_env("LOCK_BACKEND") or "local").lower()
    if lock_backend not in SUPPORTED_LOCK_BACKENDS:
        invalid_values.append("LOCK_BACKEND must be one of: local, redis")

    _check_positive_int("RETRY_ATTEMPT_COUNT", invalid_values)
    _check_positive_number("GATEWAY_TIMEOUT_SECONDS", invalid_values)
    _check_positive_number("LOCK_TIMEOUT_SECONDS", invalid_values)
    _check_positive_number("LOCK_LEASE_SECONDS", invalid_values)

    commission = _env("PLATFORM_COMMISSION_PERCENT")
    if commission is not None:
        try:
            parsed = Decimal(commission)
            if not parsed.is_finite() or parsed < 0 or parsed >= 100:
                raise ValueError("out of range")
        except (InvalidOperation, ValueError):
            invalid_values.append("PLATFORM_COMMISSION_PERCENT must be a number in [0, 100)")

    return invalid_values


def validate_required_environment() -> None:
    missing_vars = collect_missing_required_env_vars()
    invalid_values = collect_invalid_env_values()
    if not missing_vars and not invalid_values:
        return

    message_lines = ["Application startup blocked by invalid environment configuration."]
    if missing_vars:
        message_lines.append("")
        message_lines.append("Missing required environment variables:")
        message_lines.extend(f"- {name}" for name in missing_vars)
    if invalid_values:
        message_lines.append("")
        message_lines.append("Invalid environment values:")
        message_lines.extend(f"- {message}" for message in invalid_values)
    raise RuntimeError("\n".join(message_lines))


@dataclass(frozen=True)
class Settings:
    env: str
    log_level: str
    log_format: str
    cors_origins: tuple[str, ...]
    debug_include_error_details: bool
    gateway_base_url: str
    gateway_api_version: str
    merchant_id: str
    merchant_password: str
    merchant_name: str
    merchant_url: str
    default_currency: str
    checkout_return_url: str
    redirect_merchant_url: str
    retry_attempt_count: int
    gateway_timeout_seconds: float
    checkout_trust_indicator_only: bool
    paystack_base_url: str
    paystack_secret_key: str | None
    paystack_callback_url: str | None
    platform_commission_percent: Decimal
    order_store_backend: str
    mongo_url: str | None
    db_name: str | None
    lock_backend: str
    redis_url: str | None
    lock_timeout_seconds: float
    lock_lease_seconds: float

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def split_settlement_enabled(self) -> bool:
        return bool(self.paystack_secret_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    validate_required_environment()

    callback_url = os.getenv("CHECKOUT_RETURN_URL", "http://localhost:8000/v1/checkout/callback")

    return Settings(
        env=os.getenv("ENV", "development"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("LOG_FORMAT", "json").lower(),
        cors_origins=_split_csv(os.getenv("CORS_ORIGINS")),
        debug_include_error_details=_flag("DEBUG_INCLUDE_ERROR_DETAILS"),
        gateway_base_url=os.getenv("GATEWAY_BASE_URL", "https://afs.gateway.mastercard.com").rstrip("/"),
        gateway_api_version=os.getenv("API_VERSION", "100"),
        merchant_id=os.getenv("MERCHANT_ID", ""),
        merchant_password=os.getenv("MERCHANT_PASSWORD", ""),
        merchant_name=os.getenv("MERCHANT_NAME", "Your Store"),
        merchant_url=os.getenv("MERCHANT_URL", "https://yourstore.com"),
        default_currency=os.getenv("DEFAULT_CURRENCY", "USD").upper(),
        checkout_return_url=callback_url,
        redirect_merchant_url=os.getenv("REDIRECT_MERCHANT_URL", callback_url),
        retry_attempt_count=int(os.getenv("RETRY_ATTEMPT_COUNT", "3")),
        gateway_timeout_seconds=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "15")),
        checkout_trust_indicator_only=_flag("CHECKOUT_TRUST_INDICATOR_ONLY"),
        paystack_base_url=os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co").rstrip("/"),
        paystack_secret_key=_env("PAYSTACK_SECRET_KEY"),
        paystack_callback_url=_env("PAYSTACK_CALLBACK_URL"),
        platform_commission_percent=Decimal(os.getenv("PLATFORM_COMMISSION_PERCENT", "10")),
        order_store_backend=(_env("ORDER_STORE_BACKEND") or "memory").lower(),
        mongo_url=_env("MONGO_URL"),
        db_name=_env("DB_NAME"),
        lock_backend=(_env("LOCK_BACKEND") or "local").lower(),
        redis_url=_env("REDIS_URL"),
        lock_timeout_seconds=float(os.getenv("LOCK_TIMEOUT_SECONDS", "10")),
        lock_lease_seconds=float(os.getenv("LOCK_LEASE_SECONDS", "30")),
    )
