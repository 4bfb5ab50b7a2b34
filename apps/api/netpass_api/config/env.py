"""Environment variable resolution utilities.

Canonical env names + fail-fast validation in production.
"""

import os
from typing import Optional

_DEFAULT_DEV_DATABASE_URL = "sqlite:///./netpass.db"
_DEFAULT_PAYSTACK_BASE_URL = "https://api.paystack.co"


def get_netpass_env() -> str:
    """Get netpass environment name.

    Priority:
    1. NETPASS_ENV (canonical)
    2. NODE_ENV (legacy docker-compose compat)
    3. Default: "local"

    Returns:
        Environment name (lowercase)
    """
    return (
        os.getenv("NETPASS_ENV")
        or os.getenv("NODE_ENV")
        or "local"
    ).lower()


def is_production_env() -> bool:
    """Return True when NETPASS_ENV is prod/production."""
    return get_netpass_env() in {"prod", "production"}


def get_database_url() -> str:
    """Get database URL from environment.

    Production fail-fast: DATABASE_URL is mandatory in prod/production.
    Development/CI falls back to a local SQLite file.

    Raises:
        RuntimeError: If DATABASE_URL is missing in production
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    if is_production_env():
        raise RuntimeError(
            "DATABASE_URL environment variable is required in production (NETPASS_ENV=prod/production). "
            "Check deployment configuration and secrets injection."
        )
    return _DEFAULT_DEV_DATABASE_URL


def get_paystack_secret_key() -> str:
    """Get Paystack secret key.

    Raises:
        ValueError: If PAYSTACK_SECRET_KEY is not set
    """
    secret_key = os.getenv("PAYSTACK_SECRET_KEY")
    if not secret_key:
        raise ValueError(
            "PAYSTACK_SECRET_KEY is required. Set it in environment configuration."
        )
    return secret_key


def get_paystack_base_url() -> str:
    """Get Paystack API base URL (override for sandboxes/mocks)."""
    return os.getenv("PAYSTACK_BASE_URL", _DEFAULT_PAYSTACK_BASE_URL).rstrip("/")


def get_paystack_timeout() -> float:
    """Get outbound gateway timeout in seconds (default 30).

    Raises:
        ValueError: If PAYSTACK_TIMEOUT_SECONDS is not a positive number
    """
    raw = os.getenv("PAYSTACK_TIMEOUT_SECONDS", "30")
    try:
        timeout = float(raw)
    except ValueError:
        raise ValueError(f"PAYSTACK_TIMEOUT_SECONDS must be a number, got {raw!r}")
    if timeout <= 0:
        raise ValueError(f"PAYSTACK_TIMEOUT_SECONDS must be positive, got {raw!r}")
    return timeout


def get_paystack_webhook_secret() -> Optional[str]:
    """Get webhook HMAC secret.

    When set, the webhook handler enforces the x-paystack-signature header.
    Without it, signature checks are skipped (local development).
    """
    return os.getenv("PAYSTACK_WEBHOOK_SECRET") or None


def get_internal_key() -> str:
    """Get shared secret for /internal endpoints.

    Raises:
        RuntimeError: If NETPASS_INTERNAL_KEY is not set
    """
    key = os.getenv("NETPASS_INTERNAL_KEY")
    if not key:
        raise RuntimeError("NETPASS_INTERNAL_KEY not set")
    return key


def get_cors_origins() -> list[str]:
    """Get CORS allowlist.

    Production: explicit allowlist (comma-separated CORS_ALLOWED_ORIGINS).
    Dev fallback: the portal frontend on localhost.
    """
    cors_origins_env = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_origins_env:
        return [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
    return [
        "http://localhost:8081",
        "http://127.0.0.1:8081",
        "http://localhost:3000",
    ]
