"""
Runtime settings for the file-processing backend.

Every value is read from the environment once at import time, with a
default suitable for local development. Helpers that need validation
(database URL, secrets, trusted proxies) are functions so tests can
monkeypatch the environment and call them again.
"""

import ipaddress
import os
from datetime import timedelta
from typing import List, Tuple, Union

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

# Sessions and trials (in days)
SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", "30"))
TRIAL_DAYS = int(os.getenv("TRIAL_DAYS", "7"))
PAYMENT_GRACE_DAYS = int(os.getenv("PAYMENT_GRACE_DAYS", "3"))

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
OAUTH_STATE_COOKIE_NAME = "oauth_state"
OAUTH_STATE_MAX_AGE_SECONDS = 600

# Passwords (bcrypt cost factor)
BCRYPT_ROUNDS_DEFAULT = 12

# OAuth sign-in
OAUTH_REDIRECT_BASE_URL = os.getenv("OAUTH_REDIRECT_BASE_URL", "http://localhost:8000")
OAUTH_SUCCESS_REDIRECT = os.getenv("OAUTH_SUCCESS_REDIRECT", "/")

# Billing webhooks
WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("WEBHOOK_TOLERANCE_SECONDS", "300"))

# Job queue
JOB_QUEUE_PREFIX = os.getenv("JOB_QUEUE_PREFIX", "jobs")

# Object storage (local filesystem backend)
STORAGE_ROOT = os.getenv("STORAGE_ROOT", "/tmp/file-processor")

# Latency window
LATENCY_WINDOW_SIZE = int(os.getenv("LATENCY_WINDOW_SIZE", "1000"))
LATENCY_PUBLISH_INTERVAL_SECONDS = int(os.getenv("LATENCY_PUBLISH_INTERVAL_SECONDS", "30"))

# Expired session cleanup ("true" only counts expired rows)
SESSION_CLEANUP_DRY_RUN = os.getenv("SESSION_CLEANUP_DRY_RUN", "false").lower() == "true"

DEFAULT_TRUSTED_PROXIES = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8,::1/128"


def session_ttl() -> timedelta:
    return timedelta(days=SESSION_TTL_DAYS)


def trial_duration() -> timedelta:
    return timedelta(days=TRIAL_DAYS)


def payment_grace_period() -> timedelta:
    return timedelta(days=PAYMENT_GRACE_DAYS)


def get_database_url() -> str:
    """
    Return the SQLAlchemy database URL.

    Raises:
        ValueError: If DATABASE_URL is not set
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is required")

    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def get_redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


def get_jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise ValueError("JWT_SECRET environment variable is required")
    return secret


def get_billing_webhook_secret() -> str:
    secret = os.getenv("BILLING_WEBHOOK_SECRET")
    if not secret:
        raise ValueError("BILLING_WEBHOOK_SECRET environment variable is required")
    return secret


def get_billing_api_key() -> str:
    api_key = os.getenv("BILLING_API_KEY")
    if not api_key:
        raise ValueError("BILLING_API_KEY environment variable is required")
    return api_key


def bcrypt_rounds() -> int:
    return int(os.getenv("BCRYPT_ROUNDS", str(BCRYPT_ROUNDS_DEFAULT)))


def session_cookie_secure() -> bool:
    """Mark session cookies Secure unless SESSION_COOKIE_SECURE=false (local http)."""
    return os.getenv("SESSION_COOKIE_SECURE", "true").lower() != "false"


def get_oauth_client_credentials(provider: str) -> Tuple[str, str]:
    """
    Return (client_id, client_secret) for an OAuth provider.

    Reads <PROVIDER>_CLIENT_ID and <PROVIDER>_CLIENT_SECRET.

    Raises:
        ValueError: If either variable is not set
    """
    prefix = provider.upper()
    client_id = os.getenv(f"{prefix}_CLIENT_ID")
    client_secret = os.getenv(f"{prefix}_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise ValueError(f"{prefix}_CLIENT_ID and {prefix}_CLIENT_SECRET environment variables are required")
    return client_id, client_secret


def get_trusted_proxies() -> List[IPNetwork]:
    """
    Parse TRUSTED_PROXIES into networks.

    Entries may be CIDR ranges or bare addresses.

    Raises:
        ValueError: If an entry is not a valid address or network
    """
    raw = os.getenv("TRUSTED_PROXIES", DEFAULT_TRUSTED_PROXIES)
    networks: List[IPNetwork] = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        networks.append(ipaddress.ip_network(entry, strict=False))
    return networks
