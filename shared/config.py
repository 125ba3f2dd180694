"""Shared configuration utilities."""

import os
from typing import Optional


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    """Get environment variable with optional default and required validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_float_env(key: str, default: float) -> float:
    """Get a numeric environment variable, falling back to ``default`` when unset."""
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return float(value)


def get_database_url() -> str:
    """Get the embedded (local) store database URL from environment."""
    return get_env(
        "LOCAL_DATABASE_URL",
        "sqlite:///" + os.path.expanduser("~/.tesla_notes/tesla_notes.db"),
    )


def get_client_state_url() -> str:
    """Get the database URL holding client-side preferences."""
    return get_env(
        "CLIENT_STATE_URL",
        "sqlite:///" + os.path.expanduser("~/.tesla_notes/client_state.db"),
    )


def get_local_store_url() -> Optional[str]:
    """URL of a sidecar local store; unset means the store runs in-process."""
    return get_env("LOCAL_STORE_URL")


def get_cloud_config() -> dict:
    """Get hosted backend configuration from environment."""
    url = get_env("SUPABASE_URL")
    return {
        "url": url.rstrip("/") if url else None,
        "api_key": get_env("SUPABASE_ANON_KEY"),
        "changes_url": get_env("SUPABASE_CHANGES_URL"),
    }


def get_http_timeout() -> float:
    return get_float_env("HTTP_TIMEOUT", 30.0)


def get_poll_interval() -> float:
    return get_float_env("POLL_INTERVAL_SECONDS", 15.0)


def get_delete_grace_seconds() -> float:
    return get_float_env("DELETE_GRACE_SECONDS", 3.5)
