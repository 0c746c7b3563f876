"""
Cart core configuration.

All settings come from environment variables (optionally seeded from a .env
file) and are resolved once into an immutable Settings value that is passed
to whatever needs it.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping

from dotenv import load_dotenv

from cartcore.errors import ConfigError

STORAGE_MODES = ("sidecar", "direct", "auto")
MESSAGING_MODES = ("sidecar", "qstash", "log", "auto")

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for the cart core."""

    service_name: str = "cart-service"
    event_namespace: str = "com.shop"

    # Cart limits
    max_items: int = 50
    max_item_quantity: int = 99

    # TTLs (seconds)
    cart_ttl: int = 30 * SECONDS_PER_DAY
    guest_cart_ttl: int = 7 * SECONDS_PER_DAY
    lock_ttl: int = 30

    # Backend selection
    storage_mode: str = "sidecar"
    messaging_mode: str = "auto"

    # Sidecar (Dapr HTTP API)
    sidecar_host: str = "localhost"
    sidecar_http_port: int = 3508
    state_store_name: str = "statestore"
    pubsub_name: str = "pubsub"

    # Direct cache (Upstash Redis REST)
    redis_url: str = ""
    redis_token: str = ""

    # Direct broker (QStash URL group)
    qstash_token: str = ""
    qstash_url_group: str = "cart-events"
    qstash_endpoints: tuple[str, ...] = field(default_factory=tuple)

    # Timeouts (seconds)
    connect_timeout: float = 15.0
    command_timeout: float = 10.0
    ready_timeout: float = 10.0
    reconnect_max_delay: float = 5.0

    @property
    def sidecar_base_url(self) -> str:
        return f"http://{self.sidecar_host}:{self.sidecar_http_port}"

    def ttl_for(self, is_guest: bool) -> int:
        """Cart TTL in seconds for a guest or an authenticated user."""
        return self.guest_cart_ttl if is_guest else self.cart_ttl


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _get_choice(env: Mapping[str, str], name: str, default: str, choices: tuple[str, ...]) -> str:
    value = (env.get(name) or default).strip().lower()
    if value not in choices:
        raise ConfigError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


def _get_list(env: Mapping[str, str], name: str) -> tuple[str, ...]:
    raw = env.get(name, "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def load_settings(env: Mapping[str, str] | None = None, use_dotenv: bool = True) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        env: Mapping to read from (defaults to os.environ)
        use_dotenv: Load a .env file into os.environ first (ignored when env is given)

    Raises:
        ConfigError: If a value is malformed
    """
    if env is None:
        if use_dotenv:
            load_dotenv()
        env = os.environ

    return Settings(
        service_name=env.get("SERVICE_NAME", "cart-service"),
        event_namespace=env.get("EVENT_NAMESPACE", "com.shop"),
        max_items=_get_int(env, "CART_MAX_ITEMS", 50, minimum=1),
        max_item_quantity=_get_int(env, "CART_MAX_ITEM_QUANTITY", 99, minimum=1),
        cart_ttl=_get_int(env, "CART_TTL_DAYS", 30, minimum=1) * SECONDS_PER_DAY,
        guest_cart_ttl=_get_int(env, "GUEST_CART_TTL_DAYS", 7, minimum=1) * SECONDS_PER_DAY,
        lock_ttl=_get_int(env, "CART_LOCK_TTL_SECONDS", 30, minimum=1),
        storage_mode=_get_choice(env, "STORAGE_MODE", "sidecar", STORAGE_MODES),
        messaging_mode=_get_choice(env, "MESSAGING_MODE", "auto", MESSAGING_MODES),
        sidecar_host=env.get("DAPR_HOST", "localhost"),
        sidecar_http_port=_get_int(env, "DAPR_HTTP_PORT", 3508, minimum=1),
        state_store_name=env.get("DAPR_STATE_STORE", "statestore"),
        pubsub_name=env.get("DAPR_PUBSUB_NAME", "pubsub"),
        redis_url=env.get("UPSTASH_REDIS_REST_URL", ""),
        redis_token=env.get("UPSTASH_REDIS_REST_TOKEN", ""),
        qstash_token=env.get("QSTASH_TOKEN", ""),
        qstash_url_group=env.get("QSTASH_URL_GROUP", "cart-events"),
        qstash_endpoints=_get_list(env, "QSTASH_ENDPOINTS"),
        connect_timeout=_get_float(env, "BACKEND_CONNECT_TIMEOUT", 15.0),
        command_timeout=_get_float(env, "BACKEND_COMMAND_TIMEOUT", 10.0),
        ready_timeout=_get_float(env, "BACKEND_READY_TIMEOUT", 10.0),
        reconnect_max_delay=_get_float(env, "BACKEND_RECONNECT_MAX_DELAY", 5.0),
    )
