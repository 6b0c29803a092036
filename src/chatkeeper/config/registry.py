"""Configuration Registry - Defines all configuration keys with tier classification.

This module provides the ConfigKey dataclass and REGISTRY dictionary that defines
all configuration options available in chatkeeper.

Two-Tier System:
- Static Config (tier="static"): Requires restart to apply changes
  Examples: session name, store path, watchdog ceilings, webhook URL
- Dynamic Config (tier="dynamic"): Can be hot-reloaded without restart
  Examples: rate-limit cooldown, queue spacing, logging level
"""

from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional


@dataclass
class ConfigKey:
    """Defines a single configuration key with validation and tier classification.

    Attributes:
        tier: "static" (restart required) or "dynamic" (hot-reloadable)
        value_type: Expected Python type (str, int, float, bool, list)
        default: Default value if not specified in config files
        min_value: Minimum value for numeric types (optional)
        max_value: Maximum value for numeric types (optional)
        restart_required: Auto-derived from tier (True for static, False for dynamic)
        validator: Custom validation function (optional)
    """
    tier: Literal["static", "dynamic"]
    value_type: type
    default: Any
    min_value: Optional[Any] = None
    max_value: Optional[Any] = None
    restart_required: bool = False
    validator: Optional[Callable[[Any], bool]] = None

    def __post_init__(self):
        """Auto-derive restart_required from tier."""
        self.restart_required = (self.tier == "static")


# Configuration Registry
# =======================
# All configuration keys must be registered here with their tier classification.

REGISTRY: dict[str, ConfigKey] = {
    # ===== SESSION (Static - Identity) =====
    "session.name": ConfigKey(
        tier="static",
        value_type=str,
        default="chatkeeper",
        validator=lambda v: bool(v) and "/" not in v,
    ),
    "session.data_path": ConfigKey(
        tier="static",
        value_type=str,
        default="data/session",
    ),

    # ===== STORE (Static - Foundation) =====
    # Lives outside session.data_path: the session cache is wiped on every
    # start, while the store must survive restarts on a persistent mount.
    "store.path": ConfigKey(
        tier="static",
        value_type=str,
        default="state/snapshots.db",
    ),

    # ===== SNAPSHOTS =====
    "snapshot.min_size_bytes": ConfigKey(
        tier="static",
        value_type=int,
        default=1000,
        min_value=1,
    ),
    "snapshot.max_backups": ConfigKey(
        tier="static",
        value_type=int,
        default=1,
        min_value=1,
        max_value=20,
    ),
    "snapshot.backup_interval_seconds": ConfigKey(
        tier="static",
        value_type=int,
        default=300,
        min_value=60,
        max_value=3600,
    ),

    # ===== LIFECYCLE (Static - Supervision) =====
    "lifecycle.startup_timeout_seconds": ConfigKey(
        tier="static",
        value_type=float,
        default=300.0,
        min_value=1.0,
    ),
    "lifecycle.auth_timeout_seconds": ConfigKey(
        tier="static",
        value_type=float,
        default=180.0,
        min_value=1.0,
    ),
    "lifecycle.restart_delay_auth_failure_seconds": ConfigKey(
        tier="static",
        value_type=float,
        default=5.0,
        min_value=0.0,
    ),
    "lifecycle.restart_delay_watchdog_seconds": ConfigKey(
        tier="static",
        value_type=float,
        default=5.0,
        min_value=0.0,
    ),
    "lifecycle.restart_delay_disconnect_seconds": ConfigKey(
        tier="static",
        value_type=float,
        default=10.0,
        min_value=0.0,
    ),
    "lifecycle.restart_delay_fault_seconds": ConfigKey(
        tier="static",
        value_type=float,
        default=10.0,
        min_value=0.0,
    ),
    "lifecycle.restart_delay_startup_seconds": ConfigKey(
        tier="static",
        value_type=float,
        default=15.0,
        min_value=0.0,
    ),

    # ===== OUTBOUND QUEUE (Dynamic - Throughput tuning) =====
    "queue.spacing_seconds": ConfigKey(
        tier="dynamic",
        value_type=float,
        default=2.0,
        min_value=0.0,
        max_value=60.0,
    ),
    "queue.delivery_timeout_seconds": ConfigKey(
        tier="dynamic",
        value_type=float,
        default=30.0,
        min_value=1.0,
        max_value=300.0,
    ),

    # ===== RATE LIMIT (Dynamic - Operational tuning) =====
    "rate_limit.cooldown_ms": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=3000,
        min_value=0,
        max_value=600000,
    ),
    "rate_limit.sweep_interval_seconds": ConfigKey(
        tier="static",
        value_type=float,
        default=60.0,
        min_value=1.0,
    ),

    # ===== WEBHOOK (Static - Outer integration) =====
    "webhook.url": ConfigKey(
        tier="static",
        value_type=str,
        default="",
        validator=lambda v: v == "" or v.startswith(("http://", "https://")),
    ),
    "webhook.secret": ConfigKey(
        tier="static",
        value_type=str,
        default="",
    ),
    "webhook.timeout_seconds": ConfigKey(
        tier="static",
        value_type=float,
        default=10.0,
        min_value=1.0,
        max_value=120.0,
    ),
    "webhook.max_attempts": ConfigKey(
        tier="static",
        value_type=int,
        default=3,
        min_value=1,
        max_value=10,
    ),
    "webhook.retry_delay_seconds": ConfigKey(
        tier="static",
        value_type=float,
        default=5.0,
        min_value=0.0,
        max_value=300.0,
    ),
    "webhook.max_media_bytes": ConfigKey(
        tier="static",
        value_type=int,
        default=5 * 1024 * 1024,
        min_value=0,
    ),

    # ===== GATEWAY (Static - Security Boundary) =====
    "gateway.allowed_chats": ConfigKey(
        tier="static",
        value_type=list,
        default=[],
    ),

    # ===== LOGGING (Dynamic verbosity) =====
    "logging.level": ConfigKey(
        tier="dynamic",
        value_type=str,
        default="INFO",
        validator=lambda v: v in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
    ),
    "logging.json": ConfigKey(
        tier="static",
        value_type=bool,
        default=False,
    ),
}


def get_config_key(key: str) -> ConfigKey:
    """Get configuration key definition.

    Raises:
        KeyError: If key not found in registry
    """
    if key not in REGISTRY:
        raise KeyError(f"Unknown configuration key: '{key}'")
    return REGISTRY[key]


def validate_config_value(key: str, value: Any) -> tuple[bool, Optional[str]]:
    """Validate a configuration value against its registry definition.

    Returns:
        (is_valid, error_message) tuple
    """
    try:
        config_key = get_config_key(key)
    except KeyError as e:
        return False, str(e)

    expected = config_key.value_type
    # Integers are acceptable wherever a float is expected
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        value = float(value)
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        return False, f"Expected type {expected.__name__}, got {type(value).__name__}"

    if config_key.min_value is not None and value < config_key.min_value:
        return False, f"Value {value} below minimum {config_key.min_value}"
    if config_key.max_value is not None and value > config_key.max_value:
        return False, f"Value {value} above maximum {config_key.max_value}"

    if config_key.validator is not None and not config_key.validator(value):
        return False, f"Custom validation failed for value: {value}"

    return True, None


def get_static_keys() -> list[str]:
    return [key for key, cfg in REGISTRY.items() if cfg.tier == "static"]


def get_dynamic_keys() -> list[str]:
    return [key for key, cfg in REGISTRY.items() if cfg.tier == "dynamic"]


def get_default_values() -> dict[str, Any]:
    return {key: cfg.default for key, cfg in REGISTRY.items()}
