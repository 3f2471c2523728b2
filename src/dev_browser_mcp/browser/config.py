"""
Configuration management for Dev Browser MCP

Loads configuration from environment variables (DEV_BROWSER_* prefix) with
sensible defaults for the browser host, the control API and the client.
"""

import logging
import os
import re
from pathlib import Path
from typing import TypedDict

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables from .env file
# Try multiple paths for .env file
env_loaded = False
for env_path in [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent.parent / ".env",
    Path.home() / ".env",
]:
    if env_path.exists():
        logger.info(f"Loading environment from: {env_path}")
        load_dotenv(env_path)
        env_loaded = True
        break

if not env_loaded:
    logger.warning("No .env file found, using system environment variables only")


ENV_PREFIX = "DEV_BROWSER_"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9222
DEFAULT_CDP_PORT = 9223
DEFAULT_PROFILE_DIR = str(Path.home() / ".dev-browser" / "profile")
DEFAULT_LOG_FILE = "logs/dev-browser-mcp.log"


class BrowserConfig(TypedDict, total=False):
    """Configuration for the browser host and its clients"""

    # Control API
    host: str
    port: int
    server_url: str | None

    # Browser settings
    cdp_port: int
    headless: bool
    no_sandbox: bool
    viewport_size: str | None
    auto_install: bool

    # Profile/storage
    profile_dir: str

    # Timeouts (milliseconds)
    timeout_action: int
    timeout_navigation: int
    page_load_timeout: int
    script_timeout: int

    # Snapshot
    snapshot_max_text: int

    # Output
    log_file: str


def _get_bool_env(key: str, default: bool) -> bool:
    """Get boolean environment variable"""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


def _get_int_env(key: str, default: int) -> int:
    """Get integer environment variable"""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# Each tuple: (env_suffix, config_key, value_type, default)
_CONFIG_KEY_MAPPINGS: list[tuple[str, str, str, object]] = [
    # Control API
    ("HOST", "host", "str", DEFAULT_HOST),
    ("PORT", "port", "int", DEFAULT_PORT),
    ("SERVER_URL", "server_url", "str", None),
    # Browser settings
    ("CDP_PORT", "cdp_port", "int", DEFAULT_CDP_PORT),
    ("HEADLESS", "headless", "bool", False),
    ("NO_SANDBOX", "no_sandbox", "bool", False),
    ("VIEWPORT_SIZE", "viewport_size", "str", None),
    ("AUTO_INSTALL", "auto_install", "bool", True),
    # Profile/storage
    ("PROFILE_DIR", "profile_dir", "str", DEFAULT_PROFILE_DIR),
    # Timeouts
    ("TIMEOUT_ACTION", "timeout_action", "int", 15000),
    ("TIMEOUT_NAVIGATION", "timeout_navigation", "int", 30000),
    ("PAGE_LOAD_TIMEOUT", "page_load_timeout", "int", 10000),
    ("SCRIPT_TIMEOUT", "script_timeout", "int", 30000),
    # Snapshot
    ("SNAPSHOT_MAX_TEXT", "snapshot_max_text", "int", 100),
    # Output
    ("LOG_FILE", "log_file", "str", DEFAULT_LOG_FILE),
]

_POSITIVE_KEYS = (
    "timeout_action",
    "timeout_navigation",
    "page_load_timeout",
    "script_timeout",
    "snapshot_max_text",
)


def _apply_env(config: BrowserConfig, prefix: str) -> None:
    """
    Fill ``config`` from environment variables, falling back to defaults.

    Args:
        config: Config dict to update in-place
        prefix: Environment variable prefix (e.g., "DEV_BROWSER_")
    """
    for env_suffix, config_key, value_type, default in _CONFIG_KEY_MAPPINGS:
        env_var = f"{prefix}{env_suffix}"

        if value_type == "str":
            config[config_key] = os.getenv(env_var) or default  # type: ignore[literal-required]
        elif value_type == "bool":
            config[config_key] = _get_bool_env(env_var, bool(default))  # type: ignore[literal-required]
        elif value_type == "int":
            config[config_key] = _get_int_env(env_var, int(default))  # type: ignore[literal-required, call-overload]


def _validate_config(config: BrowserConfig) -> None:
    """
    Validate a loaded configuration.

    Raises:
        ValueError: If configuration is invalid
    """
    for key in ("port", "cdp_port"):
        if not 1 <= config[key] <= 65535:  # type: ignore[literal-required]
            raise ValueError(f"{key} must be between 1 and 65535, got {config[key]}")  # type: ignore[literal-required]

    if config["port"] == config["cdp_port"]:
        raise ValueError(
            f"Control API port and CDP port must differ (both are {config['port']})"
        )

    for key in _POSITIVE_KEYS:
        if config[key] <= 0:  # type: ignore[literal-required]
            raise ValueError(f"{key} must be positive, got {config[key]}")  # type: ignore[literal-required]

    viewport = config.get("viewport_size")
    if viewport and not re.match(r"^\d+x\d+$", viewport):
        raise ValueError(f"viewport_size must look like 1280x720, got '{viewport}'")


def parse_viewport(viewport_size: str | None) -> dict[str, int] | None:
    """
    Convert a WIDTHxHEIGHT string to a Playwright viewport dict.

    Returns:
        ``{"width": w, "height": h}`` or None when unset
    """
    if not viewport_size:
        return None
    width, height = viewport_size.lower().split("x", 1)
    return {"width": int(width), "height": int(height)}


def server_url_for(config: BrowserConfig) -> str:
    """
    Get the control API base URL a client should talk to.

    An explicit DEV_BROWSER_SERVER_URL wins over host/port.
    """
    if config.get("server_url"):
        return str(config["server_url"]).rstrip("/")
    return f"http://{config['host']}:{config['port']}"


def load_browser_config() -> BrowserConfig:
    """
    Load browser configuration from environment variables.

    Returns:
        BrowserConfig with all settings

    Raises:
        ValueError: If configuration is invalid
    """
    config: BrowserConfig = {}
    _apply_env(config, ENV_PREFIX)
    _validate_config(config)

    logger.info(
        f"Browser config: host={config['host']}, port={config['port']}, "
        f"cdp_port={config['cdp_port']}, headless={config['headless']}, "
        f"profile_dir={config['profile_dir']}"
    )
    return config
