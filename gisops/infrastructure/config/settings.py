"""Provides functions for loading and accessing configuration settings.

Supports loading from a YAML file (~/.gisops/config.yaml), a .env file and
environment variables. Keys are dotted paths into the YAML document
(e.g. `poll.base_interval`); the matching environment variable is the key
upper-cased with dots replaced by underscores and a `GISOPS_` prefix
(`GISOPS_POLL_BASE_INTERVAL`).
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from gisops.domain.models.common import BackoffPolicy

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".gisops"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "GISOPS_"

DEFAULT_RATE_LIMIT_CAPACITY = 10
DEFAULT_RATE_LIMIT_INTERVAL = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0

# --- Module Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from the YAML file and the .env file.

    Priority order (highest to lowest):
    1. Environment variables
    2. .env file (never overrides variables already set)
    3. YAML configuration file
    4. Defaults passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searched upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
        else:
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug(".env file not found at or above current directory.")

    _loaded = True


def reload_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    global _loaded
    _loaded = False
    load_configuration(config_file, env_file)


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def env_var_name(key: str) -> str:
    name = key.upper().replace(".", "_").replace("-", "_")
    return name if name.startswith(ENV_PREFIX) else f"{ENV_PREFIX}{name}"


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        return value


def _lookup(data: Dict[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    node: Any = data
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by dotted key.

    Priority:
    1. Test configuration
    2. Environment variable (see `env_var_name`)
    3. YAML config
    4. Default value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    try:
        return _lookup(_config, key)
    except KeyError:
        logger.debug(f"Config key '{key}' not found. Returning default: {default}")
        return default


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Overrides configuration values for tests."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# --- Convenience Functions ---

def get_api_key() -> Optional[str]:
    """API key sent with every request (GISOPS_API_KEY or auth.api_key)."""
    key = get_config("auth.api_key") or get_config("api_key")
    return str(key) if key else None


def get_service_url(name: str) -> Optional[str]:
    """Base URL configured under `services.<name>`."""
    url = get_config(f"services.{name}")
    return str(url) if url else None


def get_poll_policy() -> BackoffPolicy:
    """Backoff policy for status polls and transport retries."""
    deadline = get_config("poll.deadline")
    return BackoffPolicy(
        base_interval=float(get_config("poll.base_interval", 1.0)),
        max_interval=float(get_config("poll.max_interval", 30.0)),
        deadline=float(deadline) if deadline else None,
        jitter=float(get_config("poll.jitter", 0.0)),
        max_retries=get_retry_settings(),
    )


def get_rate_limit() -> Dict[str, float]:
    return {
        "capacity": int(get_config("rate_limit.capacity", DEFAULT_RATE_LIMIT_CAPACITY)),
        "interval": float(get_config("rate_limit.interval", DEFAULT_RATE_LIMIT_INTERVAL)),
    }


def get_retry_settings() -> int:
    """Maximum retries of a single transport call."""
    return int(get_config("retry.max_retries", 5))


def get_request_timeout() -> float:
    return float(get_config("http.timeout", DEFAULT_REQUEST_TIMEOUT))


def get_log_level() -> str:
    return str(get_config("logging.level", "WARNING")).upper()


# Load configuration when the module is imported
load_configuration()
