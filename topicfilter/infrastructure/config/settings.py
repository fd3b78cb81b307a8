"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
YAML configuration file (~/.topicfilter/config.yaml), and assembles the
validated ClassifierSettings the composition root wires services from.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from topicfilter.domain.errors import ConfigError
from topicfilter.domain.models.common import TopicLabel
from topicfilter.domain.models.topics import resolve_topics

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".topicfilter"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_CACHE_DIR = DEFAULT_CONFIG_DIR / "cache"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "TOPICFILTER_"

SUPPORTED_PROVIDERS = ("azure", "ark")
PROVIDER_ALIASES = {"doubao": "ark", "doubai": "ark", "azure_openai": "azure"}

# --- Global Configuration Store (Simple Approach) ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Test overrides
    2. Environment Variables (TOPICFILTER_*)
    3. .env file
    4. YAML configuration file
    5. Defaults supplied by the caller of get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load or parse YAML config {config_file}: {e}") from e
        if isinstance(yaml_config, dict):
            _config.update(yaml_config)
            logger.info(f"Loaded configuration from YAML: {config_file}")
        elif yaml_config is not None:
            raise ConfigError(f"YAML config file {config_file} did not contain a mapping.")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (override=False: real environment variables win)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no file found).")

    _loaded = True
    logger.debug("Configuration loading process completed.")


def reset_configuration() -> None:
    """Forgets everything loaded so the next load_configuration starts fresh."""
    global _config, _loaded
    _config = {}
    _loaded = False
    clear_test_config()


def env_var_name(key: str) -> str:
    """'azure.api_key' -> 'TOPICFILTER_AZURE_API_KEY'."""
    return ENV_PREFIX + key.upper().replace(".", "_")


def _coerce_env_value(value: str) -> Any:
    # Try to convert common types
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        if "." in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def _lookup_nested(key: str) -> Tuple[bool, Any]:
    node: Any = _config
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return False, None
        node = node[part]
    return True, node


def get_config(key: str, default: Any = None, coerce: bool = True) -> Any:
    """Get a configuration value by dotted key (e.g. 'azure.endpoint').

    Priority:
    1. Test configuration
    2. Environment variable (TOPICFILTER_AZURE_ENDPOINT)
    3. YAML config (nested mapping)
    4. Default value

    Args:
        key: The configuration key
        default: Default value if the key is not found
        coerce: Convert environment strings to bool/int/float. Off for
            identifiers and secrets, where "0601" must stay "0601".

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_name(key)
    if env_key in os.environ:
        raw = os.environ[env_key]
        return _coerce_env_value(raw) if coerce else raw

    found, value = _lookup_nested(key)
    if found:
        return value

    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Set configuration values that override every other source."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()


# --- Validated Settings ---

@dataclass(frozen=True)
class ClassifierSettings:
    """Everything needed to wire one classification service."""
    provider: str
    topics: Tuple[TopicLabel, ...]

    azure_endpoint: Optional[str] = None
    azure_api_key: Optional[str] = None
    azure_deployment_id: Optional[str] = None
    azure_api_version: str = "2024-02-15-preview"

    ark_endpoint: Optional[str] = None
    ark_api_key: Optional[str] = None
    ark_model: Optional[str] = None
    ark_api_version: str = "v3"

    batch_size: int = 10
    max_item_length: int = 100
    cache_ttl_seconds: float = 24 * 60 * 60
    cache_dir: Optional[Path] = DEFAULT_CACHE_DIR
    cache_record_name: str = "classification_cache"
    max_attempts: int = 3
    attempt_timeout_seconds: float = 30.0
    initial_delay: float = 2.0
    backoff_factor: float = 2.0
    error_delay: float = 0.5
    min_interval_seconds: Optional[float] = None  # None: provider default
    max_requeues: int = 3
    request_timeout_seconds: float = 60.0


def normalize_provider_name(name: Any) -> str:
    provider = str(name or "").strip().lower()
    provider = PROVIDER_ALIASES.get(provider, provider)
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigError(f"Unsupported provider {name!r}. Choose one of {SUPPORTED_PROVIDERS}.")
    return provider


def _as_str(key: str, default: Optional[str] = None) -> Optional[str]:
    value = get_config(key, default, coerce=False)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _as_number(key: str, default: float, kind: type = float, minimum: float = 0) -> Any:
    value = get_config(key, default)
    try:
        number = kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Config '{key}' must be a {kind.__name__}, got {value!r}.") from e
    if number < minimum:
        raise ConfigError(f"Config '{key}' must be >= {minimum}, got {number}.")
    return number


def _as_list(key: str) -> Optional[List[str]]:
    value = get_config(key)
    if value is None:
        return None
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(part) for part in value]
    raise ConfigError(f"Config '{key}' must be a list or comma separated string.")


def build_settings(
    provider: Optional[str] = None,
    topics: Optional[List[str]] = None,
) -> ClassifierSettings:
    """Assembles validated settings from the loaded configuration.

    Args:
        provider: Overrides the configured provider (e.g. from a CLI flag).
        topics: Overrides the configured topic selection with explicit labels.

    Raises:
        ConfigError: On unsupported provider, bad numbers or an empty topic set.
    """
    provider_name = normalize_provider_name(provider or get_config("provider", "azure"))

    if topics:
        topic_labels = resolve_topics(topics)
    else:
        topic_labels = resolve_topics(_as_list("topics.selected"), get_config("topics.custom"))
    if not topic_labels:
        raise ConfigError("At least one topic must be selected.")

    cache_dir_value = get_config("cache.dir", str(DEFAULT_CACHE_DIR))
    cache_dir = Path(cache_dir_value).expanduser() if cache_dir_value else None

    min_interval = get_config("rate_limit.min_interval_seconds")
    if min_interval is not None:
        min_interval = _as_number("rate_limit.min_interval_seconds", 0.0)

    settings = ClassifierSettings(
        provider=provider_name,
        topics=tuple(topic_labels),
        azure_endpoint=_as_str("azure.endpoint"),
        azure_api_key=_as_str("azure.api_key"),
        azure_deployment_id=_as_str("azure.deployment_id"),
        azure_api_version=_as_str("azure.api_version", "2024-02-15-preview"),
        ark_endpoint=_as_str("ark.endpoint"),
        ark_api_key=_as_str("ark.api_key"),
        ark_model=_as_str("ark.model"),
        ark_api_version=_as_str("ark.api_version", "v3"),
        batch_size=_as_number("classifier.batch_size", 10, int, minimum=1),
        max_item_length=_as_number("classifier.max_item_length", 100, int, minimum=1),
        cache_ttl_seconds=_as_number("cache.ttl_seconds", 24 * 60 * 60),
        cache_dir=cache_dir,
        cache_record_name=_as_str("cache.record_name", "classification_cache"),
        max_attempts=_as_number("retry.max_attempts", 3, int, minimum=1),
        attempt_timeout_seconds=_as_number("retry.timeout_seconds", 30.0),
        initial_delay=_as_number("retry.initial_delay", 2.0),
        backoff_factor=_as_number("retry.backoff_factor", 2.0, minimum=1),
        error_delay=_as_number("retry.error_delay", 0.5),
        min_interval_seconds=min_interval,
        max_requeues=_as_number("rate_limit.max_requeues", 3, int),
        request_timeout_seconds=_as_number("provider.request_timeout_seconds", 60.0),
    )
    logger.debug(
        f"Settings built: provider={settings.provider}, topics={list(settings.topics)}, "
        f"batch_size={settings.batch_size}, ttl={settings.cache_ttl_seconds}s"
    )
    return settings
