"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
YAML configuration file (e.g., ~/.stockmeta/config.yaml). The dispatch layer
consumes an immutable ``DispatchSettings`` snapshot built from these values;
toggling safe mode means building a new snapshot for the next batch, never
mutating the one a running batch holds.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from stockmeta.domain.errors import ConfigurationError
from stockmeta.domain.models.credentials import Provider
from stockmeta.domain.models.tasks import RetryPolicy, SchedulerConfig

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".stockmeta"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
DEFAULT_PROVIDER = Provider.GEMINI.value
DEFAULT_REQUEST_TIMEOUT_S = 60.0

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None, force: bool = False) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Test overrides (set_config_for_testing)
    2. Environment Variables
    3. .env file
    4. YAML configuration file
    5. Default values

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. YAML file (lowest priority)
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load or parse YAML config {config_file}: {e}") from e
        if isinstance(yaml_config, dict):
            _config.update(_flatten(yaml_config))
            logger.info(f"Loaded configuration from YAML: {config_file}")
        elif yaml_config is not None:
            logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. .env file; override=False so real environment variables win
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path and load_dotenv(dotenv_path=dotenv_path, override=False):
        logger.info(f"Loaded environment variables from: {dotenv_path}")

    _loaded = True
    logger.debug("Configuration loading process completed.")


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flattens nested YAML mappings into dotted keys ('scheduler.concurrency_limit')."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


def _coerce_env(value: str) -> Any:
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        return value


def get_config(key: str, default: Any = None, coerce: bool = True) -> Any:
    """Get a configuration value by key.

    Dotted keys are also looked up in the environment with dots replaced by
    underscores and upper-cased ('scheduler.safe_mode' -> SCHEDULER_SAFE_MODE).

    Args:
        key: The configuration key
        default: Default value if the key is not found
        coerce: Convert environment strings to bool/int/float

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace(".", "_").replace(" ", "_")
    if env_key in os.environ:
        value = os.environ[env_key]
        return _coerce_env(value) if coerce else value

    if key in _config:
        return _config[key]

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
    """Set configuration values that override every other source (tests only)."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {sorted(config_dict)}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()


# --- Dispatch settings snapshot ---

def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _env_name(provider: str) -> str:
    return provider.upper().replace(" ", "_").replace("-", "_")


def get_provider_keys(provider: str) -> Tuple[str, ...]:
    """API keys configured for ``provider``.

    Reads ``<PROVIDER>_API_KEYS`` (comma separated) or ``providers.<name>.keys``
    (YAML list or comma separated string).
    """
    raw = get_config(f"{_env_name(provider)}_API_KEYS", coerce=False)
    if raw is None:
        raw = get_config(f"providers.{provider}.keys")
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        # YAML may hand back a bare number
        raw = str(raw).split(",")
    return tuple(str(k).strip() for k in raw if str(k).strip())


def get_active_model(provider: str) -> Optional[str]:
    model = get_config(f"{_env_name(provider)}_MODEL", coerce=False) or get_config(f"providers.{provider}.model")
    return str(model) if model is not None else None


@dataclass(frozen=True)
class DispatchSettings:
    """Immutable configuration value handed to the dispatch layer per batch."""
    safe_mode: bool = False
    provider: str = DEFAULT_PROVIDER
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    active_models: Dict[str, str] = field(default_factory=dict)
    provider_keys: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S

    def with_safe_mode(self, safe_mode: bool) -> "DispatchSettings":
        """Copy with scheduler values re-derived from the safe-mode flag."""
        scheduler = SchedulerConfig.for_safe_mode(
            safe_mode,
            jitter_bound=self.scheduler.jitter_bound,
            stagger_start=self.scheduler.stagger_start,
            task_timeout=self.scheduler.task_timeout,
            raise_on_failure=self.scheduler.raise_on_failure,
        )
        return DispatchSettings(
            safe_mode=safe_mode,
            provider=self.provider,
            scheduler=scheduler,
            retry_policy=self.retry_policy,
            active_models=dict(self.active_models),
            provider_keys=dict(self.provider_keys),
            request_timeout=self.request_timeout,
        )


def load_dispatch_settings() -> DispatchSettings:
    """Builds a ``DispatchSettings`` snapshot from the loaded configuration."""
    load_configuration()
    safe_mode = _as_bool(get_config("safe_mode", False))

    overrides: Dict[str, Any] = {}
    for key, cast in (
        ("concurrency_limit", int),
        ("inter_task_delay", float),
        ("jitter_bound", float),
        ("task_timeout", float),
    ):
        value = get_config(f"scheduler.{key}")
        if value is not None:
            overrides[key] = cast(value)
    raise_on_failure = get_config("scheduler.raise_on_failure")
    if raise_on_failure is not None:
        overrides["raise_on_failure"] = _as_bool(raise_on_failure)
    scheduler = SchedulerConfig.for_safe_mode(safe_mode, **overrides)

    retry_values: Dict[str, Any] = {}
    for key, cast in (
        ("max_retries", int),
        ("base_delay", float),
        ("multiplier", float),
        ("jitter_bound", float),
        ("rate_limit_multiplier", float),
        ("max_delay", float),
    ):
        value = get_config(f"retry.{key}")
        if value is not None:
            retry_values[key] = cast(value)
    retry_policy = RetryPolicy(**retry_values)

    active_models: Dict[str, str] = {}
    provider_keys: Dict[str, Tuple[str, ...]] = {}
    for provider in Provider:
        model = get_active_model(provider.value)
        if model:
            active_models[provider.value] = model
        keys = get_provider_keys(provider.value)
        if keys:
            provider_keys[provider.value] = keys

    settings = DispatchSettings(
        safe_mode=safe_mode,
        provider=str(get_config("ai.provider", DEFAULT_PROVIDER)),
        scheduler=scheduler,
        retry_policy=retry_policy,
        active_models=active_models,
        provider_keys=provider_keys,
        request_timeout=float(get_config("request_timeout", DEFAULT_REQUEST_TIMEOUT_S)),
    )
    key_counts = {p: len(k) for p, k in provider_keys.items()}
    logger.info(
        f"Dispatch settings: provider={settings.provider}, safe_mode={safe_mode}, "
        f"concurrency={scheduler.concurrency_limit}, delay={scheduler.inter_task_delay}s, "
        f"keys={key_counts}"
    )
    return settings
