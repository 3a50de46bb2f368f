"""
Configuration loading, validation, and parsing.

Loads configuration from YAML files and provides typed access
to configuration values. Every value has a default, so the audit
also runs without a configuration file.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .engine import ENGINES
from .logger import get_logger
from .walker import PASSPHRASE_FILENAME


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


DEFAULT_PASSPHRASE_ENV_VAR = "CERTAUDIT_PASSPHRASE_FILE"

DEFAULT_CHAIN_PATTERNS = [
    "*chain*",
    "*intermediate*",
    "*ca-bundle*",
    "*cabundle*",
]


@dataclass
class Settings:
    """Global settings."""
    engine: str = "cryptography"
    openssl_path: Optional[str] = None
    openssl_timeout: int = 30
    passphrase_filename: str = PASSPHRASE_FILENAME
    passphrase_env_var: str = DEFAULT_PASSPHRASE_ENV_VAR
    chain_name_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_CHAIN_PATTERNS))
    chain_search_roots: List[str] = field(default_factory=list)
    expiration_threshold_days: int = 30
    skip_if_already_merged: bool = True


@dataclass
class TreesConfig:
    """Locations of the certificate trees."""
    new_root: str = "new"
    old_root: Optional[str] = "old"


@dataclass
class EmailNotificationConfig:
    """Email notification configuration."""
    enabled: bool = False
    from_email: str = ""
    to_emails: List[str] = field(default_factory=list)


@dataclass
class TeamsNotificationConfig:
    """Teams notification configuration."""
    enabled: bool = False
    webhook_url: Optional[str] = None


@dataclass
class NotificationsConfig:
    """Notification channels configuration."""
    email: EmailNotificationConfig = field(default_factory=EmailNotificationConfig)
    teams: TeamsNotificationConfig = field(default_factory=TeamsNotificationConfig)
    notify_on_success: bool = False


@dataclass
class Config:
    """Root configuration object."""
    settings: Settings = field(default_factory=Settings)
    trees: TreesConfig = field(default_factory=TreesConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


def _expand_env_vars(value: Any) -> Any:
    """
    Expand environment variables in string values.

    Supports ${VAR_NAME} syntax; unknown variables are left as-is.

    Args:
        value: Value to expand (string, dict, or list)

    Returns:
        Value with environment variables expanded
    """
    if isinstance(value, str):
        def replace(match):
            return os.environ.get(match.group(1), match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace, value)

    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [_expand_env_vars(item) for item in value]

    return value


def _string_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigurationError(f"'{name}' must be a string or a list of strings")


def _parse_settings(data: Dict[str, Any]) -> Settings:
    """
    Parse settings configuration.

    Args:
        data: Raw settings data from YAML

    Returns:
        Settings instance
    """
    defaults = Settings()

    settings = Settings(
        engine=str(data.get("engine", defaults.engine)).lower(),
        openssl_path=data.get("openssl_path"),
        openssl_timeout=data.get("openssl_timeout", defaults.openssl_timeout),
        passphrase_filename=data.get("passphrase_filename", defaults.passphrase_filename),
        passphrase_env_var=data.get("passphrase_env_var", defaults.passphrase_env_var),
        chain_name_patterns=_string_list(
            data.get("chain_name_patterns", defaults.chain_name_patterns),
            "chain_name_patterns",
        ),
        chain_search_roots=_string_list(data.get("chain_search_roots"), "chain_search_roots"),
        expiration_threshold_days=data.get(
            "expiration_threshold_days", defaults.expiration_threshold_days
        ),
        skip_if_already_merged=data.get("skip_if_already_merged", defaults.skip_if_already_merged),
    )

    if settings.engine not in ENGINES:
        raise ConfigurationError(
            f"Invalid engine '{settings.engine}'. Must be one of: {', '.join(ENGINES)}"
        )
    if not isinstance(settings.openssl_timeout, int) or settings.openssl_timeout < 1:
        raise ConfigurationError("openssl_timeout must be a positive integer")
    if not isinstance(settings.expiration_threshold_days, int) or settings.expiration_threshold_days < 0:
        raise ConfigurationError("expiration_threshold_days must be a non-negative integer")
    if settings.expiration_threshold_days > 365:
        raise ConfigurationError("expiration_threshold_days should not exceed 365")
    if not settings.passphrase_filename or "/" in settings.passphrase_filename:
        raise ConfigurationError("passphrase_filename must be a plain file name")
    if not settings.chain_name_patterns:
        raise ConfigurationError("chain_name_patterns must not be empty")

    return settings


def _parse_trees(data: Dict[str, Any]) -> TreesConfig:
    """
    Parse tree locations.

    Args:
        data: Raw trees data from YAML

    Returns:
        TreesConfig instance
    """
    defaults = TreesConfig()
    trees = TreesConfig(
        new_root=data.get("new_root", defaults.new_root),
        old_root=data.get("old_root", defaults.old_root),
    )

    if not trees.new_root:
        raise ConfigurationError("trees.new_root is required")

    return trees


def _parse_notifications(data: Dict[str, Any]) -> NotificationsConfig:
    """
    Parse notifications configuration.

    Args:
        data: Raw notifications data from YAML

    Returns:
        NotificationsConfig instance
    """
    email_data = data.get("email", {}) or {}
    to_emails = email_data.get("to_emails", [])
    if isinstance(to_emails, str):
        to_emails = [to_emails]

    email_config = EmailNotificationConfig(
        enabled=email_data.get("enabled", False),
        from_email=email_data.get("from_email", ""),
        to_emails=to_emails,
    )

    teams_data = data.get("teams", {}) or {}
    teams_config = TeamsNotificationConfig(
        enabled=teams_data.get("enabled", False),
        webhook_url=teams_data.get("webhook_url"),
    )

    return NotificationsConfig(
        email=email_config,
        teams=teams_config,
        notify_on_success=data.get("notify_on_success", False),
    )


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the configuration file, or None for defaults

    Returns:
        Validated Config instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    logger = get_logger()

    if config_path is None:
        logger.debug("No configuration file given, using defaults")
        return Config()

    path = Path(config_path)

    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    if path.suffix not in (".yaml", ".yml"):
        raise ConfigurationError(
            f"Configuration file must be YAML (.yaml or .yml): {config_path}"
        )

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
    except IOError as e:
        raise ConfigurationError(f"Failed to read configuration file: {e}")

    if not raw_data:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(raw_data, dict):
        raise ConfigurationError("Configuration file must contain a mapping")

    data = _expand_env_vars(raw_data)

    settings = _parse_settings(data.get("settings", {}) or {})
    trees = _parse_trees(data.get("trees", {}) or {})
    notifications = _parse_notifications(data.get("notifications", {}) or {})

    logger.info(f"Loaded configuration from {config_path}")
    logger.info(f"  Engine: {settings.engine}")
    logger.info(f"  New tree: {trees.new_root}")
    logger.info(f"  Old tree: {trees.old_root or 'not configured'}")

    enabled_channels = []
    if notifications.email.enabled:
        enabled_channels.append("email")
    if notifications.teams.enabled:
        enabled_channels.append("teams")
    if enabled_channels:
        logger.info(f"  Notifications: {', '.join(enabled_channels)}")
    else:
        logger.info("  Notifications: disabled")

    return Config(
        settings=settings,
        trees=trees,
        notifications=notifications,
    )
