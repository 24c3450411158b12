"""User-level configuration for dev-vault (credentials).

The user config is optional. Without one, Google Application Default
Credentials are used.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from . import preferences
from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH_PREFERENCE = "config_path"


def default_config_path() -> Path:
    return Path.home() / ".config" / "dev-vault" / "config.yml"


def get_config_path() -> Optional[str]:
    """
    Get the user config path.

    Priority order:
    1. User preference (set with 'dev-vault config set-path')
    2. Default location: ~/.config/dev-vault/config.yml

    Returns:
        Absolute path to the config file, or None if neither exists
    """
    config_path_pref = preferences.get_preference(CONFIG_PATH_PREFERENCE)
    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            logger.info(f"Using config from preference: {config_path}")
            return str(config_path)
        logger.warning(f"Config path from preference doesn't exist: {config_path}")

    default_config = default_config_path()
    if default_config.exists():
        logger.info(f"Using default config location: {default_config}")
        return str(default_config)

    return None


def load_user_config() -> Optional[Dict[str, Any]]:
    """
    Load and validate the user config from YAML.

    Returns:
        Dict with an optional 'authentication' section (type and
        service_account_path), or None if no user config exists

    Raises:
        ConfigError: If the file is invalid or the service account file is missing
    """
    config_path = get_config_path()
    if config_path is None:
        logger.debug("No user config found; using application default credentials")
        return None

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}")

    if not config:
        raise ConfigError(f"Config file at {config_path} is empty")
    if not isinstance(config, dict):
        raise ConfigError(f"Config file at {config_path} must contain a mapping")

    auth = config.get('authentication')
    if auth is not None:
        if not isinstance(auth, dict) or 'type' not in auth:
            raise ConfigError("Missing 'authentication.type' in config")

        if auth['type'] != 'service_account':
            raise ConfigError(
                f"Unsupported authentication type: {auth['type']}\n"
                f"Only 'service_account' is supported."
            )

        if 'service_account_path' not in auth:
            raise ConfigError(
                "Missing 'authentication.service_account_path' in config\n"
                "Please specify the absolute path to your service account JSON file."
            )
        _check_service_account_file(auth['service_account_path'], config_path)

    logger.info(f"Configuration loaded successfully from {config_path}")
    return config


def _check_service_account_file(service_account_path: str, source: str) -> None:
    if not os.path.exists(service_account_path):
        raise ConfigError(
            f"Service account file not found at: {service_account_path}\n"
            f"Please ensure the file exists or update the path in {source}"
        )
    if not os.path.isfile(service_account_path):
        raise ConfigError(f"Service account path is not a file: {service_account_path}")


def resolve_credentials_path(manifest_credentials: Optional[str],
                             user_config: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Pick the service account file to authenticate with.

    Manifest credentials win over the user config; None means application
    default credentials.

    Raises:
        ConfigError: If the manifest names a credentials file that is missing
    """
    if manifest_credentials:
        _check_service_account_file(manifest_credentials, "the manifest")
        return manifest_credentials
    if user_config and user_config.get('authentication'):
        return user_config['authentication']['service_account_path']
    return None


def resolve_project_id(manifest_project_id: str) -> str:
    """GCP_PROJECT overrides the manifest project_id."""
    gcp_project_env = os.getenv("GCP_PROJECT")
    if gcp_project_env:
        logger.debug(f"Using GCP_PROJECT from environment: {gcp_project_env}")
        return gcp_project_env
    return manifest_project_id
