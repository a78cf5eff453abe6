"""Configuration loader for AlertSynth."""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from alertsynth.config.models import AlertSynthConfig, BackendProvider
from alertsynth.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def load_config(config_path: Optional[Union[str, Path]] = None) -> AlertSynthConfig:
    """Load AlertSynth configuration from file and environment variables.

    Args:
        config_path: Path to configuration file. Defaults to alertsynth.yaml in current directory.

    Returns:
        AlertSynthConfig instance with loaded configuration

    Raises:
        ConfigurationError: If the file cannot be parsed or the configuration is invalid
    """
    if config_path is None:
        config_path = Path("alertsynth.yaml")
    else:
        config_path = Path(config_path)

    config_data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file: {e}", config_path=str(config_path))
        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping", config_path=str(config_path))
        logger.info(f"Loaded configuration from {config_path}")
    else:
        logger.info(f"Config file {config_path} not found, using defaults")

    config_data = _apply_environment_overrides(config_data)

    try:
        config = AlertSynthConfig(**config_data)
    except ValidationError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ConfigurationError(f"Invalid configuration: {e}", config_path=str(config_path))

    logger.info("Configuration validated successfully")
    return config


def _apply_environment_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply well-known vendor environment variables to configuration.

    The provider's own API key variable is only applied to the backend section
    when that provider is the configured one.

    Args:
        config_data: Base configuration data from file

    Returns:
        Configuration data with environment overrides applied
    """
    backend = config_data.setdefault('backend', {})
    provider = backend.get('provider', BackendProvider.OPENAI.value)

    key_vars = {
        BackendProvider.OPENAI.value: 'OPENAI_API_KEY',
        BackendProvider.AZURE_OPENAI.value: 'AZURE_OPENAI_API_KEY',
        BackendProvider.ANTHROPIC.value: 'ANTHROPIC_API_KEY',
    }
    key_var = key_vars.get(provider)
    if key_var and os.getenv(key_var):
        backend['api_key'] = os.getenv(key_var)

    if provider == BackendProvider.AZURE_OPENAI.value:
        if os.getenv('AZURE_OPENAI_ENDPOINT'):
            backend['azure_endpoint'] = os.getenv('AZURE_OPENAI_ENDPOINT')
        if os.getenv('AZURE_OPENAI_DEPLOYMENT_NAME'):
            backend['azure_deployment'] = os.getenv('AZURE_OPENAI_DEPLOYMENT_NAME')
        if os.getenv('AZURE_OPENAI_API_VERSION'):
            backend['azure_api_version'] = os.getenv('AZURE_OPENAI_API_VERSION')

    store_vars = {
        'ELASTIC_NODE': 'node',
        'ELASTIC_API_KEY': 'api_key',
        'ELASTIC_USERNAME': 'username',
        'ELASTIC_PASSWORD': 'password',
    }
    for env_var, field_name in store_vars.items():
        if os.getenv(env_var):
            config_data.setdefault('store', {})[field_name] = os.getenv(env_var)

    if os.getenv('LOG_LEVEL'):
        config_data.setdefault('logging', {})['level'] = os.getenv('LOG_LEVEL')

    return config_data


def setup_logging(config: AlertSynthConfig) -> None:
    """Set up logging based on configuration.

    Args:
        config: AlertSynth configuration instance
    """
    formatter = logging.Formatter(config.logging.format)
    handlers = []

    if config.logging.file_path:
        log_file = Path(config.logging.file_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=config.logging.max_file_size_mb * 1024 * 1024,
            backupCount=config.logging.backup_count
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if config.logging.enable_console_logging:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))
    root_logger.handlers = handlers

    logger.info("Logging configured successfully")
