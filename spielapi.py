#!/usr/bin/env python3
"""
Spiel API - configuration and logging
Shared setup for the Spiel catalog service: the ``spielapi`` logger and the
layered configuration (defaults, ``config.json``, environment variables).
"""

import json
import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def setup_logging(level: str = 'WARNING', log_file: Optional[str] = None) -> logging.Logger:
    """Configure the root Spiel API logger.

    Args:
        level:    Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
                  Defaults to WARNING so normal use is quiet.
        log_file: Optional path of an additional log file.

    Returns:
        Configured logger instance.
    """
    numeric = getattr(logging, level.upper(), logging.WARNING)
    logger = logging.getLogger('spielapi')
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('[%(levelname)s] %(name)s: %(message)s'))
        logger.addHandler(handler)
    if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)
        fh = logging.FileHandler(log_file)
        fh.setFormatter(logging.Formatter('[%(asctime)s] %(levelname)s %(name)s: %(message)s'))
        logger.addHandler(fh)
    logger.setLevel(numeric)
    return logger


logger = logging.getLogger('spielapi.config')

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_CONFIG: Dict[str, Any] = {
    'database_url': 'postgresql://spiel:p@localhost:5432/spiel',
    'db_populate': False,
    'log_level': 'INFO',
    'log_file': '',
    'host': '127.0.0.1',
    'port': 3000,
    'keycloak_url': 'http://localhost:8880',
    'keycloak_realm': 'nest',
    'keycloak_client_id': 'nest-client',
    'keycloak_client_secret': '',
    'keycloak_timeout': 10,
    'mail_activated': False,
    'mail_host': 'localhost',
    'mail_port': 25,
    'mail_from': 'spiel@acme.com',
    'mail_to': 'admin@acme.com',
    'max_upload_bytes': 5 * 1024 * 1024,
}

# Environment variable -> config key
ENV_OVERRIDES = {
    'DATABASE_URL': 'database_url',
    'DB_POPULATE': 'db_populate',
    'SPIEL_LOG_LEVEL': 'log_level',
    'SPIEL_LOG_FILE': 'log_file',
    'SPIEL_HOST': 'host',
    'SPIEL_PORT': 'port',
    'KEYCLOAK_URL': 'keycloak_url',
    'KEYCLOAK_REALM': 'keycloak_realm',
    'KEYCLOAK_CLIENT_ID': 'keycloak_client_id',
    'KEYCLOAK_CLIENT_SECRET': 'keycloak_client_secret',
    'KEYCLOAK_TIMEOUT': 'keycloak_timeout',
    'MAIL_ACTIVATED': 'mail_activated',
    'MAIL_HOST': 'mail_host',
    'MAIL_PORT': 'mail_port',
    'MAIL_FROM': 'mail_from',
    'MAIL_TO': 'mail_to',
    'SPIEL_MAX_UPLOAD_BYTES': 'max_upload_bytes',
}

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


def _coerce(raw: str, default: Any) -> Any:
    """Convert an environment string to the type of *default*."""
    if isinstance(default, bool):
        return raw.strip().lower() in _TRUE_VALUES
    if isinstance(default, int):
        return int(raw)
    return raw


def load_config(config_path: str = 'config.json') -> Dict[str, Any]:
    """Load configuration from JSON file with environment variable support.

    Values are resolved in this order (later wins):

    1. :data:`DEFAULT_CONFIG`
    2. ``config_path`` if the file exists
    3. environment variables listed in :data:`ENV_OVERRIDES`

    Raises:
        ValueError: The config file exists but is not valid JSON, or an
            environment variable cannot be converted to the expected type.
    """
    config = dict(DEFAULT_CONFIG)

    if os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                config.update(json.load(f))
        except json.JSONDecodeError as e:
            raise ValueError(f"Error parsing config file {config_path}: {e}") from e
        logger.debug("Loaded config file %s", config_path)
    else:
        logger.debug("Config file %s not found, using defaults", config_path)

    for env_name, key in ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or raw == '':
            continue
        try:
            config[key] = _coerce(raw, DEFAULT_CONFIG[key])
        except ValueError as e:
            raise ValueError(f"Invalid value for {env_name}: {raw!r}") from e

    return config
