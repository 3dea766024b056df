"""
Configuration loading and management for LDAP Group Manager.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults, and exposes the directory settings the group and
membership services are built from.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

from ldap3.utils.dn import escape_rdn

from ldap_groups.errors import InvalidDNError

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
        'ldap.admin_principal': 'LDAP_ADMIN_PRINCIPAL',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if current.get(key) is None:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        ldap_config = self.config.get('ldap') or {}
        if not (ldap_config.get('host') or ldap_config.get('server_url')):
            errors.append("Missing required LDAP field: host (or server_url)")
        for field in ['admin_principal', 'bind_password']:
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        for field in ['port', 'page_size', 'batch_size']:
            value = ldap_config.get(field)
            if value is not None and (not isinstance(value, int) or value < 1):
                errors.append(f"LDAP field {field} must be a positive integer")

        error_config = self.config.get('error_handling') or {}
        max_attempts = error_config.get('max_attempts')
        if max_attempts is not None and (not isinstance(max_attempts, int) or max_attempts < 1):
            errors.append("error_handling.max_attempts must be a positive integer")
        retry_wait = error_config.get('retry_wait_seconds')
        if retry_wait is not None and (not isinstance(retry_wait, (int, float)) or retry_wait < 0):
            errors.append("error_handling.retry_wait_seconds must not be negative")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'port': 636,
            'use_ssl': True,
            'start_tls': False,
            'verify_ssl': True,
            'base_dn': 'DC=sandbox,DC=local',
            'users_ou': 'CN=Users',
            'mail_domain': 'sandbox.local',
            'page_size': 1000,
            'batch_size': 100,
            'connection_timeout': 10,
            'receive_timeout': 10
        }
        ldap_config = self.config.setdefault('ldap', {})
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_defaults = {
            'max_attempts': 3,
            'retry_wait_seconds': 1.0
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()


class DirectorySettings:
    """
    Read-only view over the ``ldap`` configuration section.

    Provides the connection parameters and the DN helpers used to address
    group and user entries.
    """

    def __init__(self, ldap_config: Dict[str, Any]):
        self.host = ldap_config.get('host')
        self.port = ldap_config.get('port', 636)
        self.use_ssl = ldap_config.get('use_ssl', True)
        self.start_tls = ldap_config.get('start_tls', False)
        self.verify_ssl = ldap_config.get('verify_ssl', True)
        self.ca_cert_file = ldap_config.get('ca_cert_file')
        self.admin_principal = ldap_config.get('admin_principal')
        self.bind_password = ldap_config.get('bind_password')
        self.base_dn = ldap_config.get('base_dn', 'DC=sandbox,DC=local')
        self.users_ou = ldap_config.get('users_ou', 'CN=Users')
        self.mail_domain = ldap_config.get('mail_domain', 'sandbox.local')
        self.page_size = ldap_config.get('page_size', 1000)
        self.batch_size = ldap_config.get('batch_size', 100)
        self.connection_timeout = ldap_config.get('connection_timeout', 10)
        self.receive_timeout = ldap_config.get('receive_timeout', 10)
        self._server_url = ldap_config.get('server_url')

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'DirectorySettings':
        """Build settings from a full configuration dictionary."""
        return cls(config.get('ldap') or {})

    @property
    def provider_url(self) -> str:
        """Full provider URL, e.g. ``ldaps://dc01.sandbox.local:636``."""
        if self._server_url:
            return self._server_url
        scheme = 'ldaps' if self.use_ssl else 'ldap'
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def users_dn(self) -> str:
        """Full DN of the users container."""
        return f"{self.users_ou},{self.base_dn}"

    def object_dn(self, cn: str) -> str:
        """
        Full DN for a user or group with the given common name.

        Raises:
            InvalidDNError: If ``cn`` is empty or blank
        """
        if not cn or not cn.strip():
            raise InvalidDNError(f"Common name must not be empty: {cn!r}")
        return f"CN={escape_rdn(cn)},{self.users_dn}"

    def __repr__(self):
        return (f"DirectorySettings(provider_url={self.provider_url!r}, "
                f"admin_principal={self.admin_principal!r}, users_dn={self.users_dn!r})")
