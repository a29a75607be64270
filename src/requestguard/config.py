#!/usr/bin/env python3
"""
Configuration management for the request guard.

Loads a YAML file, validates each section and expands ${VAR_NAME}
references so secrets (Redis and SMTP passwords) can live in the
environment instead of the file.
"""

import copy
import logging
import os
import re
from typing import Dict

import yaml

from .exceptions import ConfigurationError


ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')

DEFAULT_CONFIG = {
    'security': {
        'enabled': True,
        'sweep_interval': 1000,
        'whitelist': [],
        'blacklist': [],
        'detectors': {
            'input-validator': True,
            'rate-heuristic': True,
            'url-validator': True,
            'file-guard': True,
            'session-guard': True,
        },
    },
    'rate_limits': {
        'normal': {'window_seconds': 900, 'quota': 100},
        'strict': {'window_seconds': 60, 'quota': 10},
        'detector': {'window_seconds': 60, 'quota': 50},
    },
    'monitor': {
        'max_activities': 1000,
        'trim_to': 500,
    },
    'path_guard': {
        'allowed_roots': ['/workspace', '/workspace/uploads', '/workspace/public'],
        'blocked_extensions': ['.exe', '.bat', '.cmd', '.sh', '.ps1', '.dll', '.so', '.dylib'],
    },
    'storage': {
        'backend': 'file',
        'ban_list_path': '.banned_ips.txt',
        'attack_log_path': '.security_attack_log.txt',
        'redis': {
            'host': 'localhost',
            'port': 6379,
            'db': 0,
            'password': None,
            'timeout': 5,
            'key_prefix': 'requestguard',
        },
    },
    'dispatcher': {
        'max_attempts': 3,
        'retry_delay': 0.5,
    },
    'notifications': {
        'backend': 'log',
        'recipient': 'abuse@example.com',
        'sender': 'security@localhost',
        'recipients': [],
        'smtp': {
            'host': '',
            'port': 587,
            'username': None,
            'password': None,
            'use_tls': True,
            'timeout': 10,
        },
    },
    'metrics': {
        'enabled': False,
        'port': 9090,
        'bind_host': '127.0.0.1',
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    },
}

VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ConfigManager:
    """Configuration management."""

    def __init__(self, config_path: str = "config/guard.yml"):
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)
        self.config = self.load_config()

    def load_config(self) -> Dict:
        """
        Load configuration from YAML file with validation.

        Raises:
            ConfigurationError: If the file cannot be parsed or is invalid
        """
        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f)
        except FileNotFoundError:
            self.logger.warning(f"Config file not found: {self.config_path}, using defaults")
            return self._default_config()
        except yaml.YAMLError as e:
            self.logger.error(f"YAML parsing error: {e}")
            raise ConfigurationError(f"Invalid configuration file: {e}")
        except OSError as e:
            self.logger.error(f"Error loading config: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

        if config is None:
            config = {}
        return self._validate_config(config)

    def _validate_config(self, config: Dict) -> Dict:
        """
        Validate configuration and fill missing sections from defaults.

        Prevents disabling protections through malformed values.
        """
        if not isinstance(config, dict):
            raise ConfigurationError("Configuration must be a dictionary")

        config = self._expand_env_vars(config)
        merged = self._merge(self._default_config(), config)

        self._validate_security_config(merged['security'])
        self._validate_rate_limits(merged['rate_limits'])
        self._validate_monitor_config(merged['monitor'])
        self._validate_storage_config(merged['storage'])
        self._validate_notifications_config(merged['notifications'])
        self._validate_logging_config(merged['logging'])

        return merged

    def _validate_security_config(self, security_config: Dict) -> None:
        """Validate security configuration parameters."""
        if not isinstance(security_config.get('enabled'), bool):
            raise ConfigurationError("security.enabled must be boolean")

        interval = security_config.get('sweep_interval')
        if not isinstance(interval, int) or interval < 1:
            raise ConfigurationError(f"Invalid sweep_interval: {interval}")

        for list_name in ('whitelist', 'blacklist'):
            entries = security_config.get(list_name)
            if not isinstance(entries, list) or not all(isinstance(e, str) for e in entries):
                raise ConfigurationError(f"security.{list_name} must be a list of strings")

        detectors = security_config.get('detectors')
        if not isinstance(detectors, dict):
            raise ConfigurationError("security.detectors must be a mapping")
        for detector_id, enabled in detectors.items():
            if detector_id not in DEFAULT_CONFIG['security']['detectors']:
                raise ConfigurationError(f"Unknown detector: {detector_id}")
            if not isinstance(enabled, bool):
                raise ConfigurationError(f"security.detectors.{detector_id} must be boolean")

    def _validate_rate_limits(self, rate_config: Dict) -> None:
        """Validate window and quota of every rate profile."""
        for name, limits in rate_config.items():
            if not isinstance(limits, dict):
                raise ConfigurationError(f"rate_limits.{name} must be a mapping")

            window = limits.get('window_seconds')
            if not isinstance(window, (int, float)) or isinstance(window, bool) or not (1 <= window <= 86400):
                raise ConfigurationError(f"Invalid rate_limits.{name}.window_seconds: {window}")

            quota = limits.get('quota')
            if not isinstance(quota, int) or isinstance(quota, bool) or not (1 <= quota <= 1000000):
                raise ConfigurationError(f"Invalid rate_limits.{name}.quota: {quota}")

    def _validate_monitor_config(self, monitor_config: Dict) -> None:
        max_activities = monitor_config.get('max_activities')
        trim_to = monitor_config.get('trim_to')
        if not isinstance(max_activities, int) or not isinstance(trim_to, int):
            raise ConfigurationError("monitor.max_activities and monitor.trim_to must be integers")
        if not (0 < trim_to < max_activities):
            raise ConfigurationError("monitor.trim_to must be positive and below max_activities")

    def _validate_storage_config(self, storage_config: Dict) -> None:
        """Validate storage backend with security checks."""
        backend = storage_config.get('backend')
        if backend not in ('file', 'redis'):
            raise ConfigurationError(f"Invalid storage backend: {backend}")

        if backend != 'redis':
            return

        redis_config = storage_config.get('redis', {}) or {}

        # SECURITY: Require password in production
        if not redis_config.get('password'):
            if os.getenv('ENVIRONMENT', 'production') == 'production':
                raise ConfigurationError("SECURITY: Redis password is required in production")
            self.logger.warning("SECURITY: Redis running without authentication")

        host = redis_config.get('host')
        if not isinstance(host, str) or not host or len(host) > 255:
            raise ConfigurationError(f"Invalid Redis host: {host}")

        port = redis_config.get('port')
        if not isinstance(port, int) or port < 1 or port > 65535:
            raise ConfigurationError(f"Invalid Redis port: {port}")

    def _validate_notifications_config(self, notify_config: Dict) -> None:
        backend = notify_config.get('backend')
        if backend not in ('log', 'smtp'):
            raise ConfigurationError(f"Invalid notification backend: {backend}")

        if backend == 'smtp':
            if not (notify_config.get('smtp', {}) or {}).get('host'):
                raise ConfigurationError("notifications.smtp.host is required for smtp backend")
            if not notify_config.get('recipients'):
                raise ConfigurationError("notifications.recipients is required for smtp backend")

    def _validate_logging_config(self, logging_config: Dict) -> None:
        level = str(logging_config.get('level', '')).upper()
        if level not in VALID_LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {logging_config.get('level')}")
        logging_config['level'] = level

    def _expand_env_vars(self, config: Dict) -> Dict:
        """
        Expand environment variables in configuration.

        Supports ${VAR_NAME} syntax for sensitive values.
        """
        def expand_value(value):
            if isinstance(value, str):
                for var_name in ENV_VAR_PATTERN.findall(value):
                    env_value = os.getenv(var_name)
                    if env_value is None:
                        self.logger.warning(f"Environment variable not set: {var_name}")
                        env_value = ''
                    value = value.replace(f'${{{var_name}}}', env_value)
            elif isinstance(value, dict):
                return {k: expand_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [expand_value(item) for item in value]
            return value

        return expand_value(config)

    @classmethod
    def _merge(cls, base: Dict, override: Dict) -> Dict:
        """Recursively overlay override on base; lists are replaced, not merged."""
        merged = dict(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = cls._merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _default_config(self) -> Dict:
        """Default configuration."""
        return copy.deepcopy(DEFAULT_CONFIG)
