"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import yaml

SUPPORTED_FORMATS = ('msgpack', 'json')
TEAM_PATTERN = re.compile(r'^[a-zA-Z0-9-]+$')


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    DEFAULTS: Dict[str, Any] = {
        'kibela': {
            'format': 'msgpack',
            'retry_count': 5,
            'least_delay_ms': 100,
            'request_timeout': 30,
            'verify_ssl': True,
        },
        'migration': {
            'dry_run': True,
            'log_directory': '.',
        },
        'logging': {
            'level': None,
            'file': None,
        },
    }

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Parsed configuration dictionary merged over the defaults

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a dictionary")

        # Substitute environment variables recursively
        config_data = cls._substitute_env_vars_recursive(config_data)

        return cls._apply_environment(_deep_merge(cls.DEFAULTS, config_data))

    @classmethod
    def from_environment(cls) -> Dict[str, Any]:
        """Build a configuration from defaults and KIBELA_* environment variables."""
        return cls._apply_environment(copy.deepcopy(cls.DEFAULTS))

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ValueError: If validation fails
        """
        cls._validate_required_field(config, 'kibela.team')
        cls._validate_required_field(config, 'kibela.access_token')

        team = get_nested(config, 'kibela.team')
        if not TEAM_PATTERN.match(str(team)):
            raise ValueError(f"kibela.team must be a subdomain name: {team}")

        endpoint = get_nested(config, 'kibela.endpoint')
        if endpoint:
            cls._validate_url(endpoint.replace('${KIBELA_TEAM}', str(team)), 'kibela.endpoint')

        format_name = get_nested(config, 'kibela.format', 'msgpack')
        if format_name not in SUPPORTED_FORMATS:
            raise ValueError(f"kibela.format must be one of: {list(SUPPORTED_FORMATS)}")

        retry_count = get_nested(config, 'kibela.retry_count', 0)
        if not isinstance(retry_count, int) or isinstance(retry_count, bool) or retry_count < 0:
            raise ValueError("kibela.retry_count must be a non-negative integer")

        least_delay_ms = get_nested(config, 'kibela.least_delay_ms', 100)
        if not isinstance(least_delay_ms, int) or isinstance(least_delay_ms, bool) or least_delay_ms < 0:
            raise ValueError("kibela.least_delay_ms must be a non-negative integer")

        timeout = get_nested(config, 'kibela.request_timeout', 30)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError("kibela.request_timeout must be a positive number")

        verify_ssl = get_nested(config, 'kibela.verify_ssl', True)
        if not isinstance(verify_ssl, bool):
            raise ValueError("kibela.verify_ssl must be a boolean")

        log_directory = get_nested(config, 'migration.log_directory', '.')
        if log_directory and os.path.exists(log_directory) and not os.path.isdir(log_directory):
            raise ValueError(f"migration.log_directory '{log_directory}' is not a directory")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration file with CLI arguments.
        CLI arguments take precedence over config file values.

        Args:
            config: Base configuration dictionary
            args: CLI arguments with attributes matching config keys

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)

        # Ensure nested dictionaries exist
        for section in ('kibela', 'migration', 'logging'):
            merged.setdefault(section, {})

        if getattr(args, 'json', False):
            merged['kibela']['format'] = 'json'

        # Changes are only applied when asked for on the command line
        if hasattr(args, 'apply'):
            merged['migration']['dry_run'] = not args.apply

        if getattr(args, 'log_file', None):
            merged['logging']['file'] = args.log_file

        verbose = getattr(args, 'verbose', 0)
        if verbose:
            merged['logging']['level'] = 'DEBUG' if verbose >= 2 else 'INFO'

        return merged

    @classmethod
    def _apply_environment(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Fill missing kibela settings from KIBELA_TEAM, KIBELA_TOKEN and KIBELA_ENDPOINT."""
        kibela = config.setdefault('kibela', {})
        for key, env_name in (('team', 'KIBELA_TEAM'),
                              ('access_token', 'KIBELA_TOKEN'),
                              ('endpoint', 'KIBELA_ENDPOINT')):
            value = kibela.get(key)
            if value in (None, '') or (isinstance(value, str) and cls.ENV_VAR_PATTERN.fullmatch(value)):
                env_value = os.getenv(env_name)
                if env_value:
                    kibela[key] = env_value
                elif key == 'endpoint':
                    kibela[key] = None
        return config

    @classmethod
    def _substitute_env_vars_recursive(cls, data: Any) -> Any:
        """Recursively substitute environment variables in data structure."""
        if isinstance(data, dict):
            return {key: cls._substitute_env_vars_recursive(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars_recursive(item) for item in data]
        elif isinstance(data, str):
            return cls._substitute_env_vars(data)
        else:
            return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Substitute environment variables in a string value."""
        def replace_match(match):
            var_name = match.group(1)
            # The endpoint template placeholder is resolved by the client
            if var_name == 'KIBELA_TEAM' and value != match.group(0):
                return match.group(0)
            env_value = os.getenv(var_name)
            return env_value if env_value is not None else match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config_section: dict, field: str) -> None:
        """Validate that a required field exists and has a value."""
        value = get_nested(config_section, field)
        if value is None or value == '':
            raise ValueError(f"Missing required configuration: {field}")

        # Check for unsubstituted environment variables
        if isinstance(value, str) and '${' in value:
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            var_name = match.group(1) if match else value
            raise ValueError(
                f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                f"Please set the {var_name} environment variable or provide a value in config file."
            )

    @staticmethod
    def _validate_url(url: str, field_name: str) -> None:
        """Validate URL format."""
        parsed = urlparse(url)
        if not parsed.scheme or parsed.scheme not in ['http', 'https']:
            raise ValueError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ValueError(f"{field_name} missing hostname: {url}")


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "kibela.team")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    keys = path.split('.')
    value = config

    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


def require_env(name: str, environ: Optional[Dict[str, str]] = None) -> str:
    """Return a non-empty environment variable or raise ValueError naming it."""
    value = (os.environ if environ is None else environ).get(name)
    if value is None or value == '':
        raise ValueError(f"Environment variable {name} is required")
    return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


__all__ = ['ConfigLoader', 'get_nested', 'require_env']
