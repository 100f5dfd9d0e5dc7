"""Configuration loader for the S3 step definitions."""
import os
import configparser
from typing import Dict, Any, Optional, Tuple
from pathlib import Path
import json
import yaml
from dataclasses import dataclass
import re
from datetime import datetime, timedelta
import threading

from utils.custom_exceptions import ConfigurationError
from utils.logger import get_logger

# Legacy per-service LocalStack ports, used when USEPORTMAP is set and
# config.ini has no [AWS_PORT_MAP] entry for the service.
DEFAULT_AWS_PORT_MAP = {
    'apigateway': 4567,
    'kinesis': 4568,
    'dynamodb': 4569,
    'dynamodbstreams': 4570,
    's3': 4572,
    'firehose': 4573,
    'lambda': 4574,
    'sns': 4575,
    'sqs': 4576,
    'redshift': 4577,
    'ses': 4579,
    'cloudwatch': 4582,
    'secretsmanager': 4584,
    'stepfunctions': 4585,
    'logs': 4586,
}

_FALSE_VALUES = {'', '0', 'false', 'no', 'off'}


def _is_truthy(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() not in _FALSE_VALUES


@dataclass
class S3Config:
    """Endpoint and client settings for the S3 connector, built once per test run."""
    host: str = 'localhost'
    scheme: str = 'http'
    region: str = 'us-east-1'
    service: str = 's3'
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    use_port_map: bool = False
    port: Optional[int] = None
    max_keys: int = 1000

    def __post_init__(self):
        if not self.host:
            raise ConfigurationError("S3 host cannot be empty", config_key="host")
        if self.scheme not in ('http', 'https'):
            raise ConfigurationError(f"Unsupported S3 endpoint scheme: {self.scheme}", config_key="scheme")
        if self.use_port_map and self.port is None:
            raise ConfigurationError(f"No port mapped for service '{self.service}'", config_key="port")
        if self.port is not None and not (1 <= self.port <= 65535):
            raise ConfigurationError(f"Invalid port number: {self.port}", config_key="port")
        if self.max_keys < 0:
            raise ConfigurationError(f"max_keys cannot be negative: {self.max_keys}", config_key="max_keys")

    @property
    def endpoint_url(self) -> str:
        url = f"{self.scheme}://{self.host}"
        if self.use_port_map:
            url += f":{self.port}"
        return url

    def to_dict(self, include_credentials: bool = False) -> Dict[str, Any]:
        """Convert to dictionary with optional credential masking."""
        return {
            'endpoint_url': self.endpoint_url,
            'region': self.region,
            'service': self.service,
            'access_key_id': self.access_key_id if include_credentials else "***",
            'secret_access_key': self.secret_access_key if include_credentials else "***",
            'use_port_map': self.use_port_map,
            'max_keys': self.max_keys,
        }


class ConfigLoader:
    """Loads INI, JSON and YAML files from the config directory with caching."""

    # Values of these keys may name an environment variable instead of holding the secret
    SENSITIVE_FIELDS = {
        'password', 'token', 'secret', 'access_key_id', 'secret_access_key'
    }

    VALIDATION_RULES = {
        'port': lambda x: 1 <= int(x) <= 65535,
        'timeout': lambda x: int(x) > 0,
        'max_keys': lambda x: int(x) >= 0,
    }

    def __init__(self, config_dir: Optional[str] = None, cache_timeout: int = 300):
        """
        Initialize the ConfigLoader.

        Args:
            config_dir: The directory where configuration files are located
            cache_timeout: Cache timeout in seconds
        """
        self.config_dir = Path(config_dir or "config")
        self.cache_timeout = cache_timeout
        self._config_cache: Dict[str, Tuple[Dict[str, Any], datetime, float]] = {}
        self._cache_lock = threading.RLock()
        self.logger = get_logger("config_loader")

    def _should_resolve_from_env(self, key: str, value: str) -> bool:
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in self.SENSITIVE_FIELDS):
            return bool(re.match(r'^[A-Z][A-Z0-9_]*$', value))
        return False

    def _resolve_value(self, key: str, value: str, context: str = "") -> str:
        """Resolve a configuration value from environment variables if needed."""
        if self._should_resolve_from_env(key, value):
            env_value = os.getenv(value)
            if env_value:
                return env_value
            raise ConfigurationError(
                f"Environment variable '{value}' not found. "
                f"Please set it as a system environment variable. "
                f"Context: {context}",
                config_key=value
            )
        return value

    def _validate_value(self, key: str, value: str, context: str = "") -> str:
        key_lower = key.lower()
        for rule_key, rule_func in self.VALIDATION_RULES.items():
            if key_lower == rule_key or key_lower.endswith('_' + rule_key):
                try:
                    if not rule_func(value):
                        raise ConfigurationError(f"Validation failed for {context}: {key}={value}",
                                                 config_key=context)
                except (ValueError, TypeError) as e:
                    raise ConfigurationError(f"Invalid value for {context}: {key}={value} ({str(e)})",
                                             config_key=context)
        return value

    def _process(self, key: str, value: str, context: str) -> str:
        try:
            return self._validate_value(key, self._resolve_value(key, value, context), context)
        except ConfigurationError as e:
            self.logger.error(f"Error processing {context}: {e.message}")
            raise

    def _load_ini_config(self, file_path: Path) -> Dict[str, Any]:
        config = configparser.ConfigParser(interpolation=None)
        config.read(file_path, encoding='utf-8')

        defaults = config.defaults()
        result: Dict[str, Any] = {'DEFAULT': dict(defaults)}
        for section in config.sections():
            # configparser folds [DEFAULT] keys into every section; keep them out
            result[section] = {
                key: self._process(key, value, f"{section}.{key}")
                for key, value in config[section].items()
                if key not in defaults or defaults[key] != value
            }
        return result

    def _load_json_config(self, file_path: Path) -> Dict[str, Any]:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return self._resolve_dict_values(data)

    def _load_yaml_config(self, file_path: Path) -> Dict[str, Any]:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        return self._resolve_dict_values(data)

    def _resolve_dict_values(self, data: Any, context: str = "") -> Any:
        """Recursively resolve and validate string values."""
        if isinstance(data, dict):
            result = {}
            for k, v in data.items():
                new_context = f"{context}.{k}" if context else k
                if isinstance(v, str):
                    result[k] = self._process(k, v, new_context)
                else:
                    result[k] = self._resolve_dict_values(v, new_context)
            return result
        if isinstance(data, list):
            return [self._resolve_dict_values(item, f"{context}[{i}]") for i, item in enumerate(data)]
        return data

    def load_config_file(self, filename: str, force_reload: bool = False) -> Dict[str, Any]:
        """
        Load a configuration file, reusing the cached copy while it is fresh and unmodified.

        Raises:
            ConfigurationError: If the file is missing, unsupported or invalid
        """
        file_path = self.config_dir / filename
        if not file_path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}",
                                     config_file=str(file_path))

        mtime = file_path.stat().st_mtime
        with self._cache_lock:
            cached = self._config_cache.get(filename)
            if cached and not force_reload:
                data, loaded_at, cached_mtime = cached
                if (datetime.now() - loaded_at < timedelta(seconds=self.cache_timeout)
                        and cached_mtime == mtime):
                    self.logger.debug(f"Using cached config for {filename}")
                    return data

            try:
                if filename.endswith('.ini'):
                    data = self._load_ini_config(file_path)
                elif filename.endswith('.json'):
                    data = self._load_json_config(file_path)
                elif filename.endswith(('.yml', '.yaml')):
                    data = self._load_yaml_config(file_path)
                else:
                    raise ConfigurationError(f"Unsupported config format: {filename}",
                                             config_file=filename)
            except ConfigurationError:
                raise
            except (OSError, ValueError, configparser.Error, yaml.YAMLError) as e:
                raise ConfigurationError(f"Failed to load config file: {str(e)}",
                                         config_file=str(file_path)) from e

            self._config_cache[filename] = (data, datetime.now(), mtime)
            self.logger.debug(f"Loaded config from {file_path}")
            return data

    def get_custom_config(self, section: str, key: Optional[str] = None, default: Any = None,
                          filename: str = "config.ini") -> Any:
        """
        Get a configuration section or a single key.

        Returns:
            Configuration value, section dict, or default
        """
        config = self.load_config_file(filename)

        if section not in config:
            if default is not None:
                return default
            raise ConfigurationError(
                f"Section '{section}' not found in config. "
                f"Available sections: {list(config.keys())}",
                config_key=section
            )

        if key:
            if key not in config[section]:
                if default is not None:
                    return default
                raise ConfigurationError(
                    f"Key '{key}' not found in section '{section}'. "
                    f"Available keys: {list(config[section].keys())}",
                    config_key=f"{section}.{key}"
                )
            return config[section][key]

        return config[section]

    def section_exists(self, section_name: str, filename: str = "config.ini") -> bool:
        try:
            return section_name in self.load_config_file(filename)
        except ConfigurationError:
            return False

    def get_port_map(self, filename: str = "config.ini") -> Dict[str, int]:
        """Service name to port, config.ini [AWS_PORT_MAP] entries over the built-in map."""
        port_map = dict(DEFAULT_AWS_PORT_MAP)
        if (self.config_dir / filename).exists():
            section = self.load_config_file(filename).get('AWS_PORT_MAP', {})
            port_map.update({service: int(port) for service, port in section.items()})
        return port_map

    def get_s3_config(self, section_name: str = "S3", filename: str = "config.ini") -> S3Config:
        """
        Build the S3 endpoint configuration.

        Precedence: environment variables (USEPORTMAP, AWS_ENDPOINT_HOST,
        AWS_REGION), then the config section, then S3Config defaults.
        """
        section: Dict[str, Any] = {}
        if (self.config_dir / filename).exists():
            section = self.load_config_file(filename).get(section_name, {})
        else:
            self.logger.debug(f"No {filename} in {self.config_dir}, using S3 defaults")

        try:
            service = section.get('service', 's3')
            use_port_map_env = os.getenv('USEPORTMAP')
            if use_port_map_env is not None:
                use_port_map = _is_truthy(use_port_map_env)
            else:
                use_port_map = _is_truthy(section.get('use_port_map'))

            port = self.get_port_map(filename).get(service) if use_port_map else None

            config = S3Config(
                host=os.getenv('AWS_ENDPOINT_HOST', section.get('host', 'localhost')),
                scheme=section.get('scheme', 'http'),
                region=os.getenv('AWS_REGION', section.get('region', 'us-east-1')),
                service=service,
                access_key_id=section.get('access_key_id'),
                secret_access_key=section.get('secret_access_key'),
                use_port_map=use_port_map,
                port=port,
                max_keys=int(section.get('max_keys', 1000)),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid S3 configuration in section '{section_name}': {str(e)}",
                                     config_key=section_name) from e

        self.logger.info(f"S3 endpoint configured: {config.endpoint_url} (region {config.region})")
        return config


config_loader = ConfigLoader()
