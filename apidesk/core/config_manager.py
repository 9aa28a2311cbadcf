"""
Configuration Management System for apidesk
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger('apidesk.core.config_manager')

ENV_PREFIX = 'APIDESK_'

class Environment(Enum):
    """Supported deployment environments"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"

class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing"""
    pass

class AppConfiguration(BaseModel):
    """Main application configuration model with Pydantic validation"""

    # HTTP
    base_url: Optional[str] = None
    request_timeout: float = Field(default=30.0, gt=0)

    # Logging
    log_level: str = "INFO"
    log_file_path: Optional[str] = None
    log_storage_key: str = "app_logs"
    max_log_size: int = Field(default=100, ge=1)
    persist_logs: bool = True

    # Durable storage
    storage_path: Optional[str] = None

    # Endpoint catalog
    endpoints_file_path: str = "data/endpoints.json"
    dynamic_endpoints_path: str = "/api/v1/api-tester/endpoints"
    use_dynamic_endpoints: bool = True
    use_local_endpoints: bool = True
    support_multiple_formats: bool = True
    use_bundled_endpoints: bool = True
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=2.0, ge=0)

    # Authentication
    auth_token_key: str = "auth_token"
    auth_user_key: str = "auth_user"
    last_email_key: str = "last_email"
    api_key_key: str = "api_key"
    login_endpoint: str = "/api/auth/login"
    register_endpoint: str = "/api/auth/register"
    logout_endpoint: str = "/api/auth/logout"
    profile_endpoint: str = "/api/users/profile"

    # Flow UI
    flow_menu_container_id: str = "flow-menu"
    flow_details_container_id: str = "flow-details"
    max_emit_depth: int = Field(default=32, ge=1)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['TRACE', 'DEBUG', 'INFO', 'WARN', 'WARNING', 'ERROR', 'FATAL', 'CRITICAL', 'OFF']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of {valid_levels}')
        return v.upper()

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v):
        if v and not v.startswith(('http://', 'https://')):
            raise ValueError('base_url must start with http:// or https://')
        return v

class ConfigurationManager:
    """
    Centralized configuration management.

    Sources, lowest priority first: model defaults, config/default.yaml,
    config/{environment}.yaml, the .env file, then APIDESK_* environment
    variables.
    """

    def __init__(self, base_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        self.base_path = Path(base_path) if base_path else Path.cwd()
        self.config_dir = self.base_path / "config"
        self.environment = self._detect_environment()
        self._overrides = dict(overrides or {})
        self._configuration: Optional[AppConfiguration] = None

        logger.info(f"ConfigurationManager initialized for environment: {self.environment.value}")

    def load_configuration(self) -> AppConfiguration:
        """
        Load and validate configuration from all sources.

        Returns:
            Validated configuration object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config_data = self._load_yaml_file(self.config_dir / "default.yaml")
        config_data = self._deep_merge(
            config_data,
            self._load_yaml_file(self.config_dir / f"{self.environment.value}.yaml")
        )
        config_data.update(self._load_env_file())
        config_data.update(self._load_environment_variables(os.environ))
        config_data.update(self._overrides)

        try:
            self._configuration = AppConfiguration(**config_data)
        except ValidationError as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}") from e

        logger.info("Configuration loaded successfully")
        return self._configuration

    def get_configuration(self) -> AppConfiguration:
        """Get current configuration, loading if necessary"""
        if self._configuration is None:
            return self.load_configuration()
        return self._configuration

    def reload_configuration(self) -> AppConfiguration:
        """Reload configuration from sources"""
        self._configuration = None
        return self.load_configuration()

    def get_config_value(self, key: str, default: Any = None) -> Any:
        """
        Get a specific configuration value with dot notation support.

        Args:
            key: Configuration key (supports dot notation like 'section.value')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        value: Any = self.get_configuration()

        for part in key.split('.'):
            if isinstance(value, dict):
                if part not in value:
                    return default
                value = value[part]
            elif hasattr(value, part):
                value = getattr(value, part)
            else:
                return default
        return value

    def validate_configuration(self, config_data: Dict[str, Any]) -> bool:
        """Validate configuration data without loading"""
        try:
            AppConfiguration(**config_data)
            return True
        except ValidationError:
            return False

    def _detect_environment(self) -> Environment:
        """Detect current environment from the APIDESK_ENVIRONMENT variable"""
        env_var = os.getenv(f'{ENV_PREFIX}ENVIRONMENT', '').lower()
        if env_var:
            try:
                return Environment(env_var)
            except ValueError:
                logger.warning(f"Unknown environment '{env_var}', using development")

        return Environment.DEVELOPMENT

    def _load_yaml_file(self, path: Path) -> Dict[str, Any]:
        """Load configuration from YAML file"""
        if not path.exists():
            return {}

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load YAML file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"YAML file {path} must contain a mapping")

        logger.debug(f"Loaded configuration from {path}")
        return data

    def _load_env_file(self) -> Dict[str, Any]:
        """Load APIDESK_* keys from the .env file"""
        env_file = self.base_path / '.env'
        if not env_file.exists():
            return {}

        values = self._load_environment_variables(dotenv_values(env_file))
        logger.debug(f"Loaded {len(values)} values from .env file")
        return values

    def _load_environment_variables(self, source) -> Dict[str, Any]:
        """Map APIDESK_<FIELD> variables onto configuration fields"""
        config_data: Dict[str, Any] = {}
        fields = AppConfiguration.model_fields

        for env_var, env_value in source.items():
            if not env_var.startswith(ENV_PREFIX) or env_value is None:
                continue

            config_key = env_var[len(ENV_PREFIX):].lower()
            if config_key not in fields:
                continue

            # Pydantic coerces "3", "true", "2.5" to the field types
            config_data[config_key] = env_value
            logger.debug(f"Applied environment variable {env_var} -> {config_key}")

        return config_data

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
