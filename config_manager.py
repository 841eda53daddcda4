# config_manager.py - Configuration Management for the video call service

import json
import os
import secrets
import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)

class ConfigManager:
    """Centralized configuration management for the signaling service"""

    def __init__(self, config_file: str = None):
        # Auto-detect environment and config file
        self.environment = os.getenv('ENVIRONMENT', 'development')

        if config_file is None:
            if self.environment == 'production':
                config_file = "config_production.json"
            elif self.environment == 'staging':
                config_file = "config_staging.json"
            else:
                config_file = "config.json"

        self.config_file = config_file
        self._config: Dict[str, Any] = {}
        self._load_config()
        self._apply_environment_overrides()
        self._validate_config()
        self._setup_auto_generated_values()

    def _load_config(self):
        """Load configuration from JSON file, merged over the defaults"""
        self._config = self._get_default_config()
        if not os.path.exists(self.config_file):
            logger.info(f"Config file {self.config_file} not found, using defaults")
            return

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                file_config = json.load(f)
            self._merge(self._config, file_config)
            logger.info(f"Configuration loaded from {self.config_file}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config {self.config_file}: {e}")

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]):
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                self._merge(base[key], value)
            else:
                base[key] = value

    def _apply_environment_overrides(self):
        """Apply environment variable overrides"""
        allowed_origins = os.getenv('ALLOWED_ORIGINS')
        if allowed_origins:
            origins = [origin.strip() for origin in allowed_origins.split(',') if origin.strip()]
            self.set('security.allowed_origins', origins)
            logger.info(f"CORS origins overridden from environment: {origins}")

        secret_key = os.getenv('SECRET_KEY')
        if secret_key:
            self.set('security.secret_key', secret_key)
            logger.info("Secret key overridden from environment")

        database_path = os.getenv('DATABASE_PATH')
        if database_path:
            self.set('database.path', database_path)

        log_level = os.getenv('LOG_LEVEL')
        if log_level:
            self.set('logging.level', log_level)

        socket_url = os.getenv('SOCKET_URL')
        if socket_url:
            self.set('video_call.socket_url', socket_url)

        if self.environment == 'production':
            self._config.setdefault('database', {})['path'] = database_path or '/app/data/video_calls.db'

    def _validate_config(self):
        """Validate configuration values"""
        errors = []

        required_sections = ['server', 'security', 'video_call']
        for section in required_sections:
            if section not in self._config:
                errors.append(f"Missing required section: {section}")

        access_expire = self.get('security.jwt.access_token_expire_minutes', 60)
        if access_expire < 1:
            errors.append("access_token_expire_minutes must be at least 1")

        retention = self.get('video_call.chat_retention', 100)
        recent = self.get('video_call.recent_chat_limit', 50)
        if retention < 1:
            errors.append("chat_retention must be at least 1")
        if recent < 0 or recent > retention:
            errors.append("recent_chat_limit must be between 0 and chat_retention")

        if self.get('video_call.idle_timeout_seconds', 0) < 0:
            errors.append("idle_timeout_seconds cannot be negative")

        if self.get('video_call.sweep_interval_seconds', 60) < 1:
            errors.append("sweep_interval_seconds must be at least 1")

        if errors:
            logger.error("Configuration validation errors:")
            for error in errors:
                logger.error(f"  - {error}")
            raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")

        logger.debug("Configuration validation passed")

    def _setup_auto_generated_values(self):
        """Generate a process-local secret key when none is configured"""
        if self.get('security.secret_key') == 'auto-generate':
            self.set('security.secret_key', secrets.token_hex(32))
            logger.warning("Auto-generated secret key; tokens will not survive a restart")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'video_call.chat_retention')"""
        keys = key.split('.')
        value = self._config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def get_allowed_origins(self) -> list:
        """Get allowed origins for CORS"""
        return list(self.get('security.allowed_origins', []))

    def get_secret_key(self) -> str:
        return self.get('security.secret_key')

    def get_database_path(self) -> str:
        """Get database path"""
        return self.get('database.path', 'video_calls.db')

    def reload_config(self):
        """Reload configuration from file"""
        logger.info("Reloading configuration")
        self._load_config()
        self._apply_environment_overrides()
        self._validate_config()
        self._setup_auto_generated_values()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return {
            "server": {
                "host": "0.0.0.0",
                "port": 5000,
                "debug": False,
                "reload": False
            },
            "security": {
                "secret_key": "auto-generate",
                "allowed_origins": [
                    "http://localhost:3000",
                    "http://127.0.0.1:3000"
                ],
                "jwt": {
                    "access_token_expire_minutes": 60,
                    "algorithm": "HS256"
                }
            },
            "database": {
                "path": "video_calls.db"
            },
            "logging": {
                "level": "INFO"
            },
            "video_call": {
                "chat_retention": 100,
                "recent_chat_limit": 50,
                "strict_relay": False,
                "idle_timeout_seconds": 0,
                "sweep_interval_seconds": 60,
                "stats_roles": ["entrepreneur", "investor"],
                "call_token_ttl_hours": 24,
                "socket_url": "http://localhost:5000"
            }
        }

# Global configuration instance
config = ConfigManager()

def get_config() -> ConfigManager:
    """Get the global configuration instance"""
    return config
