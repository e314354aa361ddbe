"""
Mind Map Platform - Application Configuration

Centralized configuration management with environment variable support.
Values come from the process environment, optionally seeded from a .env file.
"""

from __future__ import annotations

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


# ==================== Configuration Paths ====================

def get_project_root() -> Path:
    """Get project root directory"""
    return Path(__file__).parent.parent


def get_config_dir() -> Path:
    """Get configuration directory"""
    return get_project_root() / "config"


def get_data_dir() -> Path:
    """Get data directory"""
    data_dir = get_project_root() / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


# ==================== Environment Variable Helpers ====================

def get_env(key: str, default: Any = None, required: bool = False) -> Any:
    """Get environment variable with optional default"""
    value = os.environ.get(key, default)
    if required and value is None:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable"""
    value = os.environ.get(key, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    elif value in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable"""
    try:
        return int(os.environ.get(key, default))
    except (ValueError, TypeError):
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable"""
    try:
        return float(os.environ.get(key, default))
    except (ValueError, TypeError):
        return default


# ==================== Configuration Classes ====================

def _default_database_url() -> str:
    return f"sqlite:///{get_data_dir() / 'mind_map_platform.db'}"


@dataclass
class DatabaseConfig:
    """Database configuration"""
    url: str = field(default_factory=lambda: get_env("DATABASE_URL") or _default_database_url())
    echo: bool = field(default_factory=lambda: get_env_bool("DB_ECHO", False))


@dataclass
class LLMConfig:
    """
    Outbound LLM configuration.

    `default_api_key` is the process-wide fallback credential used when the
    caller supplies no key and has none stored.
    """
    api_base: str = field(default_factory=lambda: get_env("OPENAI_API_BASE", "https://api.openai.com/v1"))
    model: str = field(default_factory=lambda: get_env("OPENAI_MODEL", "gpt-3.5-turbo"))
    default_api_key: Optional[str] = field(default_factory=lambda: get_env("OPENAI_API_KEY") or None)
    service: str = "openai"

    temperature: float = field(default_factory=lambda: get_env_float("LLM_TEMPERATURE", 0.7))
    max_tokens: int = field(default_factory=lambda: get_env_int("LLM_MAX_TOKENS", 500))
    timeout_seconds: float = field(default_factory=lambda: get_env_float("LLM_TIMEOUT_SECONDS", 60.0))

    # Idea count limits
    default_count: int = 5
    max_count: int = 10


@dataclass
class SecurityConfig:
    """Credential vault configuration"""
    encryption_key: str = field(default_factory=lambda: get_env("API_KEY_ENCRYPTION_KEY", ""))
    # padded: legacy zero-pad / truncate to 32 bytes; pbkdf2: PBKDF2-HMAC-SHA256
    kdf_mode: str = field(default_factory=lambda: get_env("API_KEY_KDF_MODE", "padded").lower())
    kdf_salt: str = field(default_factory=lambda: get_env("API_KEY_KDF_SALT", "mind-map-platform"))
    kdf_iterations: int = field(default_factory=lambda: get_env_int("API_KEY_KDF_ITERATIONS", 390000))


@dataclass
class AppConfig:
    """Main application configuration"""
    name: str = field(default_factory=lambda: get_env("APP_NAME", "Mind Map Platform"))
    version: str = field(default_factory=lambda: get_env("APP_VERSION", "1.0.0"))
    environment: str = field(default_factory=lambda: get_env("APP_ENV", "development"))

    # Sub-configurations
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (hiding sensitive values)"""
        from dataclasses import asdict

        def hide_sensitive(obj, sensitive_keys={"api_key", "password", "token", "secret", "encryption_key", "salt"}):
            if isinstance(obj, dict):
                return {
                    k: "***" if any(s in k.lower() for s in sensitive_keys) else hide_sensitive(v, sensitive_keys)
                    for k, v in obj.items()
                }
            elif isinstance(obj, list):
                return [hide_sensitive(item, sensitive_keys) for item in obj]
            return obj

        return hide_sensitive(asdict(self))


# ==================== YAML Configuration Loading ====================

def load_yaml_config(path: Path) -> Dict[str, Any]:
    """Load configuration from YAML file"""
    if path.exists():
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}
    return {}


def get_prompt_templates() -> Dict[str, Any]:
    """Get idea generation prompt templates from configuration file"""
    return load_yaml_config(get_config_dir() / "prompt_templates.yaml")


# ==================== Global Configuration Instance ====================

_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get or create global configuration instance"""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config


def reload_config() -> AppConfig:
    """Reload configuration from environment"""
    global _config
    _config = AppConfig()
    return _config
