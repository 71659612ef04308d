"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import yaml
import os
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    environment: str = "development"
    debug: bool = True

    # API Settings
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Redis (realtime events)
    redis_url: str = "redis://localhost:6379"

    # Supabase (persistence)
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None

    # Voice provider
    retell_api_key: Optional[str] = None
    retell_base_url: Optional[str] = None

    # Backends: "supabase" | "memory", "redis" | "memory"
    storage_backend: str = "supabase"
    event_backend: str = "redis"

    # JWT verification for the tenant middleware
    jwt_secret: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


class DispatchSettings(BaseModel):
    """Dispatch tunables (dispatch.* in the YAML config)"""

    default_concurrent_call_limit: int = Field(default=20, ge=0)
    default_batch_size: int = Field(default=10, ge=1)
    inter_call_delay_seconds: float = Field(default=1.0, ge=0)
    stuck_row_timeout_minutes: int = Field(default=30, ge=1)
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    default_inbound_agent_id: str = "default-inbound-agent"
    default_timezone: str = "America/New_York"

    @classmethod
    def from_config(cls, config: "ConfigManager") -> "DispatchSettings":
        """Build from the dispatch block, ignoring unknown keys."""
        block = config.get("dispatch", {}) or {}
        known = {key: value for key, value in block.items() if key in cls.model_fields}
        return cls(**known)


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: Optional[str] = None, config_dir: Optional[Path] = None):
        self.env = env or os.getenv("ENVIRONMENT", "development")
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            env_config = self._load_yaml(env_path)
            self._deep_merge(self._config, env_config)

        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        """Load YAML file"""
        with open(path, 'r') as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Dict) -> None:
        """Replace ${VAR_NAME} with environment variable values"""
        for key, value in config.items():
            if isinstance(value, dict):
                self._substitute_env_vars(value)
            elif isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                config[key] = os.getenv(env_var, value)

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("dispatch.default_batch_size") -> 10
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value


_settings: Optional[Settings] = None
_dispatch_settings: Optional[DispatchSettings] = None


def get_settings() -> Settings:
    """Process-wide Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def get_dispatch_settings() -> DispatchSettings:
    """Process-wide DispatchSettings loaded from YAML."""
    global _dispatch_settings
    if _dispatch_settings is None:
        _dispatch_settings = DispatchSettings.from_config(ConfigManager())
    return _dispatch_settings
