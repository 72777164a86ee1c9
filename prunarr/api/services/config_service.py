import os
import copy
import json
import asyncio
from pathlib import Path
from typing import Any, Dict, Optional
import logging
from pydantic import BaseModel, Field

from prunarr.api.utils.encryption import (
    encrypt_sensitive_fields,
    decrypt_sensitive_fields,
    mask_secret,
)

logger = logging.getLogger(__name__)

MIN_EXECUTOR_INTERVAL = 5


class PrunarrConfig(BaseModel):
    # General settings
    instance_name: str = "Prunarr"
    media_root: str = "/media"

    # Sonarr / Radarr
    sonarr_url: Optional[str] = None
    sonarr_api_key: Optional[str] = None
    radarr_url: Optional[str] = None
    radarr_api_key: Optional[str] = None
    integration_timeout_sec: int = Field(30, ge=1)

    # Deletion executor
    deletion_executor_interval: int = Field(60, ge=1)
    min_executor_interval: int = Field(MIN_EXECUTOR_INTERVAL, ge=1)
    auto_start_executor: bool = False
    execution_workers: int = Field(3, ge=1, le=16)
    retry_failed: bool = False

    # Rule schedules
    rule_scheduler_enabled: bool = True
    rule_check_interval_sec: int = Field(60, ge=5)

    # Notifications (see NotificationService.initialize)
    notifications: Dict[str, Any] = Field(default_factory=lambda: {"enabled": False})

    @property
    def sonarr_configured(self) -> bool:
        return bool(self.sonarr_url and self.sonarr_api_key)

    @property
    def radarr_configured(self) -> bool:
        return bool(self.radarr_url and self.radarr_api_key)


class ConfigService:
    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or Path(os.getenv("CONFIG_PATH", "/data/config/config.json"))
        self.config: PrunarrConfig = PrunarrConfig()
        self._lock = asyncio.Lock()

    async def load_config(self) -> PrunarrConfig:
        """Load configuration from file and environment variables"""
        async with self._lock:
            if self.config_path.exists():
                try:
                    with open(self.config_path, 'r') as f:
                        data = json.load(f)
                    data = decrypt_sensitive_fields(data)
                    self.config = PrunarrConfig(**data)
                    logger.info(f"Loaded config from {self.config_path}")
                except (OSError, ValueError) as e:
                    logger.error(f"Failed to load config, using defaults: {e}")

            self._apply_env_overrides()
            await self._save_config_unlocked()

            return self.config

    async def _save_config_unlocked(self) -> None:
        """Save config without acquiring lock (internal use only)"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            encrypted_config = encrypt_sensitive_fields(self.config.model_dump())
            with open(self.config_path, 'w') as f:
                json.dump(encrypted_config, f, indent=2, default=str)
            os.chmod(self.config_path, 0o600)
            logger.info(f"Saved encrypted config to {self.config_path}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    async def save_config(self) -> None:
        """Save current configuration to file"""
        async with self._lock:
            await self._save_config_unlocked()

    async def update_config(self, updates: Dict[str, Any]) -> PrunarrConfig:
        """Update configuration with new values, validating the result as a whole"""
        async with self._lock:
            merged = self.config.model_dump()
            for key, value in updates.items():
                if key not in PrunarrConfig.model_fields:
                    continue
                # Masked values echoed back from get_public() keep the stored secret
                if key in ("sonarr_api_key", "radarr_api_key") and isinstance(value, str) and value.startswith("****"):
                    continue
                merged[key] = value
            self.config = PrunarrConfig(**merged)
            await self._save_config_unlocked()
            return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides to config"""
        as_bool = lambda x: x.lower() in ("1", "true", "yes")
        env_mapping = {
            "SONARR_URL": "sonarr_url",
            "SONARR_API_KEY": "sonarr_api_key",
            "RADARR_URL": "radarr_url",
            "RADARR_API_KEY": "radarr_api_key",
            "MEDIA_ROOT": "media_root",
            "DELETION_EXECUTOR_INTERVAL": ("deletion_executor_interval", int),
            "EXECUTION_WORKERS": ("execution_workers", int),
            "INTEGRATION_TIMEOUT_SEC": ("integration_timeout_sec", int),
            "RETRY_FAILED": ("retry_failed", as_bool),
            "AUTO_START_EXECUTOR": ("auto_start_executor", as_bool),
        }

        for env_key, config_key in env_mapping.items():
            env_value = os.getenv(env_key)
            if env_value is not None:
                if isinstance(config_key, tuple):
                    attr_name, converter = config_key
                    try:
                        setattr(self.config, attr_name, converter(env_value))
                    except ValueError as e:
                        logger.warning(f"Failed to convert env var {env_key}: {e}")
                else:
                    setattr(self.config, config_key, env_value)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key"""
        return getattr(self.config, key, default)

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration as dictionary"""
        return self.config.model_dump()

    def get_public(self) -> Dict[str, Any]:
        """Configuration with credentials masked, for API responses"""
        data = copy.deepcopy(self.config.model_dump())
        for key in ("sonarr_api_key", "radarr_api_key"):
            data[key] = mask_secret(data.get(key))
        webhook = (data.get("notifications") or {}).get("webhook") or {}
        for endpoint in webhook.get("endpoints", []):
            if endpoint.get("secret"):
                endpoint["secret"] = mask_secret(endpoint["secret"])
        return data
