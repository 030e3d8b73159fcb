"""Configuration management using Pydantic Settings."""

import logging
import tomllib
from pathlib import Path

import tomli_w
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from notesync.core.models import LOCAL_ID_PREFIX

logger = logging.getLogger(__name__)


class GeneralConfig(BaseSettings):
    """General application configuration."""

    log_level: str = "INFO"
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".notesync"
    )
    log_file_name: str = "notesync.log"
    log_file_max_bytes: int = 5 * 1024 * 1024
    log_file_backup_count: int = 3
    # Per-category level overrides, e.g. {"http": "WARNING"}
    log_overrides: dict[str, str] = Field(default_factory=dict)
    # Runtime metadata - not serialized to config file
    config_file: Path | None = Field(default=None, exclude=True)

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand user home directory in data directory path."""
        return Path(v).expanduser().resolve()


class RemoteConfig(BaseSettings):
    """Configuration for the remote note collection."""

    base_url: str | None = None
    collection_path: str = "/notes"
    timeout: float = 30.0
    api_user: str | None = None
    api_token: str | None = None

    @field_validator("base_url", mode="before")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate remote URL format."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("Remote URL must start with http:// or https://")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    def get_api_token(self) -> str | None:
        """
        Get the API token from keyring or config.

        Priority:
        1. System keyring (if api_user is configured)
        2. Config/environment variable (fallback)

        Returns:
            Token if found, None otherwise
        """
        if self.api_user:
            try:
                from notesync.utils.credentials import CredentialStore

                token = CredentialStore().get_api_token(self.api_user)
                if token:
                    logger.debug("Using API token from system keyring")
                    return token
            except Exception as e:
                logger.warning(f"Failed to retrieve API token from keyring: {e}")

        if self.api_token:
            logger.debug("Using API token from config/environment")
            return self.api_token

        return None


class SyncConfig(BaseSettings):
    """Configuration for the sync engine."""

    # Start a sync after every local edit when online
    auto_sync: bool = True
    # Keep changes whose push failed queued for the next cycle
    retain_failed_changes: bool = True
    local_id_prefix: str = LOCAL_ID_PREFIX
    connectivity_check_seconds: int = 30
    # 0 disables periodic syncing in watch mode
    auto_sync_minutes: int = 5

    @field_validator("local_id_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not v:
            raise ValueError("Local id prefix must not be empty")
        return v

    @field_validator("connectivity_check_seconds", "auto_sync_minutes")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Intervals must not be negative")
        return v


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="NOTESYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    @classmethod
    def load_from_file(cls, config_path: Path) -> "AppConfig":
        """Load configuration from a TOML file."""
        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            return cls()

        with open(config_path, "rb") as f:
            config_dict = tomllib.load(f)

        return cls(**config_dict)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to a TOML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)

        # Convert to dict, handling Path objects and excluding None values
        config_dict = self.model_dump(mode="json", exclude_none=True)

        with open(config_path, "wb") as f:
            tomli_w.dump(config_dict, f)

        logger.info(f"Configuration saved to {config_path}")

    def ensure_data_dir(self) -> None:
        """Ensure data directory exists."""
        self.general.data_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Data directory: {self.general.data_dir}")

    @property
    def notes_db_path(self) -> Path:
        """Path to the local note replica database."""
        return self.general.data_dir / "notes.db"

    @property
    def log_path(self) -> Path:
        return self.general.data_dir / "logs" / self.general.log_file_name

    @property
    def default_config_path(self) -> Path:
        """Get default configuration file path."""
        return self.general.data_dir / "config.toml"


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from file or create default."""
    if config_path is None:
        config = AppConfig()
        config_path = config.default_config_path

    if config_path.exists():
        config = AppConfig.load_from_file(config_path)
    else:
        config = AppConfig()

    config.general.config_file = config_path
    config.ensure_data_dir()
    return config
