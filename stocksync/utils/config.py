"""Configuration management using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class APIConfig(BaseModel):
    """Ledger store HTTP settings."""
    timeout: int = 30
    max_retries: int = 3
    retry_delay: int = 1
    exponential_backoff: bool = True


class MutationConfig(BaseModel):
    """Stock mutation settings."""
    max_conflict_retries: int = 3
    allowed_roles: List[str] = ["admin", "manager", "staff"]


class ScannerConfig(BaseModel):
    """Barcode capture settings."""
    debounce_seconds: float = 2.0
    formats: List[str] = ["code_128", "code_39", "ean_13", "ean_8", "upc_a", "upc_e"]
    recent_scans_limit: int = 5


class RealtimeConfig(BaseModel):
    """Change feed settings."""
    queue_size: int = 1000
    products_table: str = "products"
    activity_table: str = "activities"
    scans_table: str = "barcode_scans"


class NotificationConfig(BaseModel):
    """Notification fanout settings."""
    max_recent: int = 10


class LoggingFilesConfig(BaseModel):
    """Log file paths."""
    mutation: str = "logs/mutation.log"
    scan: str = "logs/scan.log"
    realtime: str = "logs/realtime.log"
    error: str = "logs/error.log"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_bytes: int = 10485760  # 10MB
    backup_count: int = 5
    files: LoggingFilesConfig = LoggingFilesConfig()


class YAMLConfig(BaseModel):
    """Configuration loaded from YAML file."""
    api: APIConfig = APIConfig()
    mutation: MutationConfig = MutationConfig()
    scanner: ScannerConfig = ScannerConfig()
    realtime: RealtimeConfig = RealtimeConfig()
    notifications: NotificationConfig = NotificationConfig()
    logging: LoggingConfig = LoggingConfig()


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # Ledger store settings
    store_backend: str = Field(default="memory", description="Ledger store backend (memory/rest)")
    store_url: str = Field(default="http://localhost:54321/rest/v1", description="Ledger store REST endpoint")
    store_api_key: Optional[str] = Field(default=None, description="Ledger store API key")

    # Session settings
    session_secret: str = Field(default="change-me", description="Secret used to sign session tokens")

    # Application settings
    environment: str = Field(default="development", description="Environment (development/production)")
    log_level: Optional[str] = Field(default=None, description="Override log level")
    port: int = Field(default=8000, description="Server port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STOCKSYNC_",
        case_sensitive=False,
        extra="ignore"
    )


class AppConfig:
    """Combined application configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        self.env = Settings()

        # Load YAML config
        config_path = config_path or Path(__file__).parent.parent.parent / "config" / "config.yml"
        if config_path.exists():
            with open(config_path, "r") as f:
                yaml_data = yaml.safe_load(f) or {}
                self.yaml = YAMLConfig(**yaml_data)
        else:
            self.yaml = YAMLConfig()

        # Override log level if specified in env
        if self.env.log_level:
            self.yaml.logging.level = self.env.log_level

    @property
    def api(self) -> APIConfig:
        return self.yaml.api

    @property
    def mutation(self) -> MutationConfig:
        return self.yaml.mutation

    @property
    def scanner(self) -> ScannerConfig:
        return self.yaml.scanner

    @property
    def realtime(self) -> RealtimeConfig:
        return self.yaml.realtime

    @property
    def notifications(self) -> NotificationConfig:
        return self.yaml.notifications

    @property
    def logging(self) -> LoggingConfig:
        return self.yaml.logging

    @property
    def is_production(self) -> bool:
        return self.env.environment.lower() == "production"


@lru_cache()
def get_config() -> AppConfig:
    """Get cached configuration instance."""
    return AppConfig()
