from __future__ import annotations

import base64
import binascii
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENCRYPTION_KEY_BYTES = 32
_PROD_ENV_NAMES = {"prod", "production"}


class Settings(BaseSettings):
    app_name: str = Field(default="HostCraft")
    app_env: str = Field(default="dev")
    app_version: str = Field(default="0.1.0")

    database_url: str = Field(default="")

    log_level: str = Field(default="INFO")
    log_file: str = Field(default="data/hostcraft.log")
    log_db_queries: bool = Field(default=False)
    log_db_query_params: bool = Field(default=False)
    log_sql_max_length: int = Field(default=400)

    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8000)

    encryption_key: str = Field(default="")

    ssh_connect_timeout_seconds: float = Field(default=20.0)
    ssh_command_timeout_seconds: float = Field(default=600.0)
    ssh_pool_max_idle_per_host: int = Field(default=2)
    ssh_pool_idle_ttl_seconds: int = Field(default=300)

    workload_lease_ttl_seconds: int = Field(default=900)

    app_network_name: str = Field(default="hostcraft-apps")
    platform_network_name: str = Field(default="hostcraft-platform")

    health_default_interval_seconds: int = Field(default=60)
    health_default_timeout_seconds: int = Field(default=10)
    health_max_consecutive_failures: int = Field(default=3)
    health_check_retention_days: int = Field(default=14)

    backup_root: str = Field(default="/var/hostcraft/backups")
    restore_scratch_root: str = Field(default="/tmp")
    backup_retention_days: int = Field(default=30)

    s3_bucket: str = Field(default="")
    s3_region: str = Field(default="us-east-1")
    s3_endpoint_url: str = Field(default="")
    s3_access_key: str = Field(default="")
    s3_secret_key: str = Field(default="")
    s3_prefix: str = Field(default="hostcraft")

    event_retention_days: int = Field(default=30)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() in _PROD_ENV_NAMES

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        if not self.database_url:
            raise ValueError("DATABASE_URL must be set in .env or environment variables.")
        issues: list[str] = []
        if self.encryption_key:
            try:
                decoded = base64.b64decode(self.encryption_key, validate=True)
            except (binascii.Error, ValueError):
                decoded = b""
            if len(decoded) != ENCRYPTION_KEY_BYTES:
                issues.append("ENCRYPTION_KEY must be a base64 encoded 256-bit key.")
        elif self.is_production:
            issues.append("ENCRYPTION_KEY must be set in production.")
        if self.backup_retention_days < 0:
            issues.append("BACKUP_RETENTION_DAYS must not be negative.")
        if self.workload_lease_ttl_seconds <= 0:
            issues.append("WORKLOAD_LEASE_TTL_SECONDS must be positive.")
        if issues:
            raise ValueError(" ".join(issues))
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
