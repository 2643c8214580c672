# opsguard/config/settings.py

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class GovernanceSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_name: str = "opsguard"
    environment: Literal["dev", "test", "prod"] = "dev"
    debug: bool = False
    version: str = "0.1.0"

    # --- Storage ---
    storage_backend: Literal["memory", "file", "database"] = "file"
    data_dir: str = ".data"
    # Ledger lives outside data_dir so agent-writable state never shares a path with it.
    audit_dir: str = ".audit"
    database_url: str = "sqlite+aiosqlite:///./.data/governance.db"

    # --- Policy / approvals ---
    approval_ttl_minutes: int = Field(30, ge=1)
    audit_write_timeout_seconds: float = Field(2.0, gt=0)
    anomaly_check_timeout_seconds: float = Field(1.0, gt=0)
    anomaly_lookback_minutes: int = Field(15, ge=1)
    audit_log_max_entries: int = Field(10000, ge=1)

    # --- Signals ---
    guardrail_block_threshold: int = Field(3, ge=1)
    guardrail_approve_threshold: int = Field(5, ge=1)
    trust_half_life_hours: float = Field(72.0, gt=0)
    trust_auto_approve_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    rate_spike_tolerance: float = Field(3.0, gt=0)
    strict_content_sanitization: bool = True

    # --- Vault ---
    vault_master_key: Optional[SecretStr] = None
    vault_kdf_iterations: int = Field(480000, ge=1)

    # --- Observability ---
    enable_metrics: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


@lru_cache
def get_settings() -> GovernanceSettings:
    return GovernanceSettings()
