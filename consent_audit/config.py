"""
Service configuration for the Consent Audit Service
Retention policy, data controller identity, storage backend and HTTP settings
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from .constants import DEFAULT_CORS_ORIGINS


class StorageBackend(str, Enum):
    """Supported record store backends"""
    SQL = "sql"
    JSON = "json"
    MEMORY = "memory"


class CompliancePolicy(BaseModel):
    """Retention policy in effect for the lifetime of the process.

    The boolean principles are reported in compliance responses; they are
    not enforced by the lifecycle code.
    """

    consent_retention_days: int = Field(..., gt=0)
    audit_log_retention_days: int = Field(..., gt=0)
    anonymization_required: bool = True
    data_minimization: bool = True
    purpose_limitation: bool = True
    storage_limitation: bool = True
    accuracy_requirement: bool = True
    security_measures: bool = True
    accountability: bool = True

    model_config = {"frozen": True}


class ServiceSettings(BaseSettings):
    """Consent audit service configuration settings"""

    # Storage settings
    storage_backend: StorageBackend = Field(default=StorageBackend.SQL)
    database_url: str = Field(default="sqlite:///consent.db")
    data_dir: str = Field(default="./data", description="Directory for JSON snapshots")

    # Retention policy
    consent_retention_days: int = Field(default=2555, gt=0)  # 7 years
    audit_log_retention_days: int = Field(default=2555, gt=0)
    anonymization_required: bool = Field(default=True)
    data_minimization: bool = Field(default=True)
    purpose_limitation: bool = Field(default=True)
    storage_limitation: bool = Field(default=True)
    accuracy_requirement: bool = Field(default=True)
    security_measures: bool = Field(default=True)
    accountability: bool = Field(default=True)

    # Data controller identity stamped on every record
    data_controller: str = Field(default="Redacto Cookie Consent")
    data_processor: str = Field(default="Redacto Cookie Consent Backend")
    consent_version: str = Field(default="1.0.0")

    # HTTP settings
    cors_origins: List[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5001)

    # Environment-specific overrides
    debug_mode: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    model_config = {"env_prefix": "CONSENT_AUDIT_", "case_sensitive": False, "frozen": True}

    def build_policy(self) -> CompliancePolicy:
        """Snapshot the retention policy section of the settings"""
        return CompliancePolicy(
            consent_retention_days=self.consent_retention_days,
            audit_log_retention_days=self.audit_log_retention_days,
            anonymization_required=self.anonymization_required,
            data_minimization=self.data_minimization,
            purpose_limitation=self.purpose_limitation,
            storage_limitation=self.storage_limitation,
            accuracy_requirement=self.accuracy_requirement,
            security_measures=self.security_measures,
            accountability=self.accountability,
        )


# Global configuration instance
_settings: Optional[ServiceSettings] = None


def get_settings() -> ServiceSettings:
    """Get the process-wide service settings, loading them on first use"""
    global _settings
    if _settings is None:
        _settings = ServiceSettings()
    return _settings
