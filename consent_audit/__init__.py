"""
Consent Audit Service
Records and audits cookie consent decisions for data-protection compliance
"""

__version__ = "1.0.0"

# Core exports
from .config import ServiceSettings, CompliancePolicy, StorageBackend, get_settings
from .exceptions import (
    ConsentAuditError, ValidationError, InvalidStatusError, RecordNotFoundError, StoreError
)

# Consent lifecycle
from .consent import (
    ConsentRecord, ConsentType, ConsentStatus, AuditAction, AuditLog,
    ConsentRequest, ConsentQuery, ConsentLifecycleEngine, derive_legal_basis,
    InMemoryConsentStore, JsonFileConsentStore, SQLConsentStore, create_store,
)

# Retention
from .retention import RetentionValidator, CleanupResult, IntegrityReport

__all__ = [
    # Config
    "ServiceSettings",
    "CompliancePolicy",
    "StorageBackend",
    "get_settings",

    # Errors
    "ConsentAuditError",
    "ValidationError",
    "InvalidStatusError",
    "RecordNotFoundError",
    "StoreError",

    # Consent
    "ConsentRecord",
    "ConsentType",
    "ConsentStatus",
    "AuditAction",
    "AuditLog",
    "ConsentRequest",
    "ConsentQuery",
    "ConsentLifecycleEngine",
    "derive_legal_basis",
    "InMemoryConsentStore",
    "JsonFileConsentStore",
    "SQLConsentStore",
    "create_store",

    # Retention
    "RetentionValidator",
    "CleanupResult",
    "IntegrityReport",
]
