"""
Consent management module for the Consent Audit Service
Cookie consent records, their audit trail and storage backends
"""

from .models import (
    ConsentRecord, ConsentType, ConsentStatus, AuditAction, AuditLog,
    ConsentRequest, ConsentQuery, StatusUpdateRequest,
)
from .engine import ConsentLifecycleEngine, derive_legal_basis
from .storage import InMemoryConsentStore, JsonFileConsentStore, SQLConsentStore, create_store

__all__ = [
    "ConsentRecord",
    "ConsentType",
    "ConsentStatus",
    "AuditAction",
    "AuditLog",
    "ConsentRequest",
    "ConsentQuery",
    "StatusUpdateRequest",
    "ConsentLifecycleEngine",
    "derive_legal_basis",
    "InMemoryConsentStore",
    "JsonFileConsentStore",
    "SQLConsentStore",
    "create_store",
]
