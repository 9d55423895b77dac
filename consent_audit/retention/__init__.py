"""
Retention module for the Consent Audit Service
Expiry sweeps and retention policy compliance checks
"""

from .validator import RetentionValidator, CleanupResult, IntegrityReport

__all__ = [
    "RetentionValidator",
    "CleanupResult",
    "IntegrityReport",
]
