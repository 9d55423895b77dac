"""
Utility functions for the Consent Audit Service
ID generation, time handling and validation helpers
"""

from .ids import generate_consent_id, generate_audit_id
from .clock import utc_now, ensure_utc

__all__ = [
    "generate_consent_id",
    "generate_audit_id",
    "utc_now",
    "ensure_utc",
]
