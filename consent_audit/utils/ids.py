"""
ID generation utilities for the Consent Audit Service
Unique identifiers for consent records and audit log entries
"""

import uuid


def generate_consent_id() -> str:
    """Generate consent record ID"""
    return f"consent_{uuid.uuid4()}"


def generate_audit_id() -> str:
    """Generate audit log entry ID"""
    return f"audit_{uuid.uuid4()}"
