"""Shared fakes and builders for the consent audit tests."""

from __future__ import annotations

from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Optional

from consent_audit.consent.models import ConsentRecord, ConsentRequest


START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or START

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def consent_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "user_id": "test-user-123",
        "session_id": "test-session-456",
        "consent_type": "analytics",
        "consent_status": "granted",
        "ip_address": "127.0.0.1",
        "user_agent": "Mozilla/5.0 (Test Browser)",
        "purpose": "Website analytics and performance monitoring",
        "data_categories": ["usage_data", "device_info"],
        "processing_activities": ["analytics", "performance_monitoring"],
        "third_party_sharing": True,
    }
    payload.update(overrides)
    return payload


def consent_request(**overrides: Any) -> ConsentRequest:
    return ConsentRequest(**consent_payload(**overrides))


def consent_record(created_at: datetime = START, retention_days: int = 30,
                   **overrides: Any) -> ConsentRecord:
    """Build a stored-shape record directly, bypassing the engine."""
    data: Dict[str, Any] = {
        "user_id": "user-abcdefghijk",
        "session_id": "session-1",
        "consent_type": "marketing",
        "consent_status": "granted",
        "timestamp": created_at,
        "ip_address": "10.0.0.1",
        "user_agent": "TestAgent/1.0",
        "consent_version": "1.0.0",
        "data_retention_period": retention_days,
        "purpose": "Testing",
        "legal_basis": "Consent - targeted advertising and marketing",
        "data_controller": "Controller",
        "data_processor": "Processor",
        "third_party_sharing": False,
        "data_categories": ["usage_data"],
        "processing_activities": ["marketing"],
        "created_at": created_at,
        "updated_at": created_at,
        "expires_at": created_at + timedelta(days=retention_days),
    }
    data.update(overrides)
    return ConsentRecord(**data)
