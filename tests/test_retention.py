"""
Tests for retention cleanup and compliance validation
"""

import pytest
from datetime import timedelta

from consent_audit.config import ServiceSettings
from consent_audit.consent.models import AuditAction
from consent_audit.consent.storage import InMemoryConsentStore
from consent_audit.exceptions import StoreError
from consent_audit.retention.validator import RetentionValidator

from fakes import START, FakeClock, consent_record


class FailingStore(InMemoryConsentStore):
    """Store whose reads and sweeps fail"""

    def list_records(self, query):
        raise StoreError("Failed to list records", operation="list_records", reason="disk on fire")

    def delete_expired(self, now):
        raise StoreError("Failed to delete expired", operation="delete_expired")


class TestPerformCleanup:
    """Test retention sweeps"""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryConsentStore(clock=self.clock)
        policy = ServiceSettings(storage_backend="memory", consent_retention_days=30).build_policy()
        self.validator = RetentionValidator(self.store, policy, clock=self.clock)

    def test_expired_records_are_deleted_not_anonymized(self):
        """Deletion runs first, so nothing expired is left to anonymize"""
        expired = consent_record(retention_days=1)
        live = consent_record(retention_days=30)
        self.store.create_record(expired)
        self.store.create_record(live)
        self.clock.advance(days=2)

        result = self.validator.perform_cleanup()

        assert result.deleted == 1
        assert result.anonymized == 0
        assert self.store.get_record(expired.id) is None
        assert self.store.get_record(live.id) == live
        assert [e.action for e in self.store.get_audit_logs(expired.id)] == [AuditAction.DELETED]

    def test_cleanup_is_idempotent(self):
        self.store.create_record(consent_record(retention_days=1))
        self.clock.advance(days=2)

        first = self.validator.perform_cleanup()
        second = self.validator.perform_cleanup()

        assert (first.deleted, first.anonymized) == (1, 0)
        assert (second.deleted, second.anonymized) == (0, 0)

    def test_explicit_reference_time(self):
        record = consent_record(retention_days=10)
        self.store.create_record(record)

        assert self.validator.perform_cleanup(now=START + timedelta(days=9)).deleted == 0
        assert self.validator.perform_cleanup(now=START + timedelta(days=10)).deleted == 1

    def test_reference_time_defaults_to_clock(self):
        """Without an explicit time the injected clock decides expiry"""
        record = consent_record(retention_days=10)
        self.store.create_record(record)
        self.clock.advance(days=10)

        assert self.validator.perform_cleanup(now=START).deleted == 0
        assert self.validator.validate_integrity().valid is False
        assert self.validator.validate_integrity(now=START).valid is True
        assert self.validator.perform_cleanup(now=None).deleted == 1

    def test_store_failure_propagates(self):
        validator = RetentionValidator(FailingStore(), self.validator.policy)

        with pytest.raises(StoreError):
            validator.perform_cleanup()


class TestValidateIntegrity:
    """Test compliance scans"""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryConsentStore(clock=self.clock)
        policy = ServiceSettings(storage_backend="memory", consent_retention_days=30).build_policy()
        self.validator = RetentionValidator(self.store, policy, clock=self.clock)

    def test_clean_store_is_valid(self):
        self.store.create_record(consent_record(retention_days=30))

        report = self.validator.validate_integrity()

        assert report.valid is True
        assert report.issues == []

    def test_expired_identifiable_record_reported(self):
        """Expired records are flagged until a cleanup removes them"""
        record = consent_record(retention_days=1)
        self.store.create_record(record)
        self.clock.advance(days=2)

        report = self.validator.validate_integrity()

        assert report.valid is False
        assert report.issues == [f"Record {record.id} has expired but is not anonymized"]
        assert self.store.get_record(record.id) == record

        self.validator.perform_cleanup()
        assert self.validator.validate_integrity().valid is True

    def test_anonymized_expired_record_not_reported(self):
        self.store.create_record(consent_record(retention_days=1))
        self.clock.advance(days=2)
        self.store.anonymize_expired(self.clock())

        assert self.validator.validate_integrity().valid is True

    def test_retention_over_limit_reported(self):
        record = consent_record(retention_days=365)
        self.store.create_record(record)

        report = self.validator.validate_integrity()

        assert report.valid is False
        assert report.issues == [f"Record {record.id} has retention period exceeding compliance limit"]

    def test_store_failure_reported_as_issue(self):
        validator = RetentionValidator(FailingStore(), self.validator.policy)

        report = validator.validate_integrity()

        assert report.valid is False
        assert len(report.issues) == 1
        assert report.issues[0].startswith("Database integrity check failed:")
