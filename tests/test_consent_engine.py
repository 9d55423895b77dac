"""
Tests for the consent lifecycle engine
"""

import pytest
from datetime import timedelta
from pydantic import ValidationError as PydanticValidationError

from consent_audit.config import ServiceSettings
from consent_audit.consent.engine import ConsentLifecycleEngine
from consent_audit.consent.models import AuditAction, ConsentQuery, ConsentStatus
from consent_audit.consent.storage import InMemoryConsentStore
from consent_audit.exceptions import InvalidStatusError, StoreError

from fakes import START, FakeClock, consent_record, consent_request


class TestRecordConsent:
    """Test consent creation"""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryConsentStore(clock=self.clock)
        self.settings = ServiceSettings(
            storage_backend="memory",
            data_controller="Acme Ltd",
            data_processor="Acme Consent Backend",
        )
        self.engine = ConsentLifecycleEngine(self.store, self.settings, clock=self.clock)

    def test_record_derives_compliance_fields(self):
        """New records carry retention, expiry and legal basis from policy"""
        record = self.engine.record_consent(consent_request())

        assert record.id.startswith("consent_")
        assert record.timestamp == START
        assert record.created_at == START
        assert record.updated_at == START
        assert record.data_retention_period == 2555
        assert record.expires_at == START + timedelta(days=2555)
        assert record.legal_basis == "Consent - website analytics and performance monitoring"
        assert record.consent_version == "1.0.0"
        assert record.data_controller == "Acme Ltd"
        assert record.data_processor == "Acme Consent Backend"
        assert record.ip_address == "127.0.0.1"
        assert record.is_anonymized is False
        assert record.anonymized_at is None
        assert self.store.get_record(record.id) == record

    def test_record_writes_single_created_entry(self):
        """Creation is audited exactly once, attributed to the subject"""
        record = self.engine.record_consent(consent_request())

        trail = self.store.get_audit_logs(record.id)

        assert len(trail) == 1
        entry = trail[0]
        assert entry.action == AuditAction.CREATED
        assert entry.performed_by == "test-user-123"
        assert entry.ip_address == "127.0.0.1"
        assert entry.user_agent == "Mozilla/5.0 (Test Browser)"
        assert entry.details == "Consent granted for analytics cookies"
        assert entry.timestamp == START

    def test_retention_follows_settings(self):
        settings = ServiceSettings(storage_backend="memory", consent_retention_days=30)
        engine = ConsentLifecycleEngine(self.store, settings, clock=self.clock)

        record = engine.record_consent(consent_request(consent_type="necessary"))

        assert record.expires_at == START + timedelta(days=30)
        assert record.legal_basis == "Legitimate interest - essential for website functionality"

    def test_non_positive_retention_rejected(self):
        with pytest.raises(PydanticValidationError):
            ServiceSettings(storage_backend="memory", consent_retention_days=0)


class TestConsentReads:
    """Test listing and audited lookups"""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryConsentStore(clock=self.clock)
        self.engine = ConsentLifecycleEngine(
            self.store, ServiceSettings(storage_backend="memory"), clock=self.clock
        )

    def test_get_consent_audits_access(self):
        record = self.engine.record_consent(consent_request())
        self.clock.advance(minutes=5)

        found = self.engine.get_consent(record.id)

        assert found == record
        trail = self.engine.get_audit_trail(record.id)
        assert [e.action for e in trail] == [AuditAction.ACCESSED, AuditAction.CREATED]
        accessed = trail[0]
        assert accessed.details == "Consent record accessed"
        assert accessed.performed_by == "system"
        assert accessed.ip_address == "system"
        assert accessed.user_agent == "system"

    def test_get_missing_consent_writes_nothing(self):
        assert self.engine.get_consent("consent_missing") is None
        assert self.engine.get_audit_trail("consent_missing") == []

    def test_list_total_ignores_pagination(self):
        for minutes in range(3):
            self.engine.record_consent(consent_request())
            self.clock.advance(minutes=1)

        records, total = self.engine.list_consents(ConsentQuery(limit=2))

        assert len(records) == 2
        assert total == 3
        assert records[0].timestamp > records[1].timestamp

    def test_compliance_config_is_frozen(self):
        config = self.engine.get_compliance_config()

        assert config.consent_retention_days == 2555
        assert config.anonymization_required is True
        with pytest.raises(PydanticValidationError):
            config.consent_retention_days = 1


class TestUpdateStatus:
    """Test consent status transitions"""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = InMemoryConsentStore(clock=self.clock)
        self.engine = ConsentLifecycleEngine(
            self.store, ServiceSettings(storage_backend="memory"), clock=self.clock
        )
        self.record = self.engine.record_consent(consent_request())

    def _update(self, consent_id, status):
        return self.engine.update_status(
            consent_id, status, actor_id="admin-1",
            ip_address="192.168.1.10", user_agent="AdminConsole/2.0",
        )

    def test_withdrawal(self):
        """Withdrawing is audited with its own action"""
        self.clock.advance(hours=1)

        updated = self._update(self.record.id, "withdrawn")

        assert updated.consent_status == ConsentStatus.WITHDRAWN
        assert updated.updated_at == START + timedelta(hours=1)
        assert updated.expires_at == self.record.expires_at
        latest = self.engine.get_audit_trail(self.record.id)[0]
        assert latest.action == AuditAction.WITHDRAWN
        assert latest.details == "Consent status changed to withdrawn"
        assert latest.performed_by == "admin-1"
        assert latest.ip_address == "192.168.1.10"
        assert latest.user_agent == "AdminConsole/2.0"

    @pytest.mark.parametrize("status, expected", [
        ("denied", ConsentStatus.DENIED),
        ("granted", ConsentStatus.GRANTED),
    ])
    def test_other_statuses_audited_as_update(self, status, expected):
        self.clock.advance(seconds=1)

        updated = self._update(self.record.id, status)

        assert updated.consent_status == expected
        assert self.engine.get_audit_trail(self.record.id)[0].action == AuditAction.UPDATED

    def test_invalid_status_leaves_record_untouched(self):
        with pytest.raises(InvalidStatusError):
            self._update(self.record.id, "approved")

        assert self.store.get_record(self.record.id) == self.record
        assert len(self.engine.get_audit_trail(self.record.id)) == 1

    def test_unknown_record_returns_none(self):
        assert self._update("consent_missing", "denied") is None
        assert self.engine.get_audit_trail("consent_missing") == []


class ReadOnlyStore(InMemoryConsentStore):
    """Store that can be read but rejects every record write"""

    def create_record(self, record):
        raise StoreError("Failed to create record", operation="create_record", reason="disk full")

    def update_record(self, consent_id, updates):
        raise StoreError("Failed to update record", operation="update_record", reason="disk full")


class TestStoreFailures:
    """Test that write failures reach the caller"""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = ReadOnlyStore(clock=self.clock)
        self.engine = ConsentLifecycleEngine(
            self.store, ServiceSettings(storage_backend="memory"), clock=self.clock
        )

    def test_record_consent_propagates_store_error(self):
        with pytest.raises(StoreError) as exc_info:
            self.engine.record_consent(consent_request())

        assert exc_info.value.details["operation"] == "create_record"
        assert self.store.list_records(ConsentQuery()) == []

    def test_update_status_propagates_store_error(self):
        record = consent_record()
        InMemoryConsentStore.create_record(self.store, record)

        with pytest.raises(StoreError):
            self.engine.update_status(record.id, "withdrawn", actor_id="admin-1",
                                      ip_address="10.0.0.2", user_agent="AdminConsole/2.0")

        assert self.store.get_record(record.id).consent_status == ConsentStatus.GRANTED
        assert self.engine.get_audit_trail(record.id) == []
