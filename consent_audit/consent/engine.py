"""
Consent lifecycle engine for the Consent Audit Service
Creation, lookup and status transitions of consent records, each audited
"""

from datetime import timedelta
from typing import Any, List, Optional, Tuple
import structlog

from .models import (
    AuditAction,
    AuditLog,
    ConsentQuery,
    ConsentRecord,
    ConsentRequest,
    ConsentStatus,
)
from ..config import CompliancePolicy, ServiceSettings
from ..constants import LegalBasis, SYSTEM_ACTOR
from ..utils.clock import Clock, utc_now
from ..utils.ids import generate_consent_id
from ..utils.validators import validate_consent_status, sanitize_audit_message

logger = structlog.get_logger(__name__)


def derive_legal_basis(consent_type: Any) -> str:
    """Legal basis statement for a consent type; unknown types fall back to plain consent"""
    key = getattr(consent_type, "value", consent_type)
    if not isinstance(key, str):
        return LegalBasis.DEFAULT
    return LegalBasis.BY_TYPE.get(key, LegalBasis.DEFAULT)


class ConsentLifecycleEngine:
    """Core consent lifecycle engine.

    All reads and writes go through the injected store. The retention policy
    is captured from the settings once, when the engine is built.
    """

    def __init__(self, store, settings: ServiceSettings, clock: Optional[Clock] = None):
        self.store = store
        self.settings = settings
        self.policy: CompliancePolicy = settings.build_policy()
        self.clock = clock or utc_now

    def record_consent(self, request: ConsentRequest) -> ConsentRecord:
        """Persist a new consent decision and audit its creation"""
        now = self.clock()
        retention_days = self.policy.consent_retention_days

        record = ConsentRecord(
            id=generate_consent_id(),
            user_id=request.user_id,
            session_id=request.session_id,
            current_org_id=request.current_org_id,
            consent_type=request.consent_type,
            consent_status=request.consent_status,
            timestamp=now,
            ip_address=str(request.ip_address),
            user_agent=request.user_agent,
            consent_version=self.settings.consent_version,
            data_retention_period=retention_days,
            purpose=request.purpose,
            legal_basis=derive_legal_basis(request.consent_type),
            data_controller=self.settings.data_controller,
            data_processor=self.settings.data_processor,
            third_party_sharing=request.third_party_sharing,
            data_categories=list(request.data_categories),
            processing_activities=list(request.processing_activities),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=retention_days),
        )

        self.store.create_record(record)
        self.store.append_audit_log(AuditLog(
            consent_id=record.id,
            action=AuditAction.CREATED,
            timestamp=now,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            details=sanitize_audit_message(
                f"Consent {record.consent_status.value} for {record.consent_type.value} cookies"
            ),
            performed_by=record.user_id,
        ))

        logger.info("Recorded consent", consent_id=record.id, consent_type=record.consent_type.value,
                    consent_status=record.consent_status.value, expires_at=record.expires_at.isoformat())
        return record

    def list_consents(self, query: ConsentQuery) -> Tuple[List[ConsentRecord], int]:
        """Matching records newest first, plus the total ignoring pagination"""
        records = self.store.list_records(query)
        total = self.store.count_records(query.unpaginated())
        return records, total

    def get_consent(self, consent_id: str) -> Optional[ConsentRecord]:
        """Look up a record; a successful read is itself audited"""
        record = self.store.get_record(consent_id)
        if record is None:
            return None

        self.store.append_audit_log(AuditLog.system_entry(
            consent_id, AuditAction.ACCESSED, "Consent record accessed", self.clock(),
        ))
        return record

    def update_status(self, consent_id: str, new_status: Any, actor_id: str,
                      ip_address: str, user_agent: str) -> Optional[ConsentRecord]:
        """Change a record's consent status.

        Raises InvalidStatusError for anything but granted, denied or
        withdrawn. Returns None when the record does not exist; neither case
        writes an audit entry.
        """
        status = validate_consent_status(new_status)

        if self.store.get_record(consent_id) is None:
            return None

        self.store.update_record(consent_id, {"consent_status": status})

        action = AuditAction.WITHDRAWN if status == ConsentStatus.WITHDRAWN else AuditAction.UPDATED
        self.store.append_audit_log(AuditLog(
            consent_id=consent_id,
            action=action,
            timestamp=self.clock(),
            ip_address=ip_address,
            user_agent=user_agent,
            details=f"Consent status changed to {status.value}",
            performed_by=actor_id or SYSTEM_ACTOR,
        ))

        logger.info("Consent status changed", consent_id=consent_id, status=status.value,
                    performed_by=actor_id)
        return self.store.get_record(consent_id)

    def get_audit_trail(self, consent_id: str) -> List[AuditLog]:
        """Audit entries for a record, newest first"""
        return self.store.get_audit_logs(consent_id)

    def get_compliance_config(self) -> CompliancePolicy:
        """Retention policy in effect"""
        return self.policy
