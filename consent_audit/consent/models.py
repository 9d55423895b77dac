"""
Consent data models for the Consent Audit Service
Cookie consent records, audit log entries and request/query schemas
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, IPvAnyAddress, field_validator

from ..constants import MAX_PAGE_LIMIT, SYSTEM_ACTOR
from ..utils.clock import utc_now, ensure_utc
from ..utils.ids import generate_consent_id, generate_audit_id


class ConsentType(str, Enum):
    """Cookie categories a subject can decide on"""
    NECESSARY = "necessary"
    FUNCTIONAL = "functional"
    ANALYTICS = "analytics"
    MARKETING = "marketing"
    ALL = "all"


class ConsentStatus(str, Enum):
    """Consent decision"""
    GRANTED = "granted"
    DENIED = "denied"
    WITHDRAWN = "withdrawn"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail"""
    CREATED = "created"
    UPDATED = "updated"
    WITHDRAWN = "withdrawn"
    ANONYMIZED = "anonymized"
    DELETED = "deleted"
    ACCESSED = "accessed"


class ConsentRecord(BaseModel):
    """One subject's decision for one consent category; immutable once built"""
    id: str = Field(default_factory=generate_consent_id)
    user_id: str = Field(..., description="Subject identifier")
    session_id: str = Field(..., description="Browser session identifier")
    current_org_id: Optional[str] = Field(default=None, description="Organisation the consent was given to")
    consent_type: ConsentType
    consent_status: ConsentStatus

    # Provenance
    timestamp: datetime
    ip_address: str
    user_agent: str

    # Compliance metadata
    consent_version: str
    data_retention_period: int = Field(..., description="Retention window in days")
    purpose: str
    legal_basis: str
    data_controller: str
    data_processor: str

    # Disclosure
    third_party_sharing: bool
    data_categories: List[str]
    processing_activities: List[str]

    # Lifecycle
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    is_anonymized: bool = False
    anonymized_at: Optional[datetime] = None

    # Changes go through the store, which builds a new instance
    model_config = {"frozen": True}

    @field_validator("timestamp", "created_at", "updated_at", "expires_at", "anonymized_at")
    @classmethod
    def _normalise_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def is_expired(self, now: datetime) -> bool:
        """Check whether the retention window has lapsed at ``now``"""
        return self.expires_at <= now


class AuditLog(BaseModel):
    """Immutable audit trail entry for a consent record"""
    id: str = Field(default_factory=generate_audit_id)
    consent_id: str
    action: AuditAction
    timestamp: datetime = Field(default_factory=utc_now)
    ip_address: str
    user_agent: str
    details: str
    performed_by: str

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def _normalise_time(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def system_entry(cls, consent_id: str, action: AuditAction, details: str,
                     timestamp: datetime) -> "AuditLog":
        """Audit entry for an action the service performed on its own"""
        return cls(
            consent_id=consent_id,
            action=action,
            timestamp=timestamp,
            ip_address=SYSTEM_ACTOR,
            user_agent=SYSTEM_ACTOR,
            details=details,
            performed_by=SYSTEM_ACTOR,
        )


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class ConsentRequest(BaseModel):
    """Inbound consent decision, validated at the API boundary"""
    user_id: str = Field(..., min_length=1, max_length=255)
    session_id: str = Field(..., min_length=1, max_length=255)
    current_org_id: Optional[str] = Field(default=None, min_length=1, max_length=255)
    consent_type: ConsentType
    consent_status: ConsentStatus
    ip_address: IPvAnyAddress
    user_agent: str = Field(..., min_length=1, max_length=1000)
    purpose: str = Field(..., min_length=1, max_length=500)
    data_categories: List[str] = Field(..., min_length=1)
    processing_activities: List[str] = Field(..., min_length=1)
    third_party_sharing: bool

    model_config = {"extra": "ignore"}


class ConsentQuery(BaseModel):
    """Filter and pagination for consent record listing.

    Every set field narrows the result; ``limit`` of None returns all matches.
    """
    user_id: Optional[str] = Field(default=None, min_length=1, max_length=255)
    session_id: Optional[str] = Field(default=None, min_length=1, max_length=255)
    current_org_id: Optional[str] = Field(default=None, min_length=1, max_length=255)
    consent_type: Optional[ConsentType] = None
    consent_status: Optional[ConsentStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1, le=MAX_PAGE_LIMIT)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalise_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def unpaginated(self) -> "ConsentQuery":
        """Same filters without offset/limit, for total counts"""
        return self.model_copy(update={"limit": None, "offset": 0})

    def matches(self, record: ConsentRecord) -> bool:
        """Check a record against every set filter field"""
        if self.user_id and record.user_id != self.user_id:
            return False
        if self.session_id and record.session_id != self.session_id:
            return False
        if self.current_org_id and record.current_org_id != self.current_org_id:
            return False
        if self.consent_type and record.consent_type != self.consent_type:
            return False
        if self.consent_status and record.consent_status != self.consent_status:
            return False
        if self.start_date and record.timestamp < self.start_date:
            return False
        if self.end_date and record.timestamp > self.end_date:
            return False
        return True


class StatusUpdateRequest(BaseModel):
    """Body of a consent status change; the status itself is checked by the engine"""
    status: str
    user_id: Optional[str] = None
