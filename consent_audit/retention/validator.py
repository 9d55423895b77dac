"""
Retention enforcement and compliance validation

Runs the expiry sweeps over the record store and checks stored records
against the retention policy in effect.
"""

from datetime import datetime
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field

from ..config import CompliancePolicy
from ..consent.models import ConsentQuery
from ..utils.clock import Clock, utc_now, ensure_utc

logger = structlog.get_logger(__name__)


class CleanupResult(BaseModel):
    """Counts from one retention sweep"""
    deleted: int = 0
    anonymized: int = 0


class IntegrityReport(BaseModel):
    """Outcome of a compliance scan"""
    valid: bool
    issues: List[str] = Field(default_factory=list)


class RetentionValidator:
    """Retention sweeps and read-only compliance checks over a record store"""

    def __init__(self, store, policy: CompliancePolicy, clock: Optional[Clock] = None):
        self.store = store
        self.policy = policy
        self.clock = clock or utc_now

    def perform_cleanup(self, now: Optional[datetime] = None) -> CleanupResult:
        """
        Delete expired records, then anonymize whatever expired records remain.

        Deletion runs first, so a record whose retention window has fully
        lapsed is removed outright rather than anonymized and kept.

        Args:
            now: Reference time for expiry, defaults to the current time

        Returns:
            CleanupResult with the number of deleted and anonymized records

        Raises:
            StoreError: If either sweep cannot be persisted
        """
        now = ensure_utc(now) if now is not None else self.clock()

        deleted = self.store.delete_expired(now)
        anonymized = self.store.anonymize_expired(now)

        logger.info("Retention cleanup completed", deleted=deleted, anonymized=anonymized,
                    reference_time=now.isoformat())
        return CleanupResult(deleted=deleted, anonymized=anonymized)

    def validate_integrity(self, now: Optional[datetime] = None) -> IntegrityReport:
        """
        Report records that violate the retention policy.

        Flags records that are past expiry but still identifiable, and records
        whose retention period exceeds the configured limit. Nothing is
        corrected here. Store failures are reported as an issue instead of
        being raised.

        Args:
            now: Reference time for expiry, defaults to the current time

        Returns:
            IntegrityReport listing every violation found
        """
        now = ensure_utc(now) if now is not None else self.clock()
        issues: List[str] = []

        try:
            records = self.store.list_records(ConsentQuery())
        except Exception as e:
            logger.error("Integrity check could not read consent records", error=str(e))
            return IntegrityReport(valid=False, issues=[f"Database integrity check failed: {e}"])

        for record in records:
            if record.is_expired(now) and not record.is_anonymized:
                issues.append(f"Record {record.id} has expired but is not anonymized")

            if record.data_retention_period > self.policy.consent_retention_days:
                issues.append(f"Record {record.id} has retention period exceeding compliance limit")

        if issues:
            logger.warning("Consent integrity issues found", issue_count=len(issues))

        return IntegrityReport(valid=not issues, issues=issues)
