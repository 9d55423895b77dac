"""
Consent storage adapters for the Consent Audit Service
Persistence of consent records and their audit trail
"""

import contextlib
import json
import os
import threading
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import create_engine, Column, String, DateTime, Text, Boolean, Integer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Query
from sqlalchemy.pool import StaticPool

from .models import ConsentRecord, ConsentQuery, AuditLog, AuditAction
from ..config import ServiceSettings, StorageBackend
from ..constants import Anonymization, IMMUTABLE_RECORD_FIELDS
from ..exceptions import StoreError, ValidationError
from ..utils.clock import Clock, utc_now, ensure_utc

logger = structlog.get_logger(__name__)

Base = declarative_base()

CONSENT_RECORDS_FILE = "consent_records.json"
AUDIT_LOGS_FILE = "audit_logs.json"


# =============================================================================
# SHARED RECORD RULES
# =============================================================================

def merge_updates(record: ConsentRecord, updates: Dict[str, Any], now: datetime) -> ConsentRecord:
    """Merge partial fields into a record and bump ``updated_at``"""
    blocked = sorted(set(updates) & set(IMMUTABLE_RECORD_FIELDS))
    if blocked:
        raise ValidationError(
            f"Immutable consent record fields cannot be updated: {', '.join(blocked)}",
            field=blocked[0],
        )
    if record.is_anonymized and updates.get("is_anonymized") is False:
        raise ValidationError("Anonymized records cannot be restored", field="is_anonymized")

    data = record.model_dump()
    data.update(updates)
    data["updated_at"] = now
    return ConsentRecord.model_validate(data)


def anonymize_record(record: ConsentRecord, now: datetime) -> ConsentRecord:
    """Replace identifying fields with placeholders"""
    masked_user = record.user_id[:Anonymization.USER_ID_KEEP_CHARS]
    return record.model_copy(update={
        "user_id": f"{Anonymization.USER_ID_PREFIX}{masked_user}",
        "ip_address": Anonymization.PLACEHOLDER,
        "user_agent": Anonymization.PLACEHOLDER,
        "is_anonymized": True,
        "anonymized_at": now,
        "updated_at": now,
    })


def deletion_entry(consent_id: str, now: datetime) -> AuditLog:
    return AuditLog.system_entry(
        consent_id, AuditAction.DELETED,
        "Consent record deleted after retention period expired", now,
    )


def anonymization_entry(consent_id: str, now: datetime) -> AuditLog:
    return AuditLog.system_entry(
        consent_id, AuditAction.ANONYMIZED,
        "Consent record anonymized after retention period expired", now,
    )


def paginate(records: List[ConsentRecord], query: ConsentQuery) -> List[ConsentRecord]:
    """Sort newest first, then apply offset and limit"""
    ordered = sorted(records, key=lambda r: r.timestamp, reverse=True)
    ordered = ordered[query.offset:]
    if query.limit is not None:
        ordered = ordered[:query.limit]
    return ordered


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemoryConsentStore:
    """In-memory storage for testing.

    Mutations build the next state, hand it to ``_persist`` and only swap it
    in once that succeeded, so a failed flush leaves the previous state
    visible. Records go in and come out as copies.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now
        self._lock = threading.RLock()
        self._records: Dict[str, ConsentRecord] = {}
        self._audit_logs: List[AuditLog] = []

    def _persist(self, records: Dict[str, ConsentRecord], audit_logs: List[AuditLog]) -> None:
        """Durable backends flush the full snapshot here"""

    def _commit(self, records: Dict[str, ConsentRecord], audit_logs: List[AuditLog]) -> None:
        self._persist(records, audit_logs)
        self._records = records
        self._audit_logs = audit_logs

    def create_record(self, record: ConsentRecord) -> ConsentRecord:
        """Store a new consent record"""
        with self._lock:
            if record.id in self._records:
                raise StoreError("Consent record already exists", operation="create_record")
            records = dict(self._records)
            records[record.id] = record.model_copy(deep=True)
            self._commit(records, self._audit_logs)
        logger.info("Stored consent record", consent_id=record.id, consent_type=record.consent_type)
        return record

    def list_records(self, query: ConsentQuery) -> List[ConsentRecord]:
        with self._lock:
            matches = [r for r in self._records.values() if query.matches(r)]
        return [r.model_copy(deep=True) for r in paginate(matches, query)]

    def count_records(self, query: ConsentQuery) -> int:
        with self._lock:
            return sum(1 for r in self._records.values() if query.matches(r))

    def get_record(self, consent_id: str) -> Optional[ConsentRecord]:
        with self._lock:
            record = self._records.get(consent_id)
        return record.model_copy(deep=True) if record is not None else None

    def update_record(self, consent_id: str, updates: Dict[str, Any]) -> None:
        """Merge fields into an existing record; unknown ids are ignored"""
        with self._lock:
            existing = self._records.get(consent_id)
            if existing is None:
                logger.warning("Consent record not found for update", consent_id=consent_id)
                return
            records = dict(self._records)
            records[consent_id] = merge_updates(existing, updates, self.clock())
            self._commit(records, self._audit_logs)
        logger.info("Updated consent record", consent_id=consent_id, fields=sorted(updates))

    def append_audit_log(self, entry: AuditLog) -> AuditLog:
        with self._lock:
            self._commit(self._records, self._audit_logs + [entry])
        return entry

    def get_audit_logs(self, consent_id: str) -> List[AuditLog]:
        """Audit trail for one record, newest first"""
        with self._lock:
            entries = [e for e in self._audit_logs if e.consent_id == consent_id]
        return sorted(entries, key=lambda e: e.timestamp, reverse=True)

    def delete_expired(self, now: datetime) -> int:
        """Remove every record whose retention window has lapsed"""
        now = ensure_utc(now)
        with self._lock:
            expired = {r.id for r in self._records.values() if r.is_expired(now)}
            if not expired:
                return 0
            records = {k: v for k, v in self._records.items() if k not in expired}
            entries = [deletion_entry(consent_id, now) for consent_id in expired]
            self._commit(records, self._audit_logs + entries)
        logger.info("Deleted expired consent records", count=len(expired))
        return len(expired)

    def anonymize_expired(self, now: datetime) -> int:
        """Anonymize expired records that still carry identifying fields"""
        now = ensure_utc(now)
        with self._lock:
            targets = [
                r for r in self._records.values()
                if r.is_expired(now) and not r.is_anonymized
            ]
            if not targets:
                return 0
            records = dict(self._records)
            for record in targets:
                records[record.id] = anonymize_record(record, now)
            entries = [anonymization_entry(r.id, now) for r in targets]
            self._commit(records, self._audit_logs + entries)
        logger.info("Anonymized expired consent records", count=len(targets))
        return len(targets)

    def close(self) -> None:
        """Nothing to release"""


# =============================================================================
# JSON SNAPSHOT STORE
# =============================================================================

_records_adapter = TypeAdapter(List[ConsentRecord])
_audit_logs_adapter = TypeAdapter(List[AuditLog])


def _write_temp(path: str, payload: bytes) -> str:
    tmp = path + ".tmp"
    with open(tmp, "wb") as f:
        f.write(payload)
        f.flush()
        os.fsync(f.fileno())
    return tmp


def _atomic_write_all(files: List[Tuple[str, bytes]]) -> None:
    """Stage every file before replacing any of them.

    A failed write leaves all targets at their previous contents.
    """
    staged: List[Tuple[str, str]] = []
    try:
        for path, payload in files:
            staged.append((_write_temp(path, payload), path))
    except OSError:
        for tmp, _ in staged:
            with contextlib.suppress(OSError):
                os.remove(tmp)
        raise

    for tmp, path in staged:
        os.replace(tmp, path)


class JsonFileConsentStore(InMemoryConsentStore):
    """File-backed store writing complete JSON snapshots on every mutation"""

    def __init__(self, data_dir: str, clock: Optional[Clock] = None):
        super().__init__(clock=clock)
        self.data_dir = data_dir
        self.records_path = os.path.join(data_dir, CONSENT_RECORDS_FILE)
        self.audit_logs_path = os.path.join(data_dir, AUDIT_LOGS_FILE)
        os.makedirs(data_dir, exist_ok=True)
        self._load()

    def _load(self) -> None:
        try:
            if os.path.exists(self.records_path):
                with open(self.records_path, "rb") as f:
                    loaded = _records_adapter.validate_json(f.read())
                self._records = {r.id: r for r in loaded}
            if os.path.exists(self.audit_logs_path):
                with open(self.audit_logs_path, "rb") as f:
                    self._audit_logs = _audit_logs_adapter.validate_json(f.read())
        except (OSError, PydanticValidationError) as e:
            logger.error("Failed to load consent snapshots", data_dir=self.data_dir, error=str(e))
            raise StoreError("Could not load consent snapshots", operation="load", reason=str(e)) from e

        logger.info("Consent snapshots loaded", data_dir=self.data_dir,
                    records=len(self._records), audit_logs=len(self._audit_logs))

    def _persist(self, records: Dict[str, ConsentRecord], audit_logs: List[AuditLog]) -> None:
        try:
            _atomic_write_all([
                (self.records_path, _records_adapter.dump_json(list(records.values()), indent=2)),
                (self.audit_logs_path, _audit_logs_adapter.dump_json(audit_logs, indent=2)),
            ])
        except OSError as e:
            logger.error("Failed to write consent snapshots", data_dir=self.data_dir, error=str(e))
            raise StoreError("Could not write consent snapshots", operation="persist", reason=str(e)) from e


# =============================================================================
# SQL STORE
# =============================================================================

class ConsentRecordDB(Base):
    """SQLAlchemy model for consent records"""
    __tablename__ = "consent_records"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    session_id = Column(String, nullable=False, index=True)
    current_org_id = Column(String, index=True)
    consent_type = Column(String, nullable=False)
    consent_status = Column(String, nullable=False)

    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    ip_address = Column(String, nullable=False)
    user_agent = Column(Text, nullable=False)

    consent_version = Column(String, nullable=False)
    data_retention_period = Column(Integer, nullable=False)
    purpose = Column(Text, nullable=False)
    legal_basis = Column(String, nullable=False)
    data_controller = Column(String, nullable=False)
    data_processor = Column(String, nullable=False)

    third_party_sharing = Column(Boolean, nullable=False)
    data_categories = Column(Text, nullable=False)  # JSON list
    processing_activities = Column(Text, nullable=False)  # JSON list

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    is_anonymized = Column(Boolean, nullable=False, default=False)
    anonymized_at = Column(DateTime(timezone=True))


class AuditLogDB(Base):
    """SQLAlchemy model for audit log entries"""
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True)
    consent_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    ip_address = Column(String, nullable=False)
    user_agent = Column(Text, nullable=False)
    details = Column(Text, nullable=False)
    performed_by = Column(String, nullable=False)


class SQLConsentStore:
    """Storage adapter backed by a SQLAlchemy database"""

    def __init__(self, database_url: Optional[str] = None, clock: Optional[Clock] = None):
        # Default to SQLite for development
        self.database_url = database_url or "sqlite:///consent.db"
        self.clock = clock or utc_now
        self._lock = threading.RLock()

        engine_kwargs: Dict[str, Any] = {}
        if self.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(self.database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Create tables
        Base.metadata.create_all(bind=self.engine)

    def _to_db_model(self, record: ConsentRecord) -> ConsentRecordDB:
        row = ConsentRecordDB(id=record.id)
        self._write_row(row, record)
        return row

    def _write_row(self, row: ConsentRecordDB, record: ConsentRecord) -> None:
        row.user_id = record.user_id
        row.session_id = record.session_id
        row.current_org_id = record.current_org_id
        row.consent_type = record.consent_type.value
        row.consent_status = record.consent_status.value
        row.timestamp = record.timestamp
        row.ip_address = record.ip_address
        row.user_agent = record.user_agent
        row.consent_version = record.consent_version
        row.data_retention_period = record.data_retention_period
        row.purpose = record.purpose
        row.legal_basis = record.legal_basis
        row.data_controller = record.data_controller
        row.data_processor = record.data_processor
        row.third_party_sharing = record.third_party_sharing
        row.data_categories = json.dumps(record.data_categories)
        row.processing_activities = json.dumps(record.processing_activities)
        row.created_at = record.created_at
        row.updated_at = record.updated_at
        row.expires_at = record.expires_at
        row.is_anonymized = record.is_anonymized
        row.anonymized_at = record.anonymized_at

    def _from_db_model(self, row: ConsentRecordDB) -> ConsentRecord:
        return ConsentRecord(
            id=row.id,
            user_id=row.user_id,
            session_id=row.session_id,
            current_org_id=row.current_org_id,
            consent_type=row.consent_type,
            consent_status=row.consent_status,
            timestamp=row.timestamp,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            consent_version=row.consent_version,
            data_retention_period=row.data_retention_period,
            purpose=row.purpose,
            legal_basis=row.legal_basis,
            data_controller=row.data_controller,
            data_processor=row.data_processor,
            third_party_sharing=row.third_party_sharing,
            data_categories=json.loads(row.data_categories),
            processing_activities=json.loads(row.processing_activities),
            created_at=row.created_at,
            updated_at=row.updated_at,
            expires_at=row.expires_at,
            is_anonymized=row.is_anonymized,
            anonymized_at=row.anonymized_at,
        )

    def _audit_to_db_model(self, entry: AuditLog) -> AuditLogDB:
        return AuditLogDB(
            id=entry.id,
            consent_id=entry.consent_id,
            action=entry.action.value,
            timestamp=entry.timestamp,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            details=entry.details,
            performed_by=entry.performed_by,
        )

    def _audit_from_db_model(self, row: AuditLogDB) -> AuditLog:
        return AuditLog(
            id=row.id,
            consent_id=row.consent_id,
            action=row.action,
            timestamp=row.timestamp,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            details=row.details,
            performed_by=row.performed_by,
        )

    def _filtered(self, session, query: ConsentQuery) -> Query:
        q = session.query(ConsentRecordDB)
        if query.user_id:
            q = q.filter(ConsentRecordDB.user_id == query.user_id)
        if query.session_id:
            q = q.filter(ConsentRecordDB.session_id == query.session_id)
        if query.current_org_id:
            q = q.filter(ConsentRecordDB.current_org_id == query.current_org_id)
        if query.consent_type:
            q = q.filter(ConsentRecordDB.consent_type == query.consent_type.value)
        if query.consent_status:
            q = q.filter(ConsentRecordDB.consent_status == query.consent_status.value)
        if query.start_date:
            q = q.filter(ConsentRecordDB.timestamp >= query.start_date)
        if query.end_date:
            q = q.filter(ConsentRecordDB.timestamp <= query.end_date)
        return q

    def _failed(self, operation: str, error: SQLAlchemyError, **context: Any) -> StoreError:
        logger.error("Consent store operation failed", operation=operation, error=str(error), **context)
        return StoreError(f"Failed to {operation.replace('_', ' ')}", operation=operation, reason=str(error))

    def create_record(self, record: ConsentRecord) -> ConsentRecord:
        """Store a new consent record"""
        try:
            with self._lock, self.SessionLocal() as session:
                session.add(self._to_db_model(record))
                session.commit()
        except SQLAlchemyError as e:
            raise self._failed("create_record", e, consent_id=record.id) from e

        logger.info("Stored consent record", consent_id=record.id, consent_type=record.consent_type)
        return record

    def list_records(self, query: ConsentQuery) -> List[ConsentRecord]:
        try:
            with self._lock, self.SessionLocal() as session:
                q = self._filtered(session, query).order_by(ConsentRecordDB.timestamp.desc())
                if query.offset:
                    q = q.offset(query.offset)
                if query.limit is not None:
                    q = q.limit(query.limit)
                return [self._from_db_model(row) for row in q.all()]
        except SQLAlchemyError as e:
            raise self._failed("list_records", e) from e

    def count_records(self, query: ConsentQuery) -> int:
        try:
            with self._lock, self.SessionLocal() as session:
                return self._filtered(session, query).count()
        except SQLAlchemyError as e:
            raise self._failed("count_records", e) from e

    def get_record(self, consent_id: str) -> Optional[ConsentRecord]:
        """Get a specific consent record by ID"""
        try:
            with self._lock, self.SessionLocal() as session:
                row = session.query(ConsentRecordDB).filter_by(id=consent_id).first()
                if row:
                    return self._from_db_model(row)
                return None
        except SQLAlchemyError as e:
            raise self._failed("get_record", e, consent_id=consent_id) from e

    def update_record(self, consent_id: str, updates: Dict[str, Any]) -> None:
        """Merge fields into an existing record; unknown ids are ignored"""
        try:
            with self._lock, self.SessionLocal() as session:
                row = session.query(ConsentRecordDB).filter_by(id=consent_id).first()
                if not row:
                    logger.warning("Consent record not found for update", consent_id=consent_id)
                    return

                merged = merge_updates(self._from_db_model(row), updates, self.clock())
                self._write_row(row, merged)
                session.commit()
        except SQLAlchemyError as e:
            raise self._failed("update_record", e, consent_id=consent_id) from e

        logger.info("Updated consent record", consent_id=consent_id, fields=sorted(updates))

    def append_audit_log(self, entry: AuditLog) -> AuditLog:
        try:
            with self._lock, self.SessionLocal() as session:
                session.add(self._audit_to_db_model(entry))
                session.commit()
        except SQLAlchemyError as e:
            raise self._failed("append_audit_log", e, consent_id=entry.consent_id) from e
        return entry

    def get_audit_logs(self, consent_id: str) -> List[AuditLog]:
        """Audit trail for one record, newest first"""
        try:
            with self._lock, self.SessionLocal() as session:
                rows = (
                    session.query(AuditLogDB)
                    .filter_by(consent_id=consent_id)
                    .order_by(AuditLogDB.timestamp.desc())
                    .all()
                )
                return [self._audit_from_db_model(row) for row in rows]
        except SQLAlchemyError as e:
            raise self._failed("get_audit_logs", e, consent_id=consent_id) from e

    def delete_expired(self, now: datetime) -> int:
        """Remove every record whose retention window has lapsed"""
        now = ensure_utc(now)
        try:
            with self._lock, self.SessionLocal() as session:
                rows = session.query(ConsentRecordDB).filter(ConsentRecordDB.expires_at <= now).all()
                for row in rows:
                    session.add(self._audit_to_db_model(deletion_entry(row.id, now)))
                    session.delete(row)
                session.commit()
        except SQLAlchemyError as e:
            raise self._failed("delete_expired", e) from e

        logger.info("Deleted expired consent records", count=len(rows))
        return len(rows)

    def anonymize_expired(self, now: datetime) -> int:
        """Anonymize expired records that still carry identifying fields"""
        now = ensure_utc(now)
        try:
            with self._lock, self.SessionLocal() as session:
                rows = session.query(ConsentRecordDB).filter(
                    ConsentRecordDB.expires_at <= now,
                    ConsentRecordDB.is_anonymized.is_(False),
                ).all()
                for row in rows:
                    self._write_row(row, anonymize_record(self._from_db_model(row), now))
                    session.add(self._audit_to_db_model(anonymization_entry(row.id, now)))
                session.commit()
        except SQLAlchemyError as e:
            raise self._failed("anonymize_expired", e) from e

        logger.info("Anonymized expired consent records", count=len(rows))
        return len(rows)

    def close(self) -> None:
        self.engine.dispose()


def create_store(settings: ServiceSettings, clock: Optional[Clock] = None):
    """Build the record store selected by configuration"""
    if settings.storage_backend == StorageBackend.JSON:
        return JsonFileConsentStore(settings.data_dir, clock=clock)
    if settings.storage_backend == StorageBackend.MEMORY:
        return InMemoryConsentStore(clock=clock)
    return SQLConsentStore(settings.database_url, clock=clock)
