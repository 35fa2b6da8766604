"""
ORM models for the import system tables.

Destination tables are not modelled here: they belong to the collaborators
that consume validated rows and are reflected on demand by the destination
store.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from import_hub.db.session import Base


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


SYSTEM_TABLES = {"import_jobs", "import_errors", "import_templates", "job_queue"}


class ImportJob(Base):
    """Lifecycle and counters for one import."""
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(255), nullable=False, index=True)
    file_name = Column(String(512), nullable=False)
    file_type = Column(String(20), nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    target_table = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    total_records = Column(Integer, nullable=False, default=0)
    processed_records = Column(Integer, nullable=False, default=0)
    successful_records = Column(Integer, nullable=False, default=0)
    failed_records = Column(Integer, nullable=False, default=0)
    warning_records = Column(Integer, nullable=False, default=0)
    field_mapping = Column(JSON, nullable=True)
    validation_rules = Column(JSON, nullable=True)
    error_summary = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class ImportErrorRecord(Base):
    """One captured issue (validation or batch failure) for a job."""
    __tablename__ = "import_errors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    import_job_id = Column(
        String(36), ForeignKey("import_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    row_number = Column(Integer, nullable=False)
    field_name = Column(String(255), nullable=True)
    error_type = Column(String(50), nullable=False)
    error_message = Column(Text, nullable=False)
    raw_value = Column(Text, nullable=True)
    severity = Column(String(20), nullable=False, default="error")
    suggested_fix = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ImportTemplate(Base):
    """Saved source-header to target-field mapping."""
    __tablename__ = "import_templates"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    target_table = Column(String(255), nullable=False)
    field_mapping = Column(JSON, nullable=False)
    validation_rules = Column(JSON, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    usage_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class QueueTask(Base):
    """One deferred unit of asynchronous work."""
    __tablename__ = "job_queue"

    id = Column(String(36), primary_key=True, default=_new_id)
    type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    priority = Column(String(10), nullable=False, default="medium")
    # Numeric band so ordering does not depend on string collation.
    priority_rank = Column(Integer, nullable=False, default=2)
    payload = Column(JSON, nullable=False)
    result = Column(JSON, nullable=True)
    user_id = Column(String(255), nullable=False, index=True)
    progress = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_job_queue_pending", "status", "priority_rank", "created_at"),
    )
