from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ValidationIssueInfo(BaseModel):
    row: int
    field: str
    message: str
    value: Any = None
    severity: str


class ValidationSummary(BaseModel):
    total_errors: int
    total_warnings: int
    errors_by_field: Dict[str, int] = Field(default_factory=dict)
    warnings_by_field: Dict[str, int] = Field(default_factory=dict)


class ValidationResultResponse(BaseModel):
    is_valid: bool
    errors: List[ValidationIssueInfo]
    warnings: List[ValidationIssueInfo]
    total_rows: int
    valid_rows: int
    summary: ValidationSummary


class ImportPreviewResponse(BaseModel):
    file_type: str
    target_table: str
    headers: List[str]
    total_rows: int
    preview: List[Dict[str, Any]]
    suggested_mapping: Dict[str, Optional[str]]
    mapping_source: str  # suggested, template


class ImportJobInfo(BaseModel):
    """Snapshot of an import job, as polled by progress views."""
    id: str
    user_id: str
    file_name: str
    file_type: str
    file_size: int
    target_table: str
    status: str  # pending, processing, completed, failed, cancelled
    total_records: int
    processed_records: int
    successful_records: int
    failed_records: int
    warning_records: int
    field_mapping: Optional[Dict[str, Optional[str]]] = None
    error_summary: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ImportJobResponse(BaseModel):
    """Response wrapper for a single import job."""
    success: bool
    job: ImportJobInfo


class ImportJobListResponse(BaseModel):
    """Response wrapper for a list of import jobs."""
    success: bool
    jobs: List[ImportJobInfo]
    total_count: int
    limit: int
    offset: int


class ImportErrorInfo(BaseModel):
    id: int
    row_number: int
    field_name: Optional[str] = None
    error_type: str
    error_message: str
    raw_value: Optional[str] = None
    severity: str
    suggested_fix: Optional[str] = None


class ImportErrorListResponse(BaseModel):
    success: bool
    job_id: str
    errors: List[ImportErrorInfo]


class ImportSubmissionResponse(BaseModel):
    success: bool
    mode: str  # direct, queued
    job: ImportJobInfo
    validation: ValidationResultResponse
    task_id: Optional[str] = None


class QueueTaskInfo(BaseModel):
    """Queue task as seen by pollers; the payload stays server-side."""
    id: str
    type: str
    status: str  # pending, processing, completed, failed
    priority: str
    user_id: str
    progress: int = 0
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class QueueTaskListResponse(BaseModel):
    success: bool
    tasks: List[QueueTaskInfo]


class QueueStatsResponse(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class QueueCleanupRequest(BaseModel):
    older_than_days: int = Field(default=7, ge=0)


class QueueCleanupResponse(BaseModel):
    success: bool
    removed: int


class ExportRequest(BaseModel):
    import_job_id: str
    user_id: str


class ImportTemplateCreate(BaseModel):
    user_id: str
    name: str = Field(min_length=1)
    target_table: str
    field_mapping: Dict[str, Optional[str]]
    description: Optional[str] = None
    is_public: bool = False


class ImportTemplateInfo(BaseModel):
    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    target_table: str
    field_mapping: Dict[str, Optional[str]]
    is_public: bool
    usage_count: int
    created_at: Optional[datetime] = None


class ImportTemplateListResponse(BaseModel):
    success: bool
    templates: List[ImportTemplateInfo]


class TargetTableInfo(BaseModel):
    name: str
    label: str
    fields: List[str]
    required_fields: List[str]


class TargetTablesResponse(BaseModel):
    tables: List[TargetTableInfo]
