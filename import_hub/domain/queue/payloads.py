"""
Task variants carried by the queue.

Each queue task stores a payload tagged by ``type``; the tag selects both
the payload model and the processor that handles it.
"""
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class TaskType(str, Enum):
    IMPORT = "import"
    VALIDATION = "validation"
    EXPORT = "export"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PRIORITY_RANK = {
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}


class ImportTaskPayload(BaseModel):
    """Rows of an existing (pending) import job to run through the batch processor."""
    type: Literal["import"] = "import"
    import_job_id: str
    rows: List[Dict[str, Any]]
    field_mapping: Dict[str, Optional[str]]


class ValidationTaskPayload(BaseModel):
    """A dataset to validate off the request path."""
    type: Literal["validation"] = "validation"
    target_table: str
    headers: List[str]
    rows: List[Dict[str, Any]]
    field_mapping: Dict[str, Optional[str]]


class ExportTaskPayload(BaseModel):
    """Render an import job's error records as a downloadable report."""
    type: Literal["export"] = "export"
    import_job_id: str


TaskPayload = Annotated[
    Union[ImportTaskPayload, ValidationTaskPayload, ExportTaskPayload],
    Field(discriminator="type"),
]

_payload_adapter = TypeAdapter(TaskPayload)


def parse_payload(data: Mapping[str, Any]) -> Union[ImportTaskPayload, ValidationTaskPayload, ExportTaskPayload]:
    return _payload_adapter.validate_python(dict(data))
