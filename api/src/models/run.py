from pydantic import BaseModel, ConfigDict
from typing import Optional, List
from datetime import datetime
from uuid import UUID

class StepBase(BaseModel):
    name: str
    command: List[str]
    halt_on_failure: bool = True

class StepResponse(StepBase):
    id: UUID
    status: str
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    step_order: int
    duration_ms: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

class PipelineRunBase(BaseModel):
    change_id: str
    event_kind: str
    source_ref: str
    target_ref: str
    commit_sha: str
    pipeline_name: str

class PipelineRunResponse(PipelineRunBase):
    id: UUID
    status: str
    error: Optional[str] = None
    triggered_by: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: datetime
    steps: List[StepResponse] = []

    model_config = ConfigDict(from_attributes=True)

class RepositoryResponse(BaseModel):
    id: UUID
    name: str
    full_name: str
    clone_url: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class ReportResponse(BaseModel):
    change_id: str
    body: str
    revision: int
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
