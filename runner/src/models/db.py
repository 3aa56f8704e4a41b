"""
Database models for the runner (sync version).
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text, Boolean
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()

class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    repository_id = Column(UUID(as_uuid=True))
    change_id = Column(String(255), nullable=False, index=True)
    event_kind = Column(String(50), nullable=False)
    source_ref = Column(String(255), nullable=False)
    target_ref = Column(String(255), nullable=False)
    commit_sha = Column(String(40), nullable=False)
    pipeline_name = Column(String(100), nullable=False)
    status = Column(String(50), default="queued")
    error = Column(Text)
    triggered_by = Column(String(255))
    config = Column(JSONB)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

class PipelineStep(Base):
    __tablename__ = "pipeline_steps"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    run_id = Column(UUID(as_uuid=True), ForeignKey("pipeline_runs.id"))
    name = Column(String(255), nullable=False)
    command = Column(JSONB, nullable=False)
    halt_on_failure = Column(Boolean, default=True)
    status = Column(String(50), default="pending")
    reason = Column(String(50))
    exit_code = Column(Integer)
    step_order = Column(Integer, nullable=False)
    stdout = Column(Text)
    stderr = Column(Text)
    duration_ms = Column(Integer)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

class ReportRecord(Base):
    __tablename__ = "reports"

    change_id = Column(String(255), primary_key=True)
    body = Column(Text, nullable=False)
    revision = Column(Integer, nullable=False)
    comment_id = Column(String(64))
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
