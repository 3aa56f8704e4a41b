from api.src.models.pipeline import Repository, PipelineRun, PipelineStep, Report
from api.src.models.run import (
    PipelineRunResponse,
    StepResponse,
    RepositoryResponse,
    ReportResponse,
)
from api.src.models.trigger import EventKind, TriggerContext

__all__ = [
    "Repository",
    "PipelineRun",
    "PipelineStep",
    "Report",
    "PipelineRunResponse",
    "StepResponse",
    "RepositoryResponse",
    "ReportResponse",
    "EventKind",
    "TriggerContext",
]
