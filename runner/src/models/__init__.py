from runner.src.models.step import (
    EventKind,
    StepStatus,
    StepReason,
    RunOutcome,
    TriggerContext,
    StepConfig,
    StepResult,
    PipelineRun,
    Report,
    PipelineJob,
    condition_matches,
)

__all__ = [
    "EventKind",
    "StepStatus",
    "StepReason",
    "RunOutcome",
    "TriggerContext",
    "StepConfig",
    "StepResult",
    "PipelineRun",
    "Report",
    "PipelineJob",
    "condition_matches",
]
