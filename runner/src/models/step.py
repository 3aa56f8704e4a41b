"""
Step execution models.
"""

import shlex
from pydantic import BaseModel, ConfigDict, field_validator
from typing import List, Optional, Dict, Union
from enum import Enum

class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"

class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

class StepReason(str, Enum):
    EXIT_CODE = "exit_code"
    TIMEOUT = "timeout"
    CONDITION = "condition"
    HALTED = "halted"
    CANCELLED = "cancelled"

class RunOutcome(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    ABORTED = "aborted"

class TriggerContext(BaseModel):
    event_kind: EventKind
    source_ref: str
    target_ref: str
    change_id: str

    model_config = ConfigDict(frozen=True)

def condition_matches(when: Union[str, List[str]], context: TriggerContext) -> bool:
    """
    Evaluate a run-condition expression against a trigger context.
    Any matching term makes the step run.
    """
    terms = [when] if isinstance(when, str) else list(when)

    for term in terms:
        term = term.strip()
        if term == "always":
            return True
        if term == "never":
            continue
        if term in (EventKind.PUSH.value, EventKind.PULL_REQUEST.value):
            if context.event_kind.value == term:
                return True
            continue
        if term.startswith("target:"):
            if context.target_ref == term[len("target:"):]:
                return True
            continue
        if term.startswith("source:"):
            if context.source_ref == term[len("source:"):]:
                return True
            continue
        raise ValueError(f"Unknown run condition term: {term!r}")

    return False

class StepConfig(BaseModel):
    name: str
    command: List[str]
    when: Union[str, List[str]] = "always"
    halt_on_failure: bool = True
    timeout: Optional[int] = None
    env: Dict[str, str] = {}

    model_config = ConfigDict(frozen=True)

    @field_validator("command", mode="before")
    @classmethod
    def split_command(cls, value):
        if isinstance(value, str):
            return shlex.split(value)
        return value

    def should_run(self, context: TriggerContext) -> bool:
        return condition_matches(self.when, context)

    def render_command(self, context: TriggerContext) -> List[str]:
        """Substitute context placeholders into the command template."""
        values = {
            "change_id": context.change_id,
            "source_ref": context.source_ref,
            "target_ref": context.target_ref,
            "event_kind": context.event_kind.value,
        }
        rendered = []
        for arg in self.command:
            for key, value in values.items():
                arg = arg.replace("{" + key + "}", value)
            rendered.append(arg)
        return rendered

class StepResult(BaseModel):
    step_name: str
    status: StepStatus
    reason: Optional[StepReason] = None
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @classmethod
    def skipped(cls, step_name: str, reason: StepReason) -> "StepResult":
        return cls(step_name=step_name, status=StepStatus.SKIPPED, reason=reason)

class PipelineRun(BaseModel):
    context: TriggerContext
    results: List[StepResult] = []
    outcome: RunOutcome = RunOutcome.PASSED

    @property
    def completed_steps(self) -> int:
        return sum(1 for r in self.results if r.status != StepStatus.SKIPPED)

class Report(BaseModel):
    change_id: str
    body: str
    revision: int

class PipelineJob(BaseModel):
    run_id: str
    pipeline: str
    comment: bool = False
    steps: List[StepConfig]
    context: TriggerContext
    repo_info: Dict[str, Union[str, int, None]]
    queued_at: str
