"""
Pipeline executor - runs an ordered list of steps with gating.
"""

import logging
import threading
from typing import Callable, Optional, Sequence

from runner.src.models.step import (
    PipelineRun,
    RunOutcome,
    StepConfig,
    StepReason,
    StepResult,
    StepStatus,
    TriggerContext,
)
from runner.src.services.step_runner import LaunchError, StepRunner

logger = logging.getLogger(__name__)

StepCallback = Callable[[int, StepResult], None]

class PipelineConfigError(Exception):
    """Raised when a step list cannot be executed as given."""
    pass

def check_unique_names(steps: Sequence[StepConfig]):
    seen = set()
    for step in steps:
        if step.name in seen:
            raise PipelineConfigError(f"Duplicate step name '{step.name}'")
        seen.add(step.name)

def execute_pipeline(
    steps: Sequence[StepConfig],
    context: TriggerContext,
    runner: StepRunner,
    workdir: str,
    default_timeout: float,
    cancel_event: Optional[threading.Event] = None,
    on_step_finished: Optional[StepCallback] = None,
) -> PipelineRun:
    """
    Execute steps in order and return the finished PipelineRun.

    Every step gets exactly one result. Steps after a failed gating step,
    after cancellation or after a launch error are recorded as skipped.
    A LaunchError is re-raised with the partial run attached as `.run`.
    """
    check_unique_names(steps)

    run = PipelineRun(context=context)
    logger.info(f"Starting pipeline for {context.change_id} with {len(steps)} steps")

    def record(index: int, result: StepResult):
        run.results.append(result)
        if on_step_finished is not None:
            on_step_finished(index, result)

    def skip_rest(start: int, reason: StepReason):
        for j in range(start, len(steps)):
            record(j, StepResult.skipped(steps[j].name, reason))

    for i, step in enumerate(steps):
        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Run for {context.change_id} cancelled before step {step.name}")
            skip_rest(i, StepReason.CANCELLED)
            run.outcome = RunOutcome.ABORTED
            return run

        if not step.should_run(context):
            logger.info(f"Step {i} ({step.name}) skipped, condition not met")
            record(i, StepResult.skipped(step.name, StepReason.CONDITION))
            continue

        timeout = step.timeout if step.timeout is not None else default_timeout

        try:
            result = runner.run(step, workdir, context, timeout, cancel_event)
        except LaunchError as e:
            logger.error(f"Step {i} ({step.name}) could not be launched: {e.message}")
            skip_rest(i, StepReason.CANCELLED)
            run.outcome = RunOutcome.ABORTED
            e.run = run
            raise

        record(i, result)

        if result.reason == StepReason.CANCELLED:
            skip_rest(i + 1, StepReason.CANCELLED)
            run.outcome = RunOutcome.ABORTED
            return run

        if result.status == StepStatus.FAILED:
            logger.error(f"Step {i} ({step.name}) failed")
            if step.halt_on_failure:
                skip_rest(i + 1, StepReason.HALTED)
                break
        else:
            logger.info(f"Step {i} ({step.name}) succeeded")

    if any(r.status == StepStatus.FAILED for r in run.results):
        run.outcome = RunOutcome.FAILED
    else:
        run.outcome = RunOutcome.PASSED

    logger.info(f"Pipeline for {context.change_id} finished with outcome: {run.outcome.value}")
    return run
