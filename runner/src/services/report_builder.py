"""
Render pipeline runs into one report per change and keep it up to date.
"""

import logging

from runner.src.models.step import (
    PipelineRun,
    Report,
    RunOutcome,
    StepReason,
    StepResult,
    StepStatus,
)
from runner.src.services.report_store import ReportStore, ReportStoreConflict

logger = logging.getLogger(__name__)

REPORT_MARKER = "<!-- plangate:report -->"

OUTCOME_TITLES = {
    RunOutcome.PASSED: "Passed",
    RunOutcome.FAILED: "Failed",
    RunOutcome.ABORTED: "Aborted",
}

SKIP_NOTES = {
    StepReason.CONDITION: "condition not met",
    StepReason.HALTED: "halted by an earlier failure",
    StepReason.CANCELLED: "run cancelled",
}

def describe_status(result: StepResult) -> str:
    if result.status == StepStatus.SKIPPED:
        note = SKIP_NOTES.get(result.reason)
        return f"Skipped ({note})" if note else "Skipped"

    seconds = result.duration_ms / 1000
    if result.status == StepStatus.SUCCESS:
        return f"Success ({seconds:.1f}s)"
    if result.reason == StepReason.TIMEOUT:
        return f"Failed (timeout after {seconds:.1f}s)"
    return f"Failed (exit code {result.exit_code}, {seconds:.1f}s)"

def excerpt(text: str, limit: int) -> str:
    """Keep the tail of the output, where errors usually are."""
    text = text.rstrip()
    if len(text) <= limit:
        return text
    return f"... ({len(text) - limit} characters truncated)\n" + text[-limit:]

def render_report(run: PipelineRun, excerpt_chars: int = 3000) -> str:
    """
    Render a run as report text. The first line is always the outcome.
    """
    context = run.context
    lines = [
        OUTCOME_TITLES[run.outcome],
        "",
        f"Change: `{context.change_id}` ({context.event_kind.value}, "
        f"`{context.source_ref}` -> `{context.target_ref}`)",
        "",
    ]

    for i, result in enumerate(run.results, start=1):
        lines.append(f"{i}. {result.step_name}: {describe_status(result)}")

    for result in run.results:
        if result.status == StepStatus.SKIPPED:
            continue
        output = "\n".join(part for part in (result.stdout.rstrip(), result.stderr.rstrip()) if part)
        if not output:
            continue
        lines.extend([
            "",
            f"#### {result.step_name}",
            "```",
            excerpt(output, excerpt_chars),
            "```",
        ])

    lines.extend(["", REPORT_MARKER])
    return "\n".join(lines) + "\n"

def should_report(run: PipelineRun, report_partial_on_abort: bool = True) -> bool:
    if run.outcome != RunOutcome.ABORTED:
        return True
    if run.completed_steps == 0:
        return False
    return report_partial_on_abort

def upsert_report(
    store: ReportStore,
    run: PipelineRun,
    excerpt_chars: int = 3000,
    max_retries: int = 5,
) -> Report:
    """
    Create or replace the report for the run's change id.

    Conflicting writes are retried with a fresh read, up to `max_retries`
    attempts, after which ReportStoreConflict propagates.
    """
    change_id = run.context.change_id
    body = render_report(run, excerpt_chars)

    for attempt in range(1, max_retries + 1):
        with store.lock(change_id):
            existing = store.get(change_id)
            current_revision = existing.revision if existing else 0
            report = Report(change_id=change_id, body=body, revision=current_revision + 1)
            try:
                saved = store.save(report, expected_revision=current_revision)
            except ReportStoreConflict:
                if attempt == max_retries:
                    raise
                logger.info(f"Report for {change_id} changed concurrently, retrying ({attempt}/{max_retries})")
                continue

        logger.info(f"Report for {change_id} stored at revision {saved.revision}")
        return saved
