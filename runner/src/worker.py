"""
Queue worker - pulls jobs from Redis and runs their pipelines.
"""

import asyncio
import json
import logging
import threading
from datetime import datetime
from typing import Optional, Dict, Any

import httpx
import redis
from sqlalchemy.exc import SQLAlchemyError

from runner.src.config import get_settings
from runner.src.models.step import EventKind, PipelineJob, PipelineRun, RunOutcome, StepResult
from runner.src.services.executor import execute_pipeline
from runner.src.services.github import CommentPublisher
from runner.src.services.report_builder import should_report, upsert_report
from runner.src.services.report_store import ReportStore, ReportStoreConflict, SqlReportStore
from runner.src.services.status_reporter import (
    get_redis_client,
    get_session_factory,
    is_cancelled,
    record_step_result,
    release_run,
    update_run_status,
)
from runner.src.services.step_runner import LaunchError, StepRunner
from runner.src.services.workspace import WorkspaceError, cleanup_workspace, prepare_workspace

logger = logging.getLogger(__name__)
settings = get_settings()

PIPELINE_QUEUE = "plangate:jobs"

def watch_for_cancel(run_id: str, cancel_event: threading.Event, done: threading.Event):
    """Set `cancel_event` once the api flags the run as cancelled."""
    client = get_redis_client()
    try:
        # Checks once right away, a run can be cancelled while still queued
        while True:
            try:
                if is_cancelled(client, run_id):
                    logger.warning(f"Run {run_id} was cancelled")
                    cancel_event.set()
                    return
            except redis.RedisError as e:
                logger.warning(f"Could not check cancellation for run {run_id}: {e}")
            if done.wait(settings.cancel_poll_interval):
                return
    finally:
        client.close()

def save_step_result(run_id: str, step_order: int, result: StepResult):
    """Persist a finished step; a database error must not stop the pipeline."""
    try:
        record_step_result(run_id, step_order, result)
    except SQLAlchemyError as e:
        logger.warning(f"Could not record step {step_order} of run {run_id}: {e}")

def publish_report(
    store: ReportStore,
    run: PipelineRun,
    job: PipelineJob,
    publisher: Optional[CommentPublisher],
):
    """
    Store the run's report and mirror it to the pull request.
    Reporting problems are logged and never change the run's outcome.
    """
    if not should_report(run, settings.report_partial_on_abort):
        logger.info(f"No report for run {job.run_id} ({run.completed_steps} steps completed)")
        return None

    try:
        report = upsert_report(
            store,
            run,
            excerpt_chars=settings.report_excerpt_chars,
            max_retries=settings.report_max_retries,
        )
    except ReportStoreConflict as e:
        logger.warning(f"Report for run {job.run_id} not stored: {e}")
        return None

    pr_number = job.repo_info.get("pr_number")
    if publisher is None or not job.comment or job.context.event_kind != EventKind.PULL_REQUEST or not pr_number:
        return report

    try:
        publisher.publish(store, report, str(job.repo_info["repo_full_name"]), int(pr_number))
    except httpx.HTTPError as e:
        logger.warning(f"Failed to publish report for run {job.run_id}: {e}")

    return report

def process_job(
    job_data: Dict[str, Any],
    runner: StepRunner,
    store: ReportStore,
    publisher: Optional[CommentPublisher] = None,
) -> Optional[PipelineRun]:
    """
    Run one queued job end to end.
    Returns the finished PipelineRun, or None when the workspace failed.
    """
    job = PipelineJob(**job_data)
    run_id = job.run_id

    logger.info(f"Starting run {run_id} ({job.pipeline}) for {job.context.change_id}")
    update_run_status(run_id, "running", started_at=datetime.utcnow())

    cancel_event = threading.Event()
    done = threading.Event()
    watcher = threading.Thread(
        target=watch_for_cancel,
        args=(run_id, cancel_event, done),
        daemon=True,
    )
    watcher.start()

    workdir = None
    try:
        try:
            workdir = prepare_workspace(job.repo_info, settings.workspace_root)
        except (WorkspaceError, OSError) as e:
            logger.error(f"Failed to prepare workspace for run {run_id}: {e}")
            update_run_status(run_id, RunOutcome.ABORTED.value, error=str(e), finished_at=datetime.utcnow())
            return None

        error = None
        try:
            run = execute_pipeline(
                job.steps,
                job.context,
                runner,
                workdir,
                default_timeout=settings.default_step_timeout,
                cancel_event=cancel_event,
                on_step_finished=lambda i, result: save_step_result(run_id, i, result),
            )
        except LaunchError as e:
            logger.error(f"Run {run_id} aborted: {e}")
            run = e.run
            error = str(e)

        update_run_status(run_id, run.outcome.value, error=error, finished_at=datetime.utcnow())
        publish_report(store, run, job, publisher)
        return run
    finally:
        done.set()
        if workdir:
            cleanup_workspace(workdir)
        release_run(str(job.repo_info.get("claim_key") or job.context.change_id), run_id)

def get_next_job(client) -> Optional[Dict[str, Any]]:
    """Pull next job from Redis queue."""
    result = client.brpop(PIPELINE_QUEUE, timeout=5)
    if result:
        _, job_data = result
        return json.loads(job_data)
    return None

async def worker_loop():
    """Main worker loop."""
    runner = StepRunner(kill_grace_seconds=settings.kill_grace_seconds)
    store = SqlReportStore(get_session_factory())
    publisher = None
    if settings.github_token:
        publisher = CommentPublisher.from_token(settings.github_token, settings.github_api_url)
    else:
        logger.warning("GITHUB_TOKEN not set, reports will not be posted to pull requests")

    client = get_redis_client()
    logger.info("Worker started, waiting for jobs...")

    try:
        while True:
            try:
                job = await asyncio.to_thread(get_next_job, client)

                if job:
                    run_id = job.get("run_id", "unknown")
                    logger.info(f"Received job for run {run_id}")

                    try:
                        await asyncio.to_thread(process_job, job, runner, store, publisher)
                    except Exception as e:
                        logger.exception(f"Failed to execute run {run_id}: {e}")

            except KeyboardInterrupt:
                logger.info("Worker shutting down...")
                break
            except Exception as e:
                logger.exception(f"Worker error: {e}")
                await asyncio.sleep(5)
    finally:
        client.close()
        if publisher is not None:
            publisher.close()

def run_worker():
    """Entry point for worker."""
    asyncio.run(worker_loop())
