"""
GitHub webhook endpoints.
"""

from fastapi import APIRouter, Request, HTTPException, Header, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Any, Dict, Optional
import logging

from api.src.config import get_settings
from api.src.db.database import get_db
from api.src.models.pipeline import Repository, PipelineRun, PipelineStep
from api.src.models.trigger import EventKind
from api.src.services.github import (
    verify_signature,
    parse_push_payload,
    parse_pull_request_payload,
    build_trigger_context,
    supersede_key,
    PULL_REQUEST_ACTIONS,
)
from api.src.services.pipeline_parser import get_pipeline_catalog
from api.src.services.queue import enqueue_pipeline_run, claim_change, cancel_run
from api.src.services.trigger_gate import select_pipeline

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

async def get_or_create_repository(webhook_data: Dict[str, Any], db: AsyncSession) -> Repository:
    repo_query = select(Repository).where(
        Repository.full_name == webhook_data["repo_full_name"]
    )
    result = await db.execute(repo_query)
    repository = result.scalar_one_or_none()

    if not repository:
        repository = Repository(
            name=webhook_data["repo_name"],
            full_name=webhook_data["repo_full_name"],
            clone_url=webhook_data["clone_url"],
        )
        db.add(repository)
        await db.flush()

    return repository

async def process_event(
    event_kind: EventKind,
    webhook_data: Dict[str, Any],
    db: AsyncSession,
):
    """Select a pipeline for the event, record the run and queue it."""

    if not webhook_data["commit_sha"]:
        logger.warning("No commit SHA in webhook payload")
        return {"status": "skipped", "reason": "No commit SHA"}

    context = build_trigger_context(event_kind, webhook_data)
    pipeline = select_pipeline(context, get_pipeline_catalog(), settings.default_branch)

    if pipeline is None:
        logger.info(f"No pipeline configured for {event_kind.value} to {context.target_ref}")
        return {"status": "skipped", "reason": "No pipeline configured for this event"}

    repository = await get_or_create_repository(webhook_data, db)

    # Create pipeline run
    pipeline_run = PipelineRun(
        repository_id=repository.id,
        change_id=context.change_id,
        event_kind=context.event_kind.value,
        source_ref=context.source_ref,
        target_ref=context.target_ref,
        commit_sha=webhook_data["commit_sha"],
        pipeline_name=pipeline.name,
        status="queued",
        triggered_by=webhook_data["sender"],
        config=pipeline.model_dump(mode="json"),
    )
    db.add(pipeline_run)
    await db.flush()

    # Create pipeline steps
    for i, step in enumerate(pipeline.steps):
        db.add(PipelineStep(
            run_id=pipeline_run.id,
            name=step.name,
            command=list(step.command),
            halt_on_failure=step.halt_on_failure,
            status="pending",
            step_order=i,
        ))

    await db.commit()

    run_id = str(pipeline_run.id)
    claim_key = supersede_key(context, webhook_data)
    previous_run = await claim_change(claim_key, run_id)
    if previous_run and settings.cancel_superseded_runs:
        logger.info(f"Run {run_id} supersedes {previous_run} for {claim_key}")
        await cancel_run(previous_run)

    # Enqueue for processing
    await enqueue_pipeline_run(
        run_id=run_id,
        pipeline=pipeline.name,
        comment=pipeline.comment,
        steps=pipeline.job_steps(),
        context=context,
        repo_info={
            "repo_full_name": webhook_data["repo_full_name"],
            "clone_url": webhook_data["clone_url"],
            "commit_sha": webhook_data["commit_sha"],
            "pr_number": webhook_data["pr_number"],
            "claim_key": claim_key,
        },
    )

    logger.info(f"Pipeline run {run_id} ({pipeline.name}) created and queued")

    return {
        "status": "queued",
        "run_id": run_id,
        "pipeline": pipeline.name,
        "change_id": context.change_id,
        "steps": len(pipeline.steps),
    }

@router.post("/github")
async def github_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
):
    """
    Receive GitHub webhook events.
    """
    # Get raw body for signature verification
    body = await request.body()

    if settings.github_webhook_secret and not x_hub_signature_256:
        raise HTTPException(status_code=401, detail="Missing signature")

    if x_hub_signature_256:
        if not verify_signature(body, x_hub_signature_256):
            raise HTTPException(status_code=401, detail="Invalid signature")

    # Parse JSON payload
    try:
        payload = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    # Handle different event types
    if x_github_event == "ping":
        return {"status": "pong", "message": "Webhook configured successfully"}

    if x_github_event == "push":
        webhook_data = parse_push_payload(payload)
        if webhook_data["deleted"]:
            return {"status": "skipped", "reason": "Branch deleted"}
        return await process_event(EventKind.PUSH, webhook_data, db)

    if x_github_event == "pull_request":
        webhook_data = parse_pull_request_payload(payload)
        if webhook_data["action"] not in PULL_REQUEST_ACTIONS:
            return {"status": "skipped", "reason": f"Action '{webhook_data['action']}' not handled"}
        return await process_event(EventKind.PULL_REQUEST, webhook_data, db)

    # Ignore other events
    return {
        "status": "ignored",
        "event": x_github_event,
        "message": f"Event type '{x_github_event}' not handled"
    }
