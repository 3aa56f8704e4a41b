from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from typing import List, Optional
from uuid import UUID

from api.src.db.database import get_db
from api.src.models.pipeline import PipelineRun, PipelineStep, Repository, Report
from api.src.models.run import PipelineRunResponse, RepositoryResponse, ReportResponse
from api.src.services.queue import get_run_status, cancel_run

router = APIRouter(tags=["runs"])

FINISHED_STATUSES = {"passed", "failed", "aborted"}

async def load_run(run_id: UUID, db: AsyncSession) -> PipelineRun:
    query = (
        select(PipelineRun)
        .options(selectinload(PipelineRun.steps))
        .where(PipelineRun.id == run_id)
    )
    result = await db.execute(query)
    run = result.scalar_one_or_none()

    if not run:
        raise HTTPException(status_code=404, detail="Pipeline run not found")

    return run

@router.get("/runs", response_model=List[PipelineRunResponse])
async def list_runs(
    limit: int = 20,
    offset: int = 0,
    status: Optional[str] = None,
    change_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """List pipeline runs, newest first."""
    query = (
        select(PipelineRun)
        .options(selectinload(PipelineRun.steps))
        .order_by(PipelineRun.created_at.desc())
    )

    if status:
        query = query.where(PipelineRun.status == status)
    if change_id:
        query = query.where(PipelineRun.change_id == change_id)

    query = query.limit(limit).offset(offset)

    result = await db.execute(query)
    return result.scalars().all()

@router.get("/runs/{run_id}", response_model=PipelineRunResponse)
async def get_run(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get a specific pipeline run."""
    return await load_run(run_id, db)

@router.get("/runs/{run_id}/status")
async def get_run_status_endpoint(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get real-time status of a pipeline run."""
    run = await load_run(run_id, db)

    # Get live status from Redis
    redis_status = await get_run_status(str(run_id))

    return {
        "run_id": str(run_id),
        "change_id": run.change_id,
        "db_status": run.status,
        "live_status": redis_status,
        "steps": [
            {
                "name": step.name,
                "status": step.status,
                "reason": step.reason,
                "order": step.step_order,
            }
            for step in sorted(run.steps, key=lambda s: s.step_order)
        ]
    }

@router.get("/runs/{run_id}/logs")
async def get_run_logs(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get captured output for all steps in a pipeline run."""
    query = (
        select(PipelineStep)
        .where(PipelineStep.run_id == run_id)
        .order_by(PipelineStep.step_order)
    )
    result = await db.execute(query)
    steps = result.scalars().all()

    if not steps:
        raise HTTPException(status_code=404, detail="Pipeline run not found")

    return {
        "run_id": str(run_id),
        "steps": [
            {
                "name": step.name,
                "status": step.status,
                "exit_code": step.exit_code,
                "stdout": step.stdout,
                "stderr": step.stderr,
                "duration_ms": step.duration_ms,
            }
            for step in steps
        ]
    }

@router.post("/runs/{run_id}/cancel")
async def cancel_run_endpoint(run_id: UUID, db: AsyncSession = Depends(get_db)):
    """Ask the runner to stop a queued or running pipeline."""
    run = await load_run(run_id, db)

    if run.status in FINISHED_STATUSES:
        raise HTTPException(status_code=409, detail=f"Run already {run.status}")

    await cancel_run(str(run_id))
    return {"run_id": str(run_id), "status": "cancelling"}

@router.get("/reports", response_model=ReportResponse)
async def get_report(change_id: str, db: AsyncSession = Depends(get_db)):
    """Get the current report for a change."""
    report = await db.get(Report, change_id)

    if not report:
        raise HTTPException(status_code=404, detail="Report not found")

    return report

@router.get("/repositories", response_model=List[RepositoryResponse])
async def list_repositories(db: AsyncSession = Depends(get_db)):
    """List all registered repositories."""
    query = select(Repository).order_by(Repository.created_at.desc())
    result = await db.execute(query)
    return result.scalars().all()

@router.get("/stats")
async def get_pipeline_stats(db: AsyncSession = Depends(get_db)):
    """Get pipeline statistics."""
    # Count runs by status
    status_query = (
        select(PipelineRun.status, func.count(PipelineRun.id))
        .group_by(PipelineRun.status)
    )
    result = await db.execute(status_query)
    status_counts = {row[0]: row[1] for row in result.all()}

    # Count total repositories
    repo_count_query = select(func.count(Repository.id))
    result = await db.execute(repo_count_query)
    repo_count = result.scalar()

    report_count_query = select(func.count(Report.change_id))
    result = await db.execute(report_count_query)
    report_count = result.scalar()

    return {
        "repositories": repo_count,
        "reports": report_count,
        "runs": status_counts,
        "total_runs": sum(status_counts.values()),
    }
