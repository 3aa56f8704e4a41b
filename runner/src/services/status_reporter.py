"""
Report pipeline and step status to database and Redis.
"""

import logging
from datetime import datetime
from functools import lru_cache
from typing import Optional

import redis
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from runner.src.config import get_settings
from runner.src.models.step import StepResult

logger = logging.getLogger(__name__)
settings = get_settings()

PIPELINE_STATUS = "plangate:status"
ACTIVE_RUNS = "plangate:active"
CANCELLED_PREFIX = "plangate:cancelled:"

@lru_cache()
def get_session_factory() -> sessionmaker:
    """Sync database connection for the runner."""
    engine = create_engine(settings.database_url, pool_pre_ping=True)
    return sessionmaker(bind=engine)

def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.redis_url, decode_responses=True)

def update_run_status(
    run_id: str,
    status: str,
    error: Optional[str] = None,
    started_at: Optional[datetime] = None,
    finished_at: Optional[datetime] = None,
):
    """Update pipeline run status in database and Redis."""
    from runner.src.models.db import PipelineRun

    with get_session_factory()() as session:
        values = {"status": status, "updated_at": datetime.utcnow()}

        if error is not None:
            values["error"] = error
        if started_at:
            values["started_at"] = started_at
        if finished_at:
            values["finished_at"] = finished_at

        session.execute(
            update(PipelineRun)
            .where(PipelineRun.id == run_id)
            .values(**values)
        )
        session.commit()

    client = get_redis_client()
    try:
        client.hset(PIPELINE_STATUS, run_id, status)
    finally:
        client.close()

    logger.info(f"Updated run {run_id} status to {status}")

def record_step_result(run_id: str, step_order: int, result: StepResult):
    """Store a finished step's result."""
    from runner.src.models.db import PipelineStep

    with get_session_factory()() as session:
        session.execute(
            update(PipelineStep)
            .where(PipelineStep.run_id == run_id)
            .where(PipelineStep.step_order == step_order)
            .values(
                status=result.status.value,
                reason=result.reason.value if result.reason else None,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                duration_ms=result.duration_ms,
                updated_at=datetime.utcnow(),
            )
        )
        session.commit()
    logger.debug(f"Recorded step {step_order} of run {run_id}: {result.status.value}")

def cancel_key(run_id: str) -> str:
    return f"{CANCELLED_PREFIX}{run_id}"

def is_cancelled(client: redis.Redis, run_id: str) -> bool:
    return bool(client.exists(cancel_key(run_id)))

def release_run(claim_key: str, run_id: str):
    """Forget the run's cancellation flag, and its active slot if it still holds it."""
    client = get_redis_client()
    try:
        client.delete(cancel_key(run_id))
        if client.hget(ACTIVE_RUNS, claim_key) == run_id:
            client.hdel(ACTIVE_RUNS, claim_key)
    finally:
        client.close()
