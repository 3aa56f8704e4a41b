"""
Redis queue service for pipeline jobs.
"""

import redis.asyncio as redis
import json
from typing import Dict, Any, List, Optional
from datetime import datetime

from api.src.config import get_settings
from api.src.models.trigger import TriggerContext

settings = get_settings()

PIPELINE_QUEUE = "plangate:jobs"
PIPELINE_STATUS = "plangate:status"
ACTIVE_RUNS = "plangate:active"
CANCELLED_PREFIX = "plangate:cancelled:"

async def get_redis_client() -> redis.Redis:
    """Get async Redis client."""
    return redis.from_url(settings.redis_url, decode_responses=True)

async def enqueue_pipeline_run(
    run_id: str,
    pipeline: str,
    comment: bool,
    steps: List[Dict[str, Any]],
    context: TriggerContext,
    repo_info: Dict[str, Any],
):
    """Add pipeline run to processing queue."""
    client = await get_redis_client()

    job = {
        "run_id": run_id,
        "pipeline": pipeline,
        "comment": comment,
        "steps": steps,
        "context": context.model_dump(mode="json"),
        "repo_info": repo_info,
        "queued_at": datetime.utcnow().isoformat(),
    }

    try:
        await client.lpush(PIPELINE_QUEUE, json.dumps(job))
        await client.hset(PIPELINE_STATUS, run_id, "queued")
    finally:
        await client.close()

def cancel_key(run_id: str) -> str:
    return f"{CANCELLED_PREFIX}{run_id}"

async def claim_change(claim_key: str, run_id: str) -> Optional[str]:
    """
    Make `run_id` the active run for a PR or branch.
    Returns the run it replaced, if any.
    """
    client = await get_redis_client()

    try:
        async with client.pipeline(transaction=True) as pipe:
            pipe.hget(ACTIVE_RUNS, claim_key)
            pipe.hset(ACTIVE_RUNS, claim_key, run_id)
            previous, _ = await pipe.execute()
        return previous
    finally:
        await client.close()

async def cancel_run(run_id: str):
    """Flag a run as cancelled; the runner stops it at its next check."""
    client = await get_redis_client()

    try:
        # Expires on its own if the run already finished and never clears it
        await client.set(cancel_key(run_id), "1", ex=settings.cancel_flag_ttl)
        await client.hset(PIPELINE_STATUS, run_id, "cancelling")
    finally:
        await client.close()

async def get_run_status(run_id: str) -> Optional[str]:
    """Get pipeline run status from Redis."""
    client = await get_redis_client()

    try:
        return await client.hget(PIPELINE_STATUS, run_id)
    finally:
        await client.close()

async def get_queue_length() -> int:
    """Get number of jobs in queue."""
    client = await get_redis_client()

    try:
        return await client.llen(PIPELINE_QUEUE)
    finally:
        await client.close()
