from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
import redis.asyncio as redis

from api.src.db.database import get_db
from api.src.config import get_settings
from api.src.services.pipeline_parser import get_pipeline_catalog, PipelineConfigError
from api.src.services.queue import get_queue_length

settings = get_settings()

router = APIRouter(tags=["health"])

async def check_db(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
        return "healthy"
    except Exception as e:
        return f"unhealthy: {e}"

async def check_redis() -> str:
    try:
        client = redis.from_url(settings.redis_url)
        try:
            await client.ping()
        finally:
            await client.close()
        return "healthy"
    except Exception as e:
        return f"unhealthy: {e}"

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "plangate-api"}

@router.get("/health/db")
async def db_health_check(db: AsyncSession = Depends(get_db)):
    database = await check_db(db)
    status = "healthy" if database == "healthy" else "unhealthy"
    return {"status": status, "database": database}

@router.get("/health/redis")
async def redis_health_check():
    redis_status = await check_redis()
    status = "healthy" if redis_status == "healthy" else "unhealthy"
    return {"status": status, "redis": redis_status}

@router.get("/health/queue")
async def queue_health_check():
    try:
        return {"status": "healthy", "queue_length": await get_queue_length()}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}

@router.get("/health/pipelines")
async def pipelines_health_check():
    """Show which pipelines the catalog defines."""
    try:
        catalog = get_pipeline_catalog()
    except PipelineConfigError as e:
        return {"status": "unhealthy", "error": str(e)}

    return {
        "status": "healthy",
        "pipelines": {
            name: [step.name for step in pipeline.steps]
            for name, pipeline in catalog.items()
        },
    }

@router.get("/health/all")
async def full_health_check(db: AsyncSession = Depends(get_db)):
    """Combined health check for all services."""
    health = {
        "api": "healthy",
        "database": await check_db(db),
        "redis": await check_redis(),
        "queue_length": 0,
    }

    try:
        health["queue_length"] = await get_queue_length()
    except Exception:
        health["queue_length"] = None

    overall = "healthy" if all(
        v == "healthy" for k, v in health.items()
        if k != "queue_length"
    ) else "degraded"

    return {"status": overall, "services": health}
