import time
from datetime import datetime, timezone

import psutil
from fastapi import APIRouter, Depends

from admin_gateway.api.deps import get_pipeline
from admin_gateway.core.error_handlers import create_success_response
from admin_gateway.pipeline import Pipeline

router = APIRouter()


@router.get("/cache-stats")
async def cache_stats(pipeline: Pipeline = Depends(get_pipeline)):
    """Hit/miss counters and size of the response cache."""
    return create_success_response(pipeline.cache.stats())


@router.get("/metrics")
async def get_metrics(pipeline: Pipeline = Depends(get_pipeline)):
    """
    Process and pipeline metrics.

    Returns:
        dict: Process memory/uptime plus cache, rate limiter and CSRF store sizes
    """
    process = psutil.Process()
    process_memory = process.memory_info().rss / 1024 / 1024  # MB
    uptime = time.time() - process.create_time()

    return create_success_response({
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "process": {
            "memory_mb": round(process_memory, 2),
            "uptime_seconds": round(uptime, 2),
            "cpu_percent": process.cpu_percent(interval=None),
        },
        "pipeline": {
            "cache": pipeline.cache.stats(),
            "rate_limit_windows": len(pipeline.rate_limiter),
            "security": pipeline.security.stats(),
        },
    })
