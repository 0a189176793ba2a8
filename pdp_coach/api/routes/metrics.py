"""Prometheus scrape endpoint for run, step, cue and persistence counters."""
from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST

from pdp_coach.core.logging import get_logger
from pdp_coach.core.metrics import get_metrics

logger = get_logger(__name__)
router = APIRouter(tags=["metrics"])


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics():
    try:
        return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)
    except Exception as e:
        logger.error("Failed to export session metrics", exc_info=e)
        raise HTTPException(status_code=500, detail="Failed to generate metrics")
