import logging

from fastapi import APIRouter, BackgroundTasks

from rapport.api.schemas import BackfillRequest, BatchStatusResponse
from rapport.ingestion.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/batch", tags=["batch"])

# Global pipeline instance for status tracking
_pipeline: IngestionPipeline | None = None


def _get_pipeline() -> IngestionPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = IngestionPipeline()
    return _pipeline


@router.post("/backfill", response_model=BatchStatusResponse)
async def trigger_backfill(request: BackfillRequest, background_tasks: BackgroundTasks):
    """Index every stored message that has no index entry yet."""
    if _get_pipeline().progress.get("status") not in ("idle", "complete"):
        return BatchStatusResponse(**_get_pipeline().progress)

    background_tasks.add_task(_run_backfill, request.conversation_id, request.limit)

    return BatchStatusResponse(total=0, processed=0, failed=0, status="starting")


async def _run_backfill(conversation_id: str | None, limit: int | None):
    try:
        await _get_pipeline().backfill(conversation_id=conversation_id, limit=limit)
    except Exception:
        logger.exception("Backfill failed")


@router.get("/status", response_model=BatchStatusResponse)
async def get_status():
    """Check backfill progress."""
    return BatchStatusResponse(**_get_pipeline().progress)
