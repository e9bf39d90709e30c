from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from constants import CALL_HISTORY_LIMIT
from schemas.history import CallHistoryResponse, OfflineMessagesResponse
from logging_config import get_logger

logger = get_logger(__name__)

history_router = APIRouter(prefix="/api", tags=["history"])

INTERNAL_ERROR = {"success": False, "error": "Internal server error"}


@history_router.get("/call-history", response_model=CallHistoryResponse)
async def get_call_history(request: Request):
    """Most recent call records, newest first, with aggregate statistics."""
    registry = request.app.state.registry
    try:
        records = await registry.call_history(CALL_HISTORY_LIMIT)
        stats = await registry.stats()
    except Exception as e:
        logger.error(f"Error getting call history: {e}", exc_info=True)
        return JSONResponse(status_code=500, content=INTERNAL_ERROR)
    logger.debug(f"Call history requested: {len(records)} records")
    return CallHistoryResponse(data=records, stats=stats)


@history_router.get("/offline-messages/{room}", response_model=OfflineMessagesResponse)
async def get_offline_messages(room: str, request: Request):
    """Messages queued for a room. Reading does not consume them."""
    registry = request.app.state.registry
    try:
        messages = await registry.pending_messages(room)
    except Exception as e:
        logger.error(f"Error getting offline messages for room {room}: {e}", exc_info=True)
        return JSONResponse(status_code=500, content=INTERNAL_ERROR)
    return OfflineMessagesResponse(data=messages)
