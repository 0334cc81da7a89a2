"""Real-time download progress over WebSocket."""

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.dependencies import get_relay
from app.models.schemas import ProgressToken
from app.services import logger
from app.services.progress import ProgressRelay, mint_download_id


router = APIRouter(tags=["progress"])


@router.post("/api/progress/token", response_model=ProgressToken)
async def mint_progress_token() -> ProgressToken:
    """Hand out a server-generated downloadId so clients never share one."""
    return ProgressToken(downloadId=mint_download_id())


@router.websocket("/ws/progress/{download_id}")
async def progress_websocket(
    websocket: WebSocket,
    download_id: str,
    relay: ProgressRelay = Depends(get_relay),
):
    """Push ``{percent, isBatch?}`` events for one download until it reaches 100."""
    await websocket.accept()
    subscription = relay.subscribe(download_id)

    try:
        while True:
            event = await subscription.get()
            await websocket.send_json(event)
            if event.get("percent", 0) >= 100:
                break
        await websocket.close()
    except WebSocketDisconnect:
        logger.debug("Progress subscriber disconnected", "progress", {"download_id": download_id})
    finally:
        subscription.close()
