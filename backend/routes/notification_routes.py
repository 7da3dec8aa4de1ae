import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend.services.notifications import get_notification_bus

router = APIRouter(tags=['notifications'])

logger = logging.getLogger(__name__)


def _report_forwarding_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error('Failed to forward queue update to WebSocket client', exc_info=task.exception())


@router.websocket('/ws')
async def queue_updates(websocket: WebSocket):
    loop = asyncio.get_running_loop()
    pending: asyncio.Queue = asyncio.Queue()
    sender = None

    async def forward_events() -> None:
        while True:
            event = await pending.get()
            await websocket.send_json(event)

    # Services publish from worker threads, so hand events over to this loop.
    # The subscription exists before the handshake completes so a client never
    # misses an update published right after it connects.
    unsubscribe = get_notification_bus().subscribe(
        lambda event: loop.call_soon_threadsafe(pending.put_nowait, event)
    )
    try:
        await websocket.accept()
        logger.info('Client connected to WebSocket')
        sender = asyncio.create_task(forward_events())
        sender.add_done_callback(_report_forwarding_failure)

        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info('Client disconnected from WebSocket')
    finally:
        unsubscribe()
        if sender is not None:
            sender.cancel()
