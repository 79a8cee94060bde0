"""
WebSocket Router for live instrument telemetry

Every snapshot the monitor publishes (telemetry + reaction curve) is pushed
to connected dashboards as JSON. Slow clients lose the oldest snapshots, not
the newest.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from services.api.metrics import ivd_websocket_connections, ivd_websocket_messages_total
from services.hal.monitor import InstrumentMonitor

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/ws", tags=["websocket"])

SUBSCRIBER_QUEUE_SIZE = 10


async def forward_snapshots(websocket: WebSocket, queue: asyncio.Queue) -> None:
    """Send queued snapshots until the connection breaks"""
    while True:
        snapshot = await queue.get()
        await websocket.send_text(snapshot.model_dump_json(by_alias=True))
        ivd_websocket_messages_total.inc()


async def wait_for_disconnect(websocket: WebSocket) -> None:
    """Drain client messages; return when the client goes away"""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/telemetry")
async def telemetry_stream(websocket: WebSocket):
    """
    Stream live snapshots of the active instrument

    The latest snapshot is sent immediately on connect, then one per poll.
    """
    monitor: InstrumentMonitor = websocket.app.state.monitor

    await websocket.accept()
    queue = monitor.subscribe(max_queue=SUBSCRIBER_QUEUE_SIZE)
    ivd_websocket_connections.inc()
    logger.info(f"Telemetry WebSocket connected ({monitor.subscriber_count} subscribers)")

    sender = asyncio.create_task(forward_snapshots(websocket, queue))
    watcher = asyncio.create_task(wait_for_disconnect(websocket))

    try:
        done, _ = await asyncio.wait(
            {sender, watcher}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.error(f"Telemetry WebSocket error: {error}")
    finally:
        sender.cancel()
        watcher.cancel()
        monitor.unsubscribe(queue)
        ivd_websocket_connections.dec()
        logger.info("Telemetry WebSocket disconnected")
