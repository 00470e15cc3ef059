"""
WebSocket 即時推播

把儲存層的訂閱（裝置、事件、照護者）轉送給遠端客戶端。
"""

import asyncio
import logging
from collections.abc import Callable

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from carewatch.core.errors import NotFound
from carewatch.events.event_logger import device_history


logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])


def _forwarder(
    loop: asyncio.AbstractEventLoop,
    outbox: asyncio.Queue,
    kind: str,
    serialize: Callable,
) -> Callable:
    """把訂閱執行緒上的推播轉交給事件迴圈"""

    def forward(payload) -> None:
        if loop.is_closed():
            return
        loop.call_soon_threadsafe(outbox.put_nowait, {"type": kind, "data": serialize(payload)})

    return forward


@router.websocket("/ws/devices/{device_id}")
async def device_feed(websocket: WebSocket, device_id: str) -> None:
    store = websocket.app.state.store
    await websocket.accept()

    loop = asyncio.get_running_loop()
    outbox: asyncio.Queue = asyncio.Queue()
    subscriptions = []
    try:
        subscriptions.append(
            store.subscribe_device(
                device_id, _forwarder(loop, outbox, "device", lambda d: d.to_dict())
            )
        )
        subscriptions.append(
            store.subscribe_events(
                _forwarder(
                    loop,
                    outbox,
                    "events",
                    lambda events: [e.to_dict() for e in device_history(events, device_id)],
                )
            )
        )
        subscriptions.append(
            store.subscribe_caregivers(
                device_id,
                _forwarder(loop, outbox, "caregivers", lambda cgs: [c.to_dict() for c in cgs]),
            )
        )
    except NotFound:
        for subscription in subscriptions:
            subscription.unsubscribe()
        await websocket.close(code=4404)
        return

    logger.info(f"WebSocket client connected to {device_id}")

    async def send_loop() -> None:
        while True:
            message = await outbox.get()
            await websocket.send_json(message)

    async def receive_loop() -> None:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await outbox.put({"type": "pong"})

    tasks = [asyncio.create_task(send_loop()), asyncio.create_task(receive_loop())]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error(f"WebSocket feed error on {device_id}: {exc}")
    finally:
        for task in tasks:
            task.cancel()
        for subscription in subscriptions:
            subscription.unsubscribe()
        logger.info(f"WebSocket client disconnected from {device_id}")
