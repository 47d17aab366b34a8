"""
WebSocket endpoints for streaming run events.
"""

import logging
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 30.0


@dataclass(eq=False)
class Subscription:
    """One listener: a bounded queue plus an optional run filter."""
    queue: asyncio.Queue
    run_id: Optional[str] = None
    dropped: int = 0

    def wants(self, event: Dict[str, Any]) -> bool:
        return self.run_id is None or event.get("runId") == self.run_id


class ConnectionManager:
    """
    Fans run events out to connected listeners.

    ``publish`` never blocks and never raises: a listener whose queue is full
    misses the event, and nothing is reported back to the publisher.
    """

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._subscriptions: List[Subscription] = []

    def subscribe(self, run_id: Optional[str] = None) -> Subscription:
        subscription = Subscription(queue=asyncio.Queue(maxsize=self.queue_size), run_id=run_id)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        if subscription.dropped:
            logger.info(f"Listener dropped {subscription.dropped} event(s) before disconnecting")

    def publish(self, event: Dict[str, Any]) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.wants(event):
                continue
            try:
                subscription.queue.put_nowait(event)
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.debug(f"Dropping {event.get('type')} event for slow listener")

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)


async def _forward_events(websocket: WebSocket, subscription: Subscription):
    while True:
        try:
            event = await asyncio.wait_for(subscription.queue.get(), timeout=KEEPALIVE_SECONDS)
        except asyncio.TimeoutError:
            await websocket.send_json({"type": "keepalive"})
            continue
        await websocket.send_json(event)


async def _handle_incoming(websocket: WebSocket):
    while True:
        data = await websocket.receive_text()
        if data == "ping":
            await websocket.send_text("pong")
        else:
            logger.debug(f"Ignoring websocket message: {data[:200]}")


async def websocket_endpoint(
    websocket: WebSocket,
    manager: ConnectionManager,
    run_id: Optional[str] = None,
):
    """
    Stream run events to a client.

    Connect to /ws for every run or /ws/runs/{run_id} for a single run.

    Message types:
    - connected: sent once on accept
    - step_started, step_attempt, step_response, step_evaluated,
      step_error, step_completed, run_completed: run events
    - keepalive: sent after 30s without events
    """
    await websocket.accept()
    subscription = manager.subscribe(run_id)
    logger.info(f"WebSocket connected (run filter: {run_id or 'all'})")

    tasks = []
    try:
        await websocket.send_json({
            "type": "connected",
            "runId": run_id,
            "message": "Connected to run event stream",
        })

        tasks = [
            asyncio.create_task(_forward_events(websocket, subscription)),
            asyncio.create_task(_handle_incoming(websocket)),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            task.result()

    except WebSocketDisconnect:
        logger.info("Client disconnected from run event stream")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        for task in tasks:
            task.cancel()
        manager.unsubscribe(subscription)
