"""LayerSync status feed: pushes layer state and events to WebSocket subscribers."""
from __future__ import annotations
import asyncio
import json
import logging
import time
import uuid
from typing import Any, Optional

import websockets
from websockets.asyncio.server import ServerConnection, serve

from core.config import DEFAULT_STATUS_PORT
from core.playlist import MacroResult
from core.protocol import (
    make_envelope, parse_envelope,
    MSG_HELLO, MSG_STATE, MSG_LAYER, MSG_ADVANCE, MSG_MACRO,
    MSG_CONNECTION, MSG_PONG, MSG_ERROR,
    MSG_REQUEST_STATE, MSG_PING,
    CONN_CONNECTED, CONN_DISCONNECTED,
)
from core.state import AdvanceIntent, LayerState

logger = logging.getLogger("layersync.controller.status")


class Subscriber:
    """A connected status feed client."""

    def __init__(self, ws: ServerConnection, subscriber_id: Optional[str] = None):
        self.ws = ws
        self.subscriber_id = subscriber_id or str(uuid.uuid4())
        self.connected_at = time.time()

    async def send(self, msg_type: str, payload: dict) -> bool:
        try:
            await self.ws.send(make_envelope(msg_type, payload))
            return True
        except Exception as e:
            logger.warning("Failed to send to %s: %s", self.subscriber_id, e)
            return False


class StatusServer:
    """
    Read-only remote view of the session. Subscribers get a full STATE on
    connect, then LAYER / ADVANCE / MACRO / CONNECTION pushes.
    """

    def __init__(self, session, port: int = DEFAULT_STATUS_PORT, host: str = "0.0.0.0"):
        self.session = session
        self.port = port
        self.host = host
        self.server_id = str(uuid.uuid4())
        self.command_connected = False
        self._subscribers: dict[str, Subscriber] = {}
        self._server = None
        self._pending: set[asyncio.Task] = set()

    @property
    def subscribers(self) -> dict[str, Subscriber]:
        return self._subscribers

    def attach(self) -> None:
        """Wire session callbacks to the feed."""
        self.session.on_state_change = self.publish_layer
        self.session.on_advance = self.publish_advance
        self.session.on_macro_result = self.publish_macro

    async def start(self) -> None:
        self._server = await serve(self._handle_subscriber, self.host, self.port)
        logger.info("Status feed listening on port %d", self.port)

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        for task in list(self._pending):
            task.cancel()

    async def _handle_subscriber(self, ws: ServerConnection) -> None:
        sub = Subscriber(ws)
        self._subscribers[sub.subscriber_id] = sub
        logger.info("Status subscriber connected: %s", sub.subscriber_id)
        try:
            await sub.send(MSG_HELLO, {"server_id": self.server_id, "subscriber_id": sub.subscriber_id})
            await sub.send(MSG_STATE, self.state_payload())
            async for raw in ws:
                await self.handle_message(sub, raw)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self._subscribers.pop(sub.subscriber_id, None)
            logger.info("Status subscriber disconnected: %s", sub.subscriber_id)

    async def handle_message(self, sub: Subscriber, raw: str) -> None:
        try:
            msg_type, _, payload = parse_envelope(raw)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            await sub.send(MSG_ERROR, {"error": f"Malformed message: {e}"})
            return
        if not isinstance(payload, dict):
            await sub.send(MSG_ERROR, {"error": "Malformed message: payload must be an object"})
            return

        if msg_type == MSG_REQUEST_STATE:
            await sub.send(MSG_STATE, self.state_payload())
        elif msg_type == MSG_PING:
            await sub.send(MSG_PONG, {"id": payload.get("id")})
        else:
            await sub.send(MSG_ERROR, {"error": f"Unknown message type: {msg_type}"})

    def state_payload(self) -> dict[str, Any]:
        return {
            "command_connection": CONN_CONNECTED if self.command_connected else CONN_DISCONNECTED,
            "layers": self.session.snapshot(),
        }

    async def broadcast(self, msg_type: str, payload: dict) -> None:
        for sub in list(self._subscribers.values()):
            if not await sub.send(msg_type, payload):
                self._subscribers.pop(sub.subscriber_id, None)

    def _schedule(self, msg_type: str, payload: dict) -> None:
        if not self._subscribers:
            return
        task = asyncio.get_running_loop().create_task(self.broadcast(msg_type, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ---- Session callbacks ----

    def publish_layer(self, event: str, state: LayerState) -> None:
        self._schedule(MSG_LAYER, {"event": event, "layer": state.to_dict()})

    def publish_advance(self, intent: AdvanceIntent) -> None:
        self._schedule(MSG_ADVANCE, {
            "channel": intent.channel,
            "layer": intent.layer,
            "next_index": intent.next_index,
            "reason": intent.reason,
            "stopped": intent.stopped,
        })

    def publish_macro(self, result: MacroResult) -> None:
        self._schedule(MSG_MACRO, {
            "macro_id": result.macro_id,
            "item_id": result.item_id,
            "position": result.position,
            "success": result.success,
            "error": result.error,
        })

    def publish_connection(self, connected: bool, reason: str = "") -> None:
        self.command_connected = connected
        self._schedule(MSG_CONNECTION, {
            "state": CONN_CONNECTED if connected else CONN_DISCONNECTED,
            "reason": reason,
        })
