"""LayerSync status feed protocol (JSON envelopes over WebSocket)."""
from __future__ import annotations
import json
import time
from typing import Any


def _now_ms() -> int:
    return int(time.time() * 1000)


def make_envelope(msg_type: str, payload: dict[str, Any]) -> str:
    return json.dumps({"type": msg_type, "ts_utc_ms": _now_ms(), "payload": payload})


def parse_envelope(raw: str) -> tuple[str, int, dict[str, Any]]:
    data = json.loads(raw)
    return data["type"], data.get("ts_utc_ms", 0), data.get("payload", {})


# ---- Controller → subscriber message types ----
MSG_HELLO = "HELLO"
MSG_STATE = "STATE"
MSG_LAYER = "LAYER"
MSG_ADVANCE = "ADVANCE"
MSG_MACRO = "MACRO"
MSG_CONNECTION = "CONNECTION"
MSG_PONG = "PONG"
MSG_ERROR = "ERROR"

# ---- Subscriber → controller message types ----
MSG_REQUEST_STATE = "REQUEST_STATE"
MSG_PING = "PING"

# ---- Command connection states ----
CONN_CONNECTED = "connected"
CONN_DISCONNECTED = "disconnected"

VALID_CONNECTION_STATES = {CONN_CONNECTED, CONN_DISCONNECTED}
