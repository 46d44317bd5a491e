"""Tests for status feed message envelopes."""
import json

from core.protocol import (
    make_envelope, parse_envelope, VALID_CONNECTION_STATES, CONN_CONNECTED, MSG_STATE,
)


def test_make_envelope_basic():
    msg = make_envelope("HELLO", {"server_id": "abc123"})
    data = json.loads(msg)
    assert data["type"] == "HELLO"
    assert "ts_utc_ms" in data
    assert data["payload"]["server_id"] == "abc123"


def test_parse_envelope():
    raw = json.dumps({"type": "PING", "ts_utc_ms": 1234567890, "payload": {"id": 7}})
    msg_type, ts, payload = parse_envelope(raw)
    assert msg_type == "PING"
    assert ts == 1234567890
    assert payload["id"] == 7


def test_parse_envelope_defaults():
    msg_type, ts, payload = parse_envelope(json.dumps({"type": "REQUEST_STATE"}))
    assert msg_type == "REQUEST_STATE"
    assert ts == 0
    assert payload == {}


def test_connection_states():
    assert CONN_CONNECTED in VALID_CONNECTION_STATES
    assert "disconnected" in VALID_CONNECTION_STATES
    assert "unknown" not in VALID_CONNECTION_STATES


def test_round_trip():
    payload = {"layers": [{"channel": 1, "layer": 10}], "command_connection": "connected"}
    msg_type, _, parsed = parse_envelope(make_envelope(MSG_STATE, payload))
    assert msg_type == "STATE"
    assert parsed == payload
