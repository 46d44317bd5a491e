"""Tests for the playout session wiring."""
import json
import tempfile
from pathlib import Path

from core.config import ChannelConfig, Config
from core.logging_utils import journal_path
from core.offsets import OffsetSpec
from core.playlist import Macro, MacroAttachment, MacroLibrary, PlaylistItem
from controller.session import PlayoutSession
from tests.manual_clock import ManualLoop
from tests.osc_packets import time_message


def _session(journal_dir=None):
    loop = ManualLoop()
    config = Config(channels=[ChannelConfig(id=1, layers=[10, 20])])
    ran = []
    library = MacroLibrary([Macro(id="lights"), Macro(id="gfx-out")])
    session = PlayoutSession(config, library, lambda m: ran.append(m.id), loop=loop, journal_dir=journal_dir)
    advances = []
    session.on_advance = advances.append
    return session, loop, ran, advances


def _playlist():
    return [
        PlaylistItem(
            id="opener", duration=10.0,
            start_macro=MacroAttachment("lights", OffsetSpec(seconds=1, negative=True)),
            end_macro=MacroAttachment("gfx-out", OffsetSpec(seconds=2, negative=True)),
        ),
        PlaylistItem(id="still", type="image", duration=0.0),
        PlaylistItem(id="closer", duration=8.0),
    ]


def test_configured_layers_exist():
    session, *_ = _session()
    assert [(s["channel"], s["layer"]) for s in session.snapshot()] == [(1, 10), (1, 20)]


def test_prepare_and_start_item():
    session, loop, ran, _ = _session()
    session.set_playlist(1, 10, _playlist())
    session.set_playlist_mode(1, 10, True)

    plan = session.prepare_item(1, 10, 0)
    assert plan.executed
    assert plan.pre_roll_s == 1.0
    assert ran == ["lights"]

    session.item_started(1, 10, 0)
    # Start macro already ran during prepare; only the end macro is pending
    assert session.macros.scheduled_count() == 1
    loop.advance(8.0)
    assert ran == ["lights", "gfx-out"]


def test_prepare_item_without_pre_roll():
    session, _, ran, _ = _session()
    session.set_playlist(1, 10, _playlist())
    assert session.prepare_item(1, 10, 2).pre_roll_s == 0.0
    assert session.prepare_item(1, 10, 99).pre_roll_s == 0.0
    assert ran == []


def test_telemetry_completion_advances_once():
    session, _, _, advances = _session()
    session.set_playlist(1, 10, _playlist())
    session.set_playlist_mode(1, 10, True)
    session.item_started(1, 10, 0)

    session.handle_datagram(time_message(1, 10, 9.85, 10.0))
    session.handle_datagram(time_message(1, 10, 9.95, 10.0))
    session.handle_datagram(time_message(1, 10, 10.0, 10.0))
    assert len(advances) == 1
    assert advances[0].next_index == 1


def test_complete_advance_starts_next_item():
    session, loop, _, advances = _session()
    session.set_playlist(1, 10, _playlist())
    session.set_playlist_mode(1, 10, True)
    session.item_started(1, 10, 0)
    session.handle_datagram(time_message(1, 10, 9.95, 10.0))

    assert session.complete_advance(1, 10, True) == 1
    state = session.store.get(1, 10)
    assert state.current_index == 1
    assert state.pending_advance_index is None
    # Still image with no duration uses the configured default
    assert session.images.is_armed(1, 10)
    loop.advance(session.config.defaults.image_duration_s)
    assert advances[-1].next_index == 2
    assert advances[-1].reason == "image_timeout"


def test_complete_advance_failure_keeps_current():
    session, *_ = _session()
    session.set_playlist(1, 10, _playlist())
    session.set_playlist_mode(1, 10, True)
    session.item_started(1, 10, 0)
    session.handle_datagram(time_message(1, 10, 9.95, 10.0))
    assert session.complete_advance(1, 10, False) == 1
    assert session.store.get(1, 10).current_index == 0
    assert session.complete_advance(1, 10, True) is None


def test_end_macro_survives_advance():
    session, loop, ran, _ = _session()
    items = _playlist()
    items[0].end_macro = MacroAttachment("gfx-out", OffsetSpec(seconds=1))
    session.set_playlist(1, 10, items)
    session.set_playlist_mode(1, 10, True)
    session.item_started(1, 10, 0)
    loop.advance(10.0)
    session.item_started(1, 10, 1)
    loop.advance(1.0)
    assert "gfx-out" in ran


def test_playlist_mode_toggle_arms_single_timer():
    session, loop, _, advances = _session()
    session.set_playlist(1, 20, _playlist())
    session.item_started(1, 20, 1)
    assert not session.images.is_armed(1, 20)

    session.set_playlist_mode(1, 20, True)
    session.set_playlist_mode(1, 20, False)
    session.set_playlist_mode(1, 20, True)
    loop.advance(60.0)
    assert len(advances) == 1


def test_loop_item_disarms_image_timer():
    session, loop, _, advances = _session()
    session.set_playlist(1, 20, _playlist())
    session.set_playlist_mode(1, 20, True)
    session.item_started(1, 20, 1)
    session.set_loop_item(1, 20, True)
    assert not session.images.is_armed(1, 20)
    loop.advance(60.0)
    assert advances == []


def test_playlist_edit_cancels_removed_items():
    session, loop, ran, _ = _session()
    items = _playlist()
    session.set_playlist(1, 10, items)
    session.item_started(1, 10, 0)
    assert session.macros.scheduled_count() == 1
    session.set_playlist(1, 10, items[1:])
    assert session.macros.scheduled_count() == 0
    loop.advance(20.0)
    assert ran == []


def test_stop_layer_cancels_timers():
    session, loop, ran, advances = _session()
    session.set_playlist(1, 10, _playlist())
    session.set_playlist_mode(1, 10, True)
    session.item_started(1, 10, 0)
    session.stop_layer(1, 10)
    assert session.store.get(1, 10).is_playing is False
    loop.advance(20.0)
    assert ran == []
    assert advances == []


def test_end_of_playlist_stop():
    session, *_ , advances = _session()
    session.set_playlist(1, 10, _playlist())
    session.set_playlist_mode(1, 10, True)
    session.item_started(1, 10, 2)
    session.handle_datagram(time_message(1, 10, 7.95, 8.0))
    assert advances[-1].stopped
    assert session.store.get(1, 10).current_index == -1


def test_close_cancels_everything():
    session, loop, ran, _ = _session()
    session.set_playlist(1, 10, _playlist())
    session.item_started(1, 10, 0)
    session.close()
    assert len(session.timers) == 0
    loop.advance(20.0)
    assert ran == []


def test_state_change_callback():
    session, *_ = _session()
    events = []
    session.on_state_change = lambda event, state: events.append((event, state.key))
    session.set_loop_mode(1, 10, True)
    assert events == [("modes", (1, 10))]


def test_journal_records_advances_and_macros():
    with tempfile.TemporaryDirectory() as tmp:
        log_dir = Path(tmp)
        session, loop, _, _ = _session(journal_dir=log_dir)
        session.set_playlist(1, 10, _playlist())
        session.set_playlist_mode(1, 10, True)
        session.prepare_item(1, 10, 0)
        session.item_started(1, 10, 0)
        session.handle_datagram(time_message(1, 10, 9.95, 10.0))

        lines = journal_path(log_dir).read_text(encoding="utf-8").splitlines()
        records = [json.loads(line) for line in lines]
        assert [r["event"] for r in records] == ["macro", "advance"]
        assert records[0]["macro_id"] == "lights"
        assert records[0]["success"] is True
        assert records[1]["next_index"] == 1
        assert "ts_utc_ms" in records[1]
