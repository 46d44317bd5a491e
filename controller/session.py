"""LayerSync playout session: owns the state store and timers for one run."""
from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import Callable, Optional

from core.config import Config
from core.logging_utils import log_jsonl
from core.offsets import offset_to_seconds
from core.playlist import MacroLibrary, MacroResult, PlaylistItem
from core.scheduler import (
    ImageAdvanceTimers, MacroExecutor, MacroScheduler, StartMacroPlan, TimerScheduler,
)
from core.state import AdvanceIntent, LayerState, PlaybackStateStore

logger = logging.getLogger("layersync.controller.session")


class PlayoutSession:
    """
    Everything mutable lives here, constructed once per session and passed to
    whoever needs it. Must be driven from a single event loop.

    Command layer contract for an advance:
        plan = session.prepare_item(ch, layer, intent.next_index)
        wait plan.pre_roll_s, send the play command, then
        session.complete_advance(ch, layer, ok)
    """

    def __init__(self, config: Config, library: MacroLibrary, executor: MacroExecutor,
                 loop: Optional[asyncio.AbstractEventLoop] = None,
                 journal_dir: Optional[Path] = None):
        self.config = config
        self.journal_dir = journal_dir
        self.store = PlaybackStateStore(completion_threshold_s=config.defaults.completion_threshold_s)
        self.timers = TimerScheduler(loop)
        self.macros = MacroScheduler(self.timers, library, executor, on_result=self._on_macro_result)
        self.images = ImageAdvanceTimers(
            self.timers, self.store,
            on_advance=self._on_advance,
            default_duration_s=config.defaults.image_duration_s,
        )

        # Callbacks (set by the host / status feed)
        self.on_advance: Optional[Callable[[AdvanceIntent], None]] = None
        self.on_state_change: Optional[Callable[[str, LayerState], None]] = None
        self.on_macro_result: Optional[Callable[[MacroResult], None]] = None

        self.store.add_listener(self._on_store_event)
        for channel in config.channels:
            for layer in channel.layers:
                self.store.layer(channel.id, layer)

    # ---- Telemetry ----

    def handle_datagram(self, data: bytes) -> list[AdvanceIntent]:
        intents = self.store.handle_packet(data)
        for intent in intents:
            self._on_advance(intent)
        return intents

    # ---- Playlist / modes ----

    def set_playlist(self, channel: int, layer: int, items: list[PlaylistItem]) -> LayerState:
        state = self.store.layer(channel, layer)
        current = state.current_item
        new_ids = {item.id for item in items}
        for item in state.playlist:
            if item.id not in new_ids:
                self.macros.cancel(item.id)
        state = self.store.set_playlist(channel, layer, items)
        if current is not None and state.current_item is None:
            self.images.disarm(channel, layer)
        return state

    def set_playlist_mode(self, channel: int, layer: int, enabled: bool) -> None:
        self.store.set_playlist_mode(channel, layer, enabled)
        self._refresh_image_timer(channel, layer)

    def set_loop_mode(self, channel: int, layer: int, enabled: bool) -> None:
        self.store.set_loop_mode(channel, layer, enabled)

    def set_loop_item(self, channel: int, layer: int, enabled: bool) -> None:
        self.store.set_loop_item(channel, layer, enabled)
        self._refresh_image_timer(channel, layer)

    def _refresh_image_timer(self, channel: int, layer: int) -> None:
        state = self.store.get(channel, layer)
        if state is not None and state.is_playing:
            self.images.arm(channel, layer)
        else:
            self.images.disarm(channel, layer)

    # ---- Transport ----

    def prepare_item(self, channel: int, layer: int, index: int) -> StartMacroPlan:
        """Run a before-start macro, if any. Call before issuing the play command."""
        item = self._item(channel, layer, index)
        if item is None or item.start_macro is None:
            return StartMacroPlan()
        frame_rate = self.config.frame_rate_for(channel)
        if offset_to_seconds(item.start_macro.offset, frame_rate) >= 0:
            return StartMacroPlan()
        return self.macros.schedule_start(item, frame_rate)

    def item_started(self, channel: int, layer: int, index: int) -> Optional[PlaylistItem]:
        """Record that the play command for `index` succeeded and arm its timers."""
        item = self.store.mark_playing(channel, layer, index)
        if item is None:
            return None

        frame_rate = self.config.frame_rate_for(channel)
        if item.start_macro is not None and offset_to_seconds(item.start_macro.offset, frame_rate) >= 0:
            self.macros.schedule_start(item, frame_rate)
        duration = self.images.duration_for(item) if item.is_image else item.duration
        self.macros.schedule_end(item, duration, frame_rate)
        self.images.arm(channel, layer)
        return item

    def complete_advance(self, channel: int, layer: int, ok: bool) -> Optional[int]:
        """Called by the command layer once it acted on pending_advance_index."""
        index = self.store.clear_pending_advance(channel, layer)
        if index is None:
            return None
        if ok:
            self.item_started(channel, layer, index)
        else:
            logger.warning("Advance to index %d on %d-%d failed", index, channel, layer)
        return index

    def stop_layer(self, channel: int, layer: int) -> None:
        state = self.store.get(channel, layer)
        if state is None:
            return
        if state.current_item is not None:
            self.macros.cancel(state.current_item.id)
        self.images.disarm(channel, layer)
        self.store.mark_stopped(channel, layer)

    def close(self) -> None:
        cancelled = self.timers.cancel_all()
        logger.info("Session closed (%d timers cancelled)", cancelled)

    def snapshot(self) -> list[dict]:
        return self.store.snapshot()

    # ---- Internal ----

    def _item(self, channel: int, layer: int, index: int) -> Optional[PlaylistItem]:
        state = self.store.get(channel, layer)
        if state is None or not 0 <= index < len(state.playlist):
            return None
        return state.playlist[index]

    def _on_advance(self, intent: AdvanceIntent) -> None:
        if intent.stopped:
            self.images.disarm(intent.channel, intent.layer)
        self._journal({
            "event": "stopped" if intent.stopped else "advance",
            "channel": intent.channel,
            "layer": intent.layer,
            "next_index": intent.next_index,
            "reason": intent.reason,
        })
        if self.on_advance:
            self.on_advance(intent)

    def _on_store_event(self, event: str, state: LayerState) -> None:
        if self.on_state_change:
            self.on_state_change(event, state)

    def _on_macro_result(self, result: MacroResult) -> None:
        self._journal({
            "event": "macro",
            "macro_id": result.macro_id,
            "item_id": result.item_id,
            "position": result.position,
            "success": result.success,
            "error": result.error,
        })
        if self.on_macro_result:
            self.on_macro_result(result)

    def _journal(self, record: dict) -> None:
        if self.journal_dir is None:
            return
        try:
            log_jsonl(self.journal_dir, record)
        except OSError as e:
            logger.warning("Journal write failed: %s", e)
