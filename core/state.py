"""LayerSync per-layer playback state, completion detection and advance decisions."""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from core.addresses import PropertyKind, ResolvedAddress, resolve_address
from core.osc import OscMessage, decode_packet
from core.playlist import PlaylistItem

logger = logging.getLogger("layersync.core.state")

COMPLETION_THRESHOLD_S = 0.1
# Remaining time that must be seen again before the latch re-arms
REARM_THRESHOLD_S = 0.5

REASON_COMPLETED = "completed"
REASON_IMAGE_TIMEOUT = "image_timeout"

# ---- Store notification names ----
EVENT_TIME = "time"
EVENT_FRAME = "frame"
EVENT_PAUSED = "paused"
EVENT_LOOP = "loop"
EVENT_PRODUCER = "producer"
EVENT_PATH = "path"
EVENT_PLAYING = "playing"
EVENT_STOPPED = "stopped"
EVENT_ADVANCE = "advance"
EVENT_MODES = "modes"
EVENT_PLAYLIST = "playlist"

LayerKey = tuple[int, int]
StateListener = Callable[[str, "LayerState"], None]


@dataclass
class LayerState:
    channel: int
    layer: int
    current_time: float = 0.0
    total_time: float = 0.0
    current_frame: Optional[int] = None
    total_frames: Optional[int] = None
    # is_playing follows transport actions only; telemetry never sets it
    is_playing: bool = False
    is_paused: bool = False
    current_index: int = -1
    playlist_mode: bool = False
    loop_mode: bool = False
    loop_item: bool = False
    completion_latch: bool = False
    pending_advance_index: Optional[int] = None
    producer_type: str = ""
    is_looping: bool = False
    file_path: str = ""
    playlist: list[PlaylistItem] = field(default_factory=list)

    @property
    def key(self) -> LayerKey:
        return (self.channel, self.layer)

    @property
    def current_item(self) -> Optional[PlaylistItem]:
        if 0 <= self.current_index < len(self.playlist):
            return self.playlist[self.current_index]
        return None

    @property
    def remaining_time(self) -> float:
        return max(0.0, self.total_time - self.current_time)

    @property
    def is_empty(self) -> bool:
        return self.producer_type in ("", "empty")

    @property
    def is_image(self) -> bool:
        return "image" in self.producer_type

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "layer": self.layer,
            "current_time": self.current_time,
            "total_time": self.total_time,
            "current_frame": self.current_frame,
            "total_frames": self.total_frames,
            "is_playing": self.is_playing,
            "is_paused": self.is_paused,
            "current_index": self.current_index,
            "playlist_mode": self.playlist_mode,
            "loop_mode": self.loop_mode,
            "loop_item": self.loop_item,
            "pending_advance_index": self.pending_advance_index,
            "producer_type": self.producer_type,
            "file_path": self.file_path,
            "playlist": [item.id for item in self.playlist],
        }


@dataclass(frozen=True)
class AdvanceIntent:
    """Decision that a layer should move on. next_index is None when it stopped."""
    channel: int
    layer: int
    next_index: Optional[int]
    reason: str = REASON_COMPLETED
    stopped: bool = False


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    if isinstance(value, (bool, int, float)):
        return value == 1
    return False


class PlaybackStateStore:
    """
    In-memory table of LayerState keyed by (channel, layer).

    Not thread-safe: every apply() and every timer callback must run on the
    same event loop so updates for a layer never interleave.
    """

    def __init__(self, completion_threshold_s: float = COMPLETION_THRESHOLD_S,
                 rearm_threshold_s: float = REARM_THRESHOLD_S):
        self.completion_threshold_s = completion_threshold_s
        self.rearm_threshold_s = max(rearm_threshold_s, completion_threshold_s)
        self._layers: dict[LayerKey, LayerState] = {}
        self._listeners: list[StateListener] = []
        self._handlers = {
            PropertyKind.TIME: self._apply_time,
            PropertyKind.FRAME: self._apply_frame,
            PropertyKind.PAUSED: self._apply_paused,
            PropertyKind.LOOP: self._apply_loop,
            PropertyKind.PRODUCER_TYPE: self._apply_producer_type,
            PropertyKind.PATH: self._apply_path,
        }

    # ---- Lookup ----

    def layer(self, channel: int, layer: int) -> LayerState:
        """Return the state for (channel, layer), creating it on first use."""
        key = (channel, layer)
        state = self._layers.get(key)
        if state is None:
            state = LayerState(channel=channel, layer=layer)
            self._layers[key] = state
            logger.debug("Tracking layer %d-%d", channel, layer)
        return state

    def get(self, channel: int, layer: int) -> Optional[LayerState]:
        return self._layers.get((channel, layer))

    def layers(self) -> list[LayerState]:
        return sorted(self._layers.values(), key=lambda s: s.key)

    def snapshot(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self.layers()]

    # ---- Listeners ----

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: str, state: LayerState) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, state)
            except Exception:
                logger.exception("State listener failed on %s for %d-%d", event, state.channel, state.layer)

    # ---- Telemetry ----

    def handle_packet(self, data: bytes) -> list[AdvanceIntent]:
        intents = []
        for message in decode_packet(data):
            intent = self.handle_message(message)
            if intent is not None:
                intents.append(intent)
        return intents

    def handle_message(self, message: OscMessage) -> Optional[AdvanceIntent]:
        return self.apply(resolve_address(message.address), message.args)

    def apply(self, resolved: ResolvedAddress, args: Sequence[Any]) -> Optional[AdvanceIntent]:
        if not resolved.is_actionable:
            return None
        handler = self._handlers.get(resolved.kind)
        if handler is None:
            return None
        state = self.layer(resolved.channel, resolved.layer)
        return handler(state, args)

    def _apply_time(self, state: LayerState, args: Sequence[Any]) -> Optional[AdvanceIntent]:
        current = _as_float(args[0]) if args else None
        if current is None:
            return None
        state.current_time = current

        total = _as_float(args[1]) if len(args) >= 2 else None
        if total is not None:
            state.total_time = total
        else:
            # Elapsed-only telemetry: fall back to the active item's known duration
            item = state.current_item
            if item is not None and item.duration > 0:
                state.total_time = item.duration

        intent = self._check_completion(state)
        self._notify(EVENT_TIME, state)
        return intent

    def _check_completion(self, state: LayerState) -> Optional[AdvanceIntent]:
        if state.total_time <= 0:
            return None
        remaining = state.total_time - state.current_time
        if remaining <= self.completion_threshold_s:
            if state.completion_latch:
                return None
            state.completion_latch = True
            logger.debug("Layer %d-%d completed (remaining=%.3fs)", state.channel, state.layer, remaining)
            return self.request_advance(state.channel, state.layer, REASON_COMPLETED)
        if remaining > self.rearm_threshold_s:
            state.completion_latch = False
        return None

    def _apply_frame(self, state: LayerState, args: Sequence[Any]) -> None:
        if not args:
            return None
        current = _as_float(args[0])
        if current is None:
            return None
        state.current_frame = int(current)
        if len(args) >= 2:
            total = _as_float(args[1])
            if total is not None:
                state.total_frames = int(total)
        self._notify(EVENT_FRAME, state)
        return None

    def _apply_paused(self, state: LayerState, args: Sequence[Any]) -> None:
        state.is_paused = _as_bool(args[0]) if args else False
        self._notify(EVENT_PAUSED, state)
        return None

    def _apply_loop(self, state: LayerState, args: Sequence[Any]) -> None:
        state.is_looping = _as_bool(args[0]) if args else False
        self._notify(EVENT_LOOP, state)
        return None

    def _apply_producer_type(self, state: LayerState, args: Sequence[Any]) -> None:
        state.producer_type = str(args[0]) if args else ""
        self._notify(EVENT_PRODUCER, state)
        return None

    def _apply_path(self, state: LayerState, args: Sequence[Any]) -> None:
        state.file_path = str(args[0]) if args else ""
        self._notify(EVENT_PATH, state)
        return None

    # ---- Advance decisions ----

    def request_advance(self, channel: int, layer: int, reason: str = REASON_COMPLETED) -> Optional[AdvanceIntent]:
        """
        Decide where a finished layer goes next and record it in
        pending_advance_index. Returns None when no action applies.
        """
        state = self.get(channel, layer)
        if state is None or not state.playlist_mode:
            return None
        if state.loop_item:
            # The server repeats the item itself
            return None
        if not state.playlist:
            return None

        next_index = state.current_index + 1
        if next_index >= len(state.playlist):
            if not state.loop_mode:
                self._stop_at_end(state)
                logger.info("Layer %d-%d reached end of playlist", channel, layer)
                return AdvanceIntent(channel, layer, None, reason=reason, stopped=True)
            next_index = 0

        state.pending_advance_index = next_index
        logger.info("Layer %d-%d advance -> index %d (%s)", channel, layer, next_index, reason)
        self._notify(EVENT_ADVANCE, state)
        return AdvanceIntent(channel, layer, next_index, reason=reason)

    def _stop_at_end(self, state: LayerState) -> None:
        state.is_playing = False
        state.is_paused = False
        state.current_index = -1
        state.pending_advance_index = None
        for item in state.playlist:
            item.playing = False
        self._notify(EVENT_STOPPED, state)

    def pending_advances(self) -> list[tuple[int, int, int]]:
        """(channel, layer, next_index) for every layer awaiting the command layer."""
        return [
            (s.channel, s.layer, s.pending_advance_index)
            for s in self.layers()
            if s.pending_advance_index is not None
        ]

    def clear_pending_advance(self, channel: int, layer: int) -> Optional[int]:
        state = self.get(channel, layer)
        if state is None:
            return None
        index = state.pending_advance_index
        state.pending_advance_index = None
        return index

    # ---- Transport bookkeeping (driven by the command layer) ----

    def set_playlist(self, channel: int, layer: int, items: list[PlaylistItem]) -> LayerState:
        """Replace the playlist; current and pending positions follow their items by id."""
        state = self.layer(channel, layer)
        current = state.current_item
        pending = None
        if state.pending_advance_index is not None and 0 <= state.pending_advance_index < len(state.playlist):
            pending = state.playlist[state.pending_advance_index]

        state.playlist = list(items)
        positions = {item.id: i for i, item in enumerate(state.playlist)}
        state.current_index = positions.get(current.id, -1) if current is not None else -1
        state.pending_advance_index = positions.get(pending.id) if pending is not None else None

        if current is not None and state.current_index == -1:
            logger.info("Layer %d-%d: current item %s removed from playlist", channel, layer, current.id)
        for i, item in enumerate(state.playlist):
            item.playing = state.is_playing and i == state.current_index
        self._notify(EVENT_PLAYLIST, state)
        return state

    def mark_playing(self, channel: int, layer: int, index: int) -> Optional[PlaylistItem]:
        state = self.layer(channel, layer)
        if not 0 <= index < len(state.playlist):
            logger.warning("Layer %d-%d: index %d outside playlist of %d", channel, layer, index, len(state.playlist))
            return None
        state.current_index = index
        state.is_playing = True
        state.is_paused = False
        state.completion_latch = False
        state.pending_advance_index = None
        state.current_time = 0.0
        state.total_time = state.playlist[index].duration
        for i, item in enumerate(state.playlist):
            item.playing = i == index
        self._notify(EVENT_PLAYING, state)
        return state.playlist[index]

    def mark_paused(self, channel: int, layer: int, paused: bool = True) -> None:
        state = self.layer(channel, layer)
        state.is_paused = paused
        self._notify(EVENT_PAUSED, state)

    def mark_stopped(self, channel: int, layer: int) -> None:
        state = self.layer(channel, layer)
        state.is_playing = False
        state.is_paused = False
        state.pending_advance_index = None
        for item in state.playlist:
            item.playing = False
        self._notify(EVENT_STOPPED, state)

    def set_playlist_mode(self, channel: int, layer: int, enabled: bool) -> LayerState:
        state = self.layer(channel, layer)
        state.playlist_mode = enabled
        self._notify(EVENT_MODES, state)
        return state

    def set_loop_mode(self, channel: int, layer: int, enabled: bool) -> LayerState:
        state = self.layer(channel, layer)
        state.loop_mode = enabled
        self._notify(EVENT_MODES, state)
        return state

    def set_loop_item(self, channel: int, layer: int, enabled: bool) -> LayerState:
        state = self.layer(channel, layer)
        state.loop_item = enabled
        self._notify(EVENT_MODES, state)
        return state

    # ---- Manual navigation ----

    def next_index(self, channel: int, layer: int) -> Optional[int]:
        state = self.get(channel, layer)
        if state is None or not state.playlist:
            return None
        idx = state.current_index + 1
        if idx >= len(state.playlist):
            return 0 if state.loop_mode else None
        return idx

    def previous_index(self, channel: int, layer: int) -> Optional[int]:
        state = self.get(channel, layer)
        if state is None or not state.playlist:
            return None
        idx = state.current_index - 1
        if idx < 0:
            return len(state.playlist) - 1 if state.loop_mode else 0
        return idx
