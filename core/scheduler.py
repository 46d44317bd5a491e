"""LayerSync keyed timers: macro offsets and image-duration auto-advance.

Every timer is keyed; scheduling a key that is already live cancels the old
timer first, so a key never has two live timers. Timers run on an event loop
(anything with asyncio's call_later()/time()), which also serialises them
against telemetry handled on the same loop.
"""
from __future__ import annotations
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Optional

from core.offsets import DEFAULT_FRAME_RATE, offset_to_seconds
from core.playlist import (
    Macro, MacroLibrary, MacroResult, PlaylistItem,
    POSITION_START, POSITION_END,
)
from core.state import AdvanceIntent, PlaybackStateStore, REASON_IMAGE_TIMEOUT

logger = logging.getLogger("layersync.core.scheduler")

MacroExecutor = Callable[[Macro], Any]
ResultSink = Callable[[MacroResult], None]
AdvanceSink = Callable[[AdvanceIntent], None]


@dataclass(frozen=True)
class MacroTimerKey:
    item_id: str
    position: str


@dataclass(frozen=True)
class LayerTimerKey:
    channel: int
    layer: int


@dataclass(eq=False)
class ScheduledTimer:
    key: Hashable
    delay: float
    fire_at: float
    action: Callable[[], Any]
    live: bool = True
    handle: Any = field(default=None, repr=False)


class TimerScheduler:
    """Cancellable one-shot timers, at most one live timer per key."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._timers: dict[Hashable, ScheduledTimer] = {}

    @property
    def loop(self):
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, key: Hashable, delay: float, action: Callable[[], Any]) -> ScheduledTimer:
        self.cancel(key)
        delay = max(0.0, delay)
        timer = ScheduledTimer(key=key, delay=delay, fire_at=self.loop.time() + delay, action=action)
        timer.handle = self.loop.call_later(delay, self._fire, timer)
        self._timers[key] = timer
        return timer

    def _fire(self, timer: ScheduledTimer) -> None:
        # Cancelled or replaced between arm and fire
        if not timer.live or self._timers.get(timer.key) is not timer:
            logger.debug("Ignoring stale timer %s", timer.key)
            return
        timer.live = False
        del self._timers[timer.key]
        try:
            timer.action()
        except Exception:
            logger.exception("Timer action failed for %s", timer.key)

    def cancel(self, key: Hashable) -> bool:
        """Cancel one timer. Unknown keys are a no-op."""
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.live = False
        if timer.handle is not None:
            timer.handle.cancel()
        return True

    def cancel_where(self, predicate: Callable[[Hashable], bool]) -> int:
        keys = [k for k in self._timers if predicate(k)]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def cancel_all(self) -> int:
        return self.cancel_where(lambda _key: True)

    def count_where(self, predicate: Callable[[Hashable], bool]) -> int:
        return sum(1 for k in self._timers if predicate(k))

    def is_scheduled(self, key: Hashable) -> bool:
        return key in self._timers

    def get(self, key: Hashable) -> Optional[ScheduledTimer]:
        return self._timers.get(key)

    def __len__(self) -> int:
        return len(self._timers)


@dataclass(frozen=True)
class StartMacroPlan:
    """
    pre_roll_s > 0 means the macro already ran and the caller must wait that
    long before issuing the start command.
    """
    pre_roll_s: float = 0.0
    executed: bool = False
    scheduled: bool = False
    delay_s: float = 0.0


class MacroScheduler:
    """Fires macros attached to the start or end of playlist items."""

    def __init__(self, timers: TimerScheduler, library: MacroLibrary,
                 executor: MacroExecutor, on_result: Optional[ResultSink] = None):
        self.timers = timers
        self.library = library
        self.executor = executor
        self.on_result = on_result

    def schedule_start(self, item: PlaylistItem, frame_rate: float = DEFAULT_FRAME_RATE) -> StartMacroPlan:
        attachment = item.start_macro
        if attachment is None:
            return StartMacroPlan()
        key = MacroTimerKey(item.id, POSITION_START)
        offset_s = offset_to_seconds(attachment.offset, frame_rate)

        if offset_s < 0:
            self.timers.cancel(key)
            logger.info("Start macro %s for %s runs %.3fs before start", attachment.macro_id, item.id, -offset_s)
            self.run_macro(attachment.macro_id, item.id, POSITION_START)
            return StartMacroPlan(pre_roll_s=-offset_s, executed=True)

        self.timers.schedule(key, offset_s, lambda: self.run_macro(attachment.macro_id, item.id, POSITION_START))
        logger.info("Start macro %s for %s scheduled %.3fs after start", attachment.macro_id, item.id, offset_s)
        return StartMacroPlan(scheduled=True, delay_s=offset_s)

    def schedule_end(self, item: PlaylistItem, duration: float,
                     frame_rate: float = DEFAULT_FRAME_RATE) -> Optional[float]:
        """
        Arm the end macro at duration + offset seconds after item start.
        Returns the delay used (0.0 when it ran immediately) or None.
        """
        attachment = item.end_macro
        if attachment is None or not duration or duration <= 0:
            return None
        key = MacroTimerKey(item.id, POSITION_END)
        fire_at = duration + offset_to_seconds(attachment.offset, frame_rate)

        if fire_at <= 0:
            self.timers.cancel(key)
            logger.info("End macro %s for %s offset exceeds duration; running now", attachment.macro_id, item.id)
            self.run_macro(attachment.macro_id, item.id, POSITION_END)
            return 0.0

        self.timers.schedule(key, fire_at, lambda: self.run_macro(attachment.macro_id, item.id, POSITION_END))
        logger.info("End macro %s for %s scheduled at %.3fs", attachment.macro_id, item.id, fire_at)
        return fire_at

    def cancel(self, item_id: str, position: Optional[str] = None) -> None:
        """Cancel one position, or both when position is None. Idempotent."""
        for pos in ((position,) if position else (POSITION_START, POSITION_END)):
            if self.timers.cancel(MacroTimerKey(item_id, pos)):
                logger.debug("Cancelled %s macro for item %s", pos, item_id)

    def cancel_all(self) -> int:
        count = self.timers.cancel_where(lambda key: isinstance(key, MacroTimerKey))
        if count:
            logger.info("Cancelled %d scheduled macros", count)
        return count

    def scheduled_count(self) -> int:
        return self.timers.count_where(lambda key: isinstance(key, MacroTimerKey))

    def run_macro(self, macro_id: str, item_id: Optional[str] = None,
                  position: Optional[str] = None) -> MacroResult:
        """Look up and execute a macro now. Lookup or executor failures become a failed result."""
        macro = self.library.get(macro_id)
        if macro is None:
            logger.warning("Macro not found: %s (item %s, %s)", macro_id, item_id, position)
            return self._report(MacroResult(macro_id, False, item_id, position, error="Macro not found"))

        try:
            detail = self.executor(macro)
        except Exception as e:
            logger.error("Macro %s failed: %s", macro_id, e)
            return self._report(MacroResult(macro_id, False, item_id, position, error=str(e)))

        if inspect.isawaitable(detail):
            future = asyncio.ensure_future(detail)
            future.add_done_callback(lambda f: self._report_future(f, macro_id, item_id, position))
            return MacroResult(macro_id, True, item_id, position, detail=future)

        success = detail is not False
        return self._report(MacroResult(macro_id, success, item_id, position, detail=detail))

    def _report_future(self, future: asyncio.Future, macro_id: str,
                       item_id: Optional[str], position: Optional[str]) -> None:
        if future.cancelled():
            self._report(MacroResult(macro_id, False, item_id, position, error="cancelled"))
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Macro %s failed: %s", macro_id, exc)
            self._report(MacroResult(macro_id, False, item_id, position, error=str(exc)))
            return
        detail = future.result()
        self._report(MacroResult(macro_id, detail is not False, item_id, position, detail=detail))

    def _report(self, result: MacroResult) -> MacroResult:
        if self.on_result:
            try:
                self.on_result(result)
            except Exception:
                logger.exception("Macro result handler failed")
        return result


class ImageAdvanceTimers:
    """
    Duration fallback for still images, which report no elapsing time.
    One timer per layer; conditions are re-checked when it fires.
    """

    def __init__(self, timers: TimerScheduler, store: PlaybackStateStore,
                 on_advance: Optional[AdvanceSink] = None, default_duration_s: float = 0.0):
        self.timers = timers
        self.store = store
        self.on_advance = on_advance
        self.default_duration_s = default_duration_s

    def duration_for(self, item: PlaylistItem) -> float:
        return item.duration if item.duration > 0 else self.default_duration_s

    def _eligible(self, state, item: Optional[PlaylistItem]) -> bool:
        return (
            item is not None
            and item.is_image
            and self.duration_for(item) > 0
            and state.playlist_mode
            and not state.loop_item
        )

    def arm(self, channel: int, layer: int) -> bool:
        """(Re)arm the timer for the layer's current item; False when it does not apply."""
        key = LayerTimerKey(channel, layer)
        self.timers.cancel(key)
        state = self.store.get(channel, layer)
        item = state.current_item if state else None
        if not self._eligible(state, item):
            return False
        delay = self.duration_for(item)
        item_id = item.id
        self.timers.schedule(key, delay, lambda: self._fire(channel, layer, item_id))
        logger.debug("Image timer armed for %d-%d (%s, %.2fs)", channel, layer, item_id, delay)
        return True

    def disarm(self, channel: int, layer: int) -> bool:
        return self.timers.cancel(LayerTimerKey(channel, layer))

    def is_armed(self, channel: int, layer: int) -> bool:
        return self.timers.is_scheduled(LayerTimerKey(channel, layer))

    def _fire(self, channel: int, layer: int, item_id: str) -> None:
        state = self.store.get(channel, layer)
        item = state.current_item if state else None
        if not self._eligible(state, item) or item.id != item_id or not state.is_playing:
            logger.debug("Image timer for %d-%d no longer applies", channel, layer)
            return
        intent = self.store.request_advance(channel, layer, REASON_IMAGE_TIMEOUT)
        if intent is not None and self.on_advance:
            self.on_advance(intent)
