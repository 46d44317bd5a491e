"""LayerSync command-connection heartbeat (independent of telemetry)."""
from __future__ import annotations
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("layersync.controller.heartbeat")

LivenessProbe = Callable[[], Awaitable[object]]

DEFAULT_INTERVAL_S = 5.0


class HeartbeatMonitor:
    """
    Polls a lightweight liveness call on the command connection every
    `interval_s`. The first failure marks the connection lost, notifies once,
    and stops polling until start() is called again.
    """

    def __init__(self, probe: LivenessProbe, interval_s: float = DEFAULT_INTERVAL_S,
                 timeout_s: Optional[float] = None):
        self.probe = probe
        self.interval_s = interval_s
        self.timeout_s = timeout_s if timeout_s is not None else interval_s
        self.is_connected = False
        self.last_ok: Optional[float] = None
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

        self.on_connection_lost: Optional[Callable[[str], None]] = None

    def start(self) -> None:
        self.stop()
        self.is_connected = True
        self.last_error = None
        self._task = asyncio.create_task(self._loop())

    def stop(self) -> None:
        if self._task:
            self._task.cancel()
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while self.is_connected:
            await asyncio.sleep(self.interval_s)
            if not await self.check():
                break

    async def check(self) -> bool:
        try:
            await asyncio.wait_for(self.probe(), timeout=self.timeout_s)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__
            self._lost(reason)
            return False
        self.last_ok = time.time()
        return True

    def _lost(self, reason: str) -> None:
        if not self.is_connected:
            return
        self.is_connected = False
        self.last_error = reason
        logger.warning("Heartbeat failed, command connection lost: %s", reason)
        if self.on_connection_lost:
            self.on_connection_lost(reason)


async def tcp_probe(host: str, port: int) -> None:
    """Liveness check: the command port accepts a TCP connection."""
    _, writer = await asyncio.open_connection(host, port)
    writer.close()
    await writer.wait_closed()
