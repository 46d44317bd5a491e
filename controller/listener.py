"""LayerSync UDP telemetry listener."""
from __future__ import annotations
import asyncio
import logging
from typing import Callable, Optional

from core.config import DEFAULT_OSC_PORT

logger = logging.getLogger("layersync.controller.listener")

DatagramHandler = Callable[[bytes], object]


class _TelemetryProtocol(asyncio.DatagramProtocol):
    def __init__(self, listener: "TelemetryListener"):
        self.listener = listener

    def datagram_received(self, data: bytes, addr) -> None:
        self.listener.feed(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning("Telemetry socket error: %s", exc)


class TelemetryListener:
    """Receives telemetry datagrams and hands each payload to `handler`."""

    def __init__(self, handler: DatagramHandler, host: str = "0.0.0.0", port: int = DEFAULT_OSC_PORT):
        self.handler = handler
        self.host = host
        self.port = port
        self.packets_received = 0
        self.last_source: Optional[tuple] = None
        self._transport: Optional[asyncio.DatagramTransport] = None

    async def start(self) -> None:
        if self._transport is not None:
            await self.stop()
        loop = asyncio.get_running_loop()
        self._transport, _ = await loop.create_datagram_endpoint(
            lambda: _TelemetryProtocol(self), local_addr=(self.host, self.port)
        )
        logger.info("Telemetry listener on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            logger.info("Telemetry listener stopped")

    @property
    def is_running(self) -> bool:
        return self._transport is not None

    @property
    def local_address(self) -> Optional[tuple]:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")

    def feed(self, data: bytes, addr=None) -> None:
        self.packets_received += 1
        self.last_source = addr
        try:
            self.handler(data)
        except Exception:
            logger.exception("Telemetry handler failed (%d bytes from %s)", len(data), addr)
