"""LayerSync status feed discovery via mDNS/zeroconf."""
from __future__ import annotations
import logging
import socket
from typing import Optional

from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

logger = logging.getLogger("layersync.controller.discovery")

SERVICE_TYPE = "_layersync._tcp.local."


def build_service_info(server_id: str, port: int, ip: str, channels: list[int]) -> ServiceInfo:
    return ServiceInfo(
        SERVICE_TYPE,
        f"LayerSync-{server_id[:8]}.{SERVICE_TYPE}",
        addresses=[socket.inet_aton(ip)],
        port=port,
        properties={
            b"server_id": server_id.encode(),
            b"channels": ",".join(str(c) for c in channels).encode(),
            b"path": b"/",
            b"version": b"1",
        },
    )


class StatusDiscovery:
    """Advertises the status feed via mDNS so remote panels can find it."""

    def __init__(self, server_id: str, port: int, channels: Optional[list[int]] = None):
        self.server_id = server_id
        self.port = port
        self.channels = channels or []
        self._zeroconf: Optional[AsyncZeroconf] = None
        self._info: Optional[ServiceInfo] = None

    async def start(self) -> bool:
        try:
            ip = socket.gethostbyname(socket.gethostname())
            self._zeroconf = AsyncZeroconf()
            self._info = build_service_info(self.server_id, self.port, ip, self.channels)
            await self._zeroconf.async_register_service(self._info)
            logger.info("mDNS advertisement started on %s:%d", ip, self.port)
            return True
        except Exception as e:
            logger.warning("Failed to start mDNS: %s", e)
            return False

    async def stop(self) -> None:
        if self._zeroconf and self._info:
            try:
                await self._zeroconf.async_unregister_service(self._info)
                await self._zeroconf.async_close()
            except Exception as e:
                logger.warning("Error stopping mDNS: %s", e)
        self._zeroconf = None
        self._info = None
