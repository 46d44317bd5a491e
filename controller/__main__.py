"""LayerSync Controller entry point."""
from __future__ import annotations
import asyncio
import logging
import sys
from pathlib import Path

from controller.discovery import StatusDiscovery
from controller.heartbeat import HeartbeatMonitor, tcp_probe
from controller.listener import TelemetryListener
from controller.session import PlayoutSession
from controller.status_server import StatusServer
from core.config import Config, load_config
from core.logging_utils import setup_rotating_logger
from core.playlist import Macro, MacroLibrary

logger = logging.getLogger("layersync.controller")


def _unattached_executor(macro: Macro) -> bool:
    # No command layer in standalone mode: report, do not execute
    logger.warning("Macro %s fired but no command layer is attached", macro.id)
    return False


async def _watch_command_connection(heartbeat: HeartbeatMonitor, status: StatusServer) -> None:
    """Bring the heartbeat up whenever the command port answers again."""
    while True:
        if not heartbeat.is_running:
            try:
                await asyncio.wait_for(heartbeat.probe(), timeout=heartbeat.timeout_s)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("Command port not reachable: %s", e)
            else:
                logger.info("Command connection up")
                status.publish_connection(True)
                heartbeat.start()
        await asyncio.sleep(heartbeat.interval_s)


async def run(config: Config, log_dir: Path) -> None:
    settings = config.controller
    session = PlayoutSession(
        config, MacroLibrary(), _unattached_executor,
        journal_dir=log_dir if settings.journal else None,
    )

    status = StatusServer(session, port=settings.status_port)
    status.attach()

    listener = TelemetryListener(session.handle_datagram, host=settings.osc_host, port=settings.osc_port)

    heartbeat = HeartbeatMonitor(
        lambda: tcp_probe(settings.command_host, settings.command_port),
        interval_s=settings.heartbeat_interval_s,
    )
    heartbeat.on_connection_lost = lambda reason: status.publish_connection(False, reason)

    discovery = None
    if settings.advertise:
        discovery = StatusDiscovery(status.server_id, settings.status_port, [c.id for c in config.channels])

    await listener.start()
    await status.start()
    if discovery:
        await discovery.start()

    try:
        await _watch_command_connection(heartbeat, status)
    finally:
        heartbeat.stop()
        session.close()
        if discovery:
            await discovery.stop()
        await status.stop()
        await listener.stop()


def main() -> None:
    config = load_config(Path(sys.argv[1])) if len(sys.argv) > 1 else Config()

    log_dir = Path(config.controller.log_dir)
    console_level = logging.getLevelName(config.controller.log_level.upper())
    if not isinstance(console_level, int):
        console_level = logging.INFO
    setup_rotating_logger("layersync", log_dir, console_level=console_level)
    logger.info("LayerSync Controller starting")

    errors = config.validate()
    if errors:
        for err in errors:
            logger.error("Config: %s", err)
        sys.exit(2)

    try:
        asyncio.run(run(config, log_dir))
    except KeyboardInterrupt:
        logger.info("LayerSync Controller stopped")


if __name__ == "__main__":
    main()
