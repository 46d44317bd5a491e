"""Tests for the UDP telemetry listener."""
import asyncio

from controller.listener import TelemetryListener
from tests.osc_packets import time_message


def test_feed_hands_payload_to_handler():
    received = []
    listener = TelemetryListener(received.append)
    listener.feed(b"abc", ("10.0.0.2", 6250))
    assert received == [b"abc"]
    assert listener.packets_received == 1
    assert listener.last_source == ("10.0.0.2", 6250)
    assert not listener.is_running


def test_handler_failure_is_contained():
    def handler(data):
        raise ValueError("bad")

    listener = TelemetryListener(handler)
    listener.feed(b"x")
    listener.feed(b"y")
    assert listener.packets_received == 2


def test_receives_datagrams_over_loopback():
    async def scenario():
        received = []
        got = asyncio.Event()

        def handler(data):
            received.append(data)
            got.set()

        listener = TelemetryListener(handler, host="127.0.0.1", port=0)
        await listener.start()
        host, port = listener.local_address[:2]

        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            asyncio.DatagramProtocol, remote_addr=(host, port)
        )
        packet = time_message(1, 10, 1.0, 10.0)
        transport.sendto(packet)
        await asyncio.wait_for(got.wait(), timeout=2.0)
        transport.close()
        await listener.stop()
        return received, packet, listener

    received, packet, listener = asyncio.run(scenario())
    assert received == [packet]
    assert not listener.is_running
    assert listener.local_address is None
