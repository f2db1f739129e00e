import asyncio
import struct
import zlib

import pytest

from be_rcon.errors import ReceiveTimeout, SessionClosedError, TransportError


class FakeEndpoint:
    """Stands in for DatagramEndpoint: records sends, serves queued datagrams."""

    def __init__(self, server=("127.0.0.1", 2306)):
        self.server = server
        self.sent = []
        self.inbox = asyncio.Queue()
        self.close_calls = 0
        self.fail_sends = False

    def send(self, data):
        if self.fail_sends:
            raise TransportError("network is unreachable")
        self.sent.append(data)

    async def receive(self, timeout=None):
        try:
            item = await asyncio.wait_for(self.inbox.get(), timeout)
        except asyncio.TimeoutError:
            raise ReceiveTimeout("nothing received") from None
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.close_calls += 1
        self.inbox.put_nowait(SessionClosedError("closed"))


def make_datagram(ptype, sequence=None, payload=b""):
    body = bytes([0xFF, ptype])
    if sequence is not None:
        body += bytes([sequence])
    body += payload
    return b"BE" + struct.pack("<I", zlib.crc32(body) & 0xFFFFFFFF) + body


@pytest.fixture
def endpoint():
    return FakeEndpoint()


@pytest.fixture
def datagram():
    return make_datagram
