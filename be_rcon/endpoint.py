# be_rcon/endpoint.py
from __future__ import annotations

import asyncio
import ipaddress
import logging
from typing import Optional, Union

from .errors import AddressParseError, BindError, ProtocolError, ReceiveTimeout, SessionClosedError, TransportError
from .packet import MAX_DATAGRAM

log = logging.getLogger(__name__)

Address = tuple[str, int]
_Inbound = Union[bytes, Exception]


def parse_address(text: str) -> Address:
    """
    Parse "host:port" or "[v6host]:port" into a (host, port) tuple.
    Host must be an IP literal; "localhost" is accepted as 127.0.0.1.
    """
    text = (text or "").strip()
    if text.startswith("["):
        host, sep, port = text[1:].partition("]:")
    else:
        host, sep, port = text.rpartition(":")
    if not sep or not host or not port:
        raise AddressParseError(f"expected host:port, got {text!r}")
    if host == "localhost":
        host = "127.0.0.1"
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        raise AddressParseError(f"not an IP address: {host!r}") from None
    if not (port.isascii() and port.isdigit()) or not 0 <= int(port) <= 65535:
        raise AddressParseError(f"bad port: {port!r}")
    return str(ip), int(port)


class _RConDatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, inbox: asyncio.Queue, peer: Address, max_datagram: int) -> None:
        self._inbox = inbox
        self._peer = peer
        self._max_datagram = max_datagram

    def datagram_received(self, data: bytes, addr) -> None:
        if (addr[0], addr[1]) != self._peer:
            log.debug("dropping datagram from unexpected peer %s", addr)
            return
        if len(data) > self._max_datagram:
            self._inbox.put_nowait(
                ProtocolError(f"discarded oversized datagram ({len(data)} > {self._max_datagram} bytes)")
            )
            return
        self._inbox.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        self._inbox.put_nowait(TransportError(str(exc)))


class DatagramEndpoint:
    """
    A bound UDP socket talking to one server. Received datagrams (and
    transport errors) are queued in arrival order; `receive` hands them
    out one at a time. Sends go straight to the transport.
    """

    def __init__(self, transport: asyncio.DatagramTransport, inbox: asyncio.Queue, server: Address) -> None:
        self._transport = transport
        self._inbox = inbox
        self.server = server
        self._closed = False

    @classmethod
    async def open(cls, server_addr: str, bind_addr: str = "0.0.0.0:0",
                   max_datagram: int = MAX_DATAGRAM) -> "DatagramEndpoint":
        server = parse_address(server_addr)
        local = parse_address(bind_addr)
        loop = asyncio.get_running_loop()
        inbox: asyncio.Queue = asyncio.Queue()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _RConDatagramProtocol(inbox, server, max_datagram),
                local_addr=local,
            )
        except OSError as e:
            raise BindError(f"cannot bind {bind_addr}: {e}") from e
        log.debug("bound %s for server %s:%d", transport.get_extra_info("sockname"), *server)
        return cls(transport, inbox, server)

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, data: bytes) -> None:
        if self._closed:
            raise SessionClosedError("endpoint is closed")
        try:
            self._transport.sendto(data, self.server)
        except OSError as e:
            raise TransportError(f"send failed: {e}") from e

    async def receive(self, timeout: Optional[float] = None) -> bytes:
        if self._closed and self._inbox.empty():
            raise SessionClosedError("endpoint is closed")
        try:
            item: _Inbound = await asyncio.wait_for(self._inbox.get(), timeout)
        except asyncio.TimeoutError:
            raise ReceiveTimeout(f"no datagram within {timeout}s") from None
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._transport.close()
        # wake anyone blocked in receive()
        self._inbox.put_nowait(SessionClosedError("endpoint is closed"))
