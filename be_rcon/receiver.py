# be_rcon/receiver.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .dispatcher import EventDispatcher, EventKind, decode_message
from .errors import ProtocolError, ReceiveTimeout, SessionClosedError, TransportError
from .packet import MESSAGE_OFFSET, PacketType, decode_payload, parse_packet, split_multipart

log = logging.getLogger(__name__)

POLL_INTERVAL = 0.1  # seconds between checks of the stop signal


class ReceiveLoop:
    """
    Reads datagrams from an endpoint, classifies them by the type byte at
    offset 7 and routes them:

      0x02        -> SERVER_MESSAGE, then an ack echoing its sequence
      0x01, 0x00  -> COMMAND_MESSAGE (multi-part responses joined first)
      other       -> ProtocolError, reported through SERVER_ERROR

    While a login is pending, the next datagram from the server goes to it
    whatever its type. Otherwise datagrams of 9 bytes or less carry no
    message and only serve to resolve an empty command response.
    """

    def __init__(self, endpoint, dispatcher: EventDispatcher,
                 send_ack: Callable[[int], Awaitable[None]],
                 poll_interval: float = POLL_INTERVAL,
                 verify_checksums: bool = True) -> None:
        self._endpoint = endpoint
        self._dispatcher = dispatcher
        self._send_ack = send_ack
        self._poll_interval = poll_interval
        self._verify = verify_checksums
        self._stop = asyncio.Event()
        # sequence -> (total, {index: chunk})
        self._parts: dict[int, tuple[int, dict[int, bytes]]] = {}
        self._login_waiter: Optional[asyncio.Future] = None
        self._response_waiters: dict[int, asyncio.Future] = {}

    # --- waiters ---------------------------------------------------------

    def expect_login(self) -> asyncio.Future:
        if self._login_waiter is not None and not self._login_waiter.done():
            self._login_waiter.cancel()
        self._login_waiter = asyncio.get_running_loop().create_future()
        return self._login_waiter

    def expect_response(self, sequence: int) -> asyncio.Future:
        old = self._response_waiters.get(sequence)
        if old is not None and not old.done():
            # sequence wrapped round before the server answered
            old.set_exception(ReceiveTimeout(f"sequence {sequence} reused before a response arrived"))
        self._parts.pop(sequence, None)
        fut = asyncio.get_running_loop().create_future()
        self._response_waiters[sequence] = fut
        return fut

    def discard_response(self, sequence: int) -> None:
        self._parts.pop(sequence, None)
        fut = self._response_waiters.pop(sequence, None)
        if fut is not None and not fut.done():
            fut.cancel()

    def fail_waiters(self, exc: Exception) -> None:
        waiters = list(self._response_waiters.values())
        if self._login_waiter is not None:
            waiters.append(self._login_waiter)
        for fut in waiters:
            if not fut.done():
                fut.set_exception(exc)
        self._response_waiters.clear()
        self._login_waiter = None

    def _resolve(self, sequence: Optional[int], message: str) -> None:
        if sequence is None:
            return
        fut = self._response_waiters.pop(sequence, None)
        if fut is not None and not fut.done():
            fut.set_result(message)

    # --- loop ------------------------------------------------------------

    def stop(self) -> None:
        self._stop.set()

    async def run(self) -> None:
        log.debug("receive loop started")
        while not self._stop.is_set():
            try:
                datagram = await self._endpoint.receive(self._poll_interval)
            except ReceiveTimeout:
                continue
            except SessionClosedError:
                break
            except (ProtocolError, TransportError) as e:
                await self._report(e)
                continue
            await self.process(datagram)
        log.debug("receive loop stopped")

    async def process(self, datagram: bytes) -> None:
        if self._deliver_login(datagram):
            return
        if len(datagram) <= MESSAGE_OFFSET:
            self._resolve_empty(datagram)
            return
        try:
            packet = parse_packet(datagram, verify=self._verify)
        except ProtocolError as e:
            await self._report(e)
            return

        if not packet.known_type:
            await self._report(ProtocolError(f"unknown packet type 0x{packet.type:02x} ({packet.size} bytes)"))
        elif packet.type == PacketType.SERVER_MESSAGE:
            sequence = packet.sequence
            await self._dispatcher.handle_server_message(decode_message(datagram), lambda: self._send_ack(sequence))
        else:
            try:
                part = split_multipart(packet.payload)
            except ProtocolError as e:
                await self._report(e)
                return
            message = decode_message(datagram) if part is None else self._assemble(packet.sequence, *part)
            if message is None:
                return
            await self._dispatcher.handle_command_message(message)
            self._resolve(packet.sequence, message)

    def _deliver_login(self, datagram: bytes) -> bool:
        # a pending login takes whatever the server says next
        waiter = self._login_waiter
        if waiter is None or waiter.done():
            return False
        self._login_waiter = None
        waiter.set_result(datagram)
        return True

    def _resolve_empty(self, datagram: bytes) -> None:
        if len(datagram) == MESSAGE_OFFSET and datagram[7] == PacketType.COMMAND:
            self._resolve(datagram[8], "")

    def _assemble(self, sequence: int, total: int, index: int, chunk: bytes) -> Optional[str]:
        known_total, parts = self._parts.get(sequence, (total, {}))
        if known_total != total:
            log.debug("sequence %d: part count changed %d -> %d, dropping stale parts", sequence, known_total, total)
            parts = {}
        parts[index] = chunk
        self._parts[sequence] = (total, parts)
        log.debug("sequence %d: part %d/%d", sequence, index + 1, total)
        if any(i not in parts for i in range(total)):
            return None
        del self._parts[sequence]
        return decode_payload(b"".join(parts[i] for i in range(total)))

    async def _report(self, error: Exception) -> None:
        log.warning("%s", error)
        await self._dispatcher.invoke(EventKind.SERVER_ERROR, str(error))
