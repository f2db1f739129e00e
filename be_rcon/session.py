# be_rcon/session.py
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Optional

from .config import ClientConfig
from .dispatcher import EventDispatcher, EventKind, MessageHandler
from .endpoint import Address, DatagramEndpoint
from .errors import RConError, ReceiveTimeout, SessionClosedError
from .packet import PacketType, build_ack_packet, build_command_packet, build_login_packet
from .receiver import ReceiveLoop

log = logging.getLogger(__name__)


@dataclass
class SessionState:
    pending_send: bool = False
    sequence: int = 0

    def next_sequence(self) -> int:
        seq = self.sequence
        self.sequence = (seq + 1) & 0xFF
        return seq


class Session:
    """
    One logged-in conversation with a BattlEye RCon server.

    Typical use::

        async with await Session.create("127.0.0.1:2306") as s:
            s.register(EventKind.SERVER_MESSAGE, print)
            s.start_listening()
            if await s.login(password):
                s.start_keep_alive()
                print(await s.command("players"))
    """

    def __init__(self, endpoint, config: Optional[ClientConfig] = None,
                 dispatcher: Optional[EventDispatcher] = None) -> None:
        self.config = config or ClientConfig()
        self.endpoint = endpoint
        self.dispatcher = dispatcher or EventDispatcher()
        self.state = SessionState()
        self._receiver = ReceiveLoop(
            endpoint,
            self.dispatcher,
            self._send_ack,
            poll_interval=self.config.poll_interval,
            verify_checksums=self.config.verify_checksums,
        )
        self._listen_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    async def create(cls, server_addr: str, bind_addr: Optional[str] = None,
                     config: Optional[ClientConfig] = None) -> "Session":
        config = config or ClientConfig()
        endpoint = await DatagramEndpoint.open(
            server_addr,
            bind_addr or config.bind,
            max_datagram=config.max_datagram,
        )
        return cls(endpoint, config)

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def server_address(self) -> Address:
        return self.endpoint.server

    @property
    def listening(self) -> bool:
        return self._listen_task is not None and not self._listen_task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def register(self, kind: EventKind, handler: MessageHandler) -> None:
        self.dispatcher.register(kind, handler)

    # --- sending ---------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("session is closed")

    def _transmit(self, command: str) -> int:
        self._ensure_open()
        self.state.pending_send = True
        try:
            sequence = self.state.next_sequence()
            self.endpoint.send(build_command_packet(sequence, command))
        finally:
            self.state.pending_send = False
        log.debug("sent command seq=%d %r", sequence, command)
        return sequence

    async def _send_ack(self, sequence: int) -> None:
        self._ensure_open()
        self.endpoint.send(build_ack_packet(sequence))
        log.debug("acknowledged server message seq=%d", sequence)

    async def login(self, password: str, timeout: Optional[float] = None) -> bool:
        """
        Send the password and wait for the server's verdict.

        Returns True only for a login reply (type 0x00) whose result byte is
        0x01. Any other reply counts as a failed login and clears the
        pending-send flag. With no `timeout` the wait is unbounded.
        """
        self._ensure_open()
        timeout = self.config.login_timeout if timeout is None else timeout
        packet = build_login_packet(password)
        if self.listening:
            waiter = self._receiver.expect_login()
            self.endpoint.send(packet)
            try:
                reply = await asyncio.wait_for(waiter, timeout)
            except asyncio.TimeoutError:
                raise ReceiveTimeout(f"no login reply within {timeout}s") from None
        else:
            self.endpoint.send(packet)
            reply = await self.endpoint.receive(timeout)

        if len(reply) > 7 and reply[7] == PacketType.LOGIN:
            accepted = len(reply) > 8 and reply[8] == 0x01
            log.info("login %s by %s:%d", "accepted" if accepted else "rejected", *self.server_address)
            return accepted
        log.warning("unexpected reply to login (%d bytes)", len(reply))
        self.state.pending_send = False
        return False

    async def send_command(self, command: str) -> int:
        """Fire a command without waiting for its output. Returns the sequence used."""
        return self._transmit(command)

    async def send_keep_alive(self) -> None:
        await self.send_command("")

    async def command(self, command: str, timeout: Optional[float] = None) -> str:
        """Send a command and wait for its (reassembled) response text."""
        if not self.listening:
            raise RConError("start_listening() must be called before command()")
        timeout = self.config.command_timeout if timeout is None else timeout
        sequence = self._transmit(command)
        waiter = self._receiver.expect_response(sequence)
        try:
            return await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            raise ReceiveTimeout(f"no response to {command!r} within {timeout}s") from None
        finally:
            self._receiver.discard_response(sequence)

    # --- background tasks ------------------------------------------------

    def start_listening(self) -> asyncio.Task:
        self._ensure_open()
        if not self.listening:
            self._listen_task = asyncio.create_task(self._receiver.run(), name="bercon-receive")
        return self._listen_task

    def start_keep_alive(self) -> asyncio.Task:
        self._ensure_open()
        if self._keepalive_task is None or self._keepalive_task.done():
            self._keepalive_task = asyncio.create_task(self._keep_alive_loop(), name="bercon-keepalive")
        return self._keepalive_task

    async def _keep_alive_loop(self) -> None:
        interval = self.config.keepalive_interval
        while not self._closed:
            await asyncio.sleep(interval)
            try:
                await self.send_keep_alive()
            except SessionClosedError:
                break
            except RConError as e:
                log.warning("keep-alive failed: %s", e)
                await self.dispatcher.invoke(EventKind.SERVER_ERROR, f"keep-alive failed: {e}")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._receiver.stop()
        current = asyncio.current_task()
        tasks = [t for t in (self._listen_task, self._keepalive_task) if t is not None and t is not current]
        for t in tasks:
            t.cancel()
        for t in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await t
        self._receiver.fail_waiters(SessionClosedError("session closed"))
        self.endpoint.close()
        log.debug("session to %s:%d closed", *self.server_address)
