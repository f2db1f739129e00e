# be_rcon/dispatcher.py
from __future__ import annotations

import enum
import inspect
import logging
from typing import Any, Awaitable, Callable, Protocol, Union

from .errors import RConError
from .packet import MESSAGE_OFFSET, decode_payload

log = logging.getLogger(__name__)


class EventKind(enum.Enum):
    COMMAND_MESSAGE = "command_message"
    SERVER_MESSAGE = "server_message"
    SERVER_ERROR = "server_error"


class MessageHandler(Protocol):
    def __call__(self, message: str) -> Union[None, Awaitable[Any]]: ...


def decode_message(datagram: bytes) -> str:
    """Text of a received datagram with the 9-byte header and type prefix dropped."""
    return decode_payload(datagram[MESSAGE_OFFSET:])


class EventDispatcher:
    """
    Maps each EventKind to one primary handler (last `register` wins) plus
    any number of extra subscribers. Handlers may be plain callables or
    coroutine functions; a handler that raises is reported through
    SERVER_ERROR instead of unwinding the caller.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventKind, MessageHandler] = {}
        self._subscribers: dict[EventKind, list[MessageHandler]] = {k: [] for k in EventKind}

    def register(self, kind: EventKind, handler: MessageHandler) -> None:
        self._handlers[kind] = handler

    def unregister(self, kind: EventKind) -> None:
        self._handlers.pop(kind, None)

    def subscribe(self, kind: EventKind, handler: MessageHandler) -> Callable[[], None]:
        self._subscribers[kind].append(handler)

        def _unsubscribe() -> None:
            try:
                self._subscribers[kind].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    async def invoke(self, kind: EventKind, message: str) -> None:
        handlers = list(self._subscribers[kind])
        primary = self._handlers.get(kind)
        if primary is not None:
            handlers.insert(0, primary)
        for handler in handlers:
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                if kind is EventKind.SERVER_ERROR:
                    log.exception("error handler failed")
                    continue
                log.warning("%s handler failed: %s", kind.value, e)
                await self.invoke(EventKind.SERVER_ERROR, f"{kind.value} handler failed: {e}")

    async def handle_server_message(self, message: str, ack: Callable[[], Awaitable[None]]) -> None:
        await self.invoke(EventKind.SERVER_MESSAGE, message)
        try:
            await ack()
        except RConError as e:
            await self.invoke(EventKind.SERVER_ERROR, f"failed to acknowledge server message: {e}")

    async def handle_command_message(self, message: str) -> None:
        await self.invoke(EventKind.COMMAND_MESSAGE, message)
