import pytest

from be_rcon.dispatcher import EventDispatcher, EventKind, decode_message
from be_rcon.errors import TransportError


@pytest.mark.asyncio
async def test_invoke_without_handler_is_noop():
    d = EventDispatcher()
    await d.invoke(EventKind.SERVER_MESSAGE, "nobody listens")


@pytest.mark.asyncio
async def test_register_replaces_previous_handler():
    d = EventDispatcher()
    first, second = [], []
    d.register(EventKind.COMMAND_MESSAGE, first.append)
    d.register(EventKind.COMMAND_MESSAGE, second.append)
    await d.invoke(EventKind.COMMAND_MESSAGE, "players")
    assert first == []
    assert second == ["players"]


@pytest.mark.asyncio
async def test_unregister():
    d = EventDispatcher()
    got = []
    d.register(EventKind.SERVER_MESSAGE, got.append)
    d.unregister(EventKind.SERVER_MESSAGE)
    d.unregister(EventKind.SERVER_MESSAGE)
    await d.invoke(EventKind.SERVER_MESSAGE, "x")
    assert got == []


@pytest.mark.asyncio
async def test_coroutine_handlers_are_awaited():
    d = EventDispatcher()
    got = []

    async def handler(message):
        got.append(message)

    d.register(EventKind.SERVER_MESSAGE, handler)
    await d.invoke(EventKind.SERVER_MESSAGE, "(Global) Admin: restart in 5")
    assert got == ["(Global) Admin: restart in 5"]


@pytest.mark.asyncio
async def test_subscribers_fire_after_primary_and_can_leave():
    d = EventDispatcher()
    order = []
    d.register(EventKind.SERVER_MESSAGE, lambda m: order.append(("primary", m)))
    unsubscribe = d.subscribe(EventKind.SERVER_MESSAGE, lambda m: order.append(("extra", m)))
    await d.invoke(EventKind.SERVER_MESSAGE, "a")
    unsubscribe()
    unsubscribe()
    await d.invoke(EventKind.SERVER_MESSAGE, "b")
    assert order == [("primary", "a"), ("extra", "a"), ("primary", "b")]


@pytest.mark.asyncio
async def test_failing_handler_is_reported_as_server_error():
    d = EventDispatcher()
    errors = []

    def broken(message):
        raise RuntimeError("boom")

    d.register(EventKind.COMMAND_MESSAGE, broken)
    d.register(EventKind.SERVER_ERROR, errors.append)
    await d.invoke(EventKind.COMMAND_MESSAGE, "players")
    assert len(errors) == 1
    assert "boom" in errors[0]


@pytest.mark.asyncio
async def test_failing_error_handler_does_not_recurse():
    d = EventDispatcher()
    calls = []

    def broken(message):
        calls.append(message)
        raise RuntimeError("still broken")

    d.register(EventKind.SERVER_ERROR, broken)
    await d.invoke(EventKind.SERVER_ERROR, "first")
    assert calls == ["first"]


@pytest.mark.asyncio
async def test_handle_server_message_acks_after_dispatch():
    d = EventDispatcher()
    events = []
    d.register(EventKind.SERVER_MESSAGE, lambda m: events.append(("msg", m)))

    async def ack():
        events.append(("ack", None))

    await d.handle_server_message("hello", ack)
    assert events == [("msg", "hello"), ("ack", None)]


@pytest.mark.asyncio
async def test_ack_failure_goes_to_server_error():
    d = EventDispatcher()
    errors = []
    d.register(EventKind.SERVER_ERROR, errors.append)

    async def ack():
        raise TransportError("send failed: connection refused")

    await d.handle_server_message("hello", ack)
    assert errors == ["failed to acknowledge server message: send failed: connection refused"]


@pytest.mark.asyncio
async def test_handle_command_message_only_invokes_command_handler():
    d = EventDispatcher()
    cmd, srv = [], []
    d.register(EventKind.COMMAND_MESSAGE, cmd.append)
    d.register(EventKind.SERVER_MESSAGE, srv.append)
    await d.handle_command_message("Players on server:")
    assert cmd == ["Players on server:"]
    assert srv == []


def test_decode_message_drops_header(datagram):
    assert decode_message(datagram(0x02, 3, "Привет".encode("utf-8"))) == "Привет"
    assert decode_message(datagram(0x01, 3, b"bad \xc3")) == "bad \ufffd"
