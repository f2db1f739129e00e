# be_rcon/console_ui.py
from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

from prompt_toolkit.application import Application
from prompt_toolkit.document import Document
from prompt_toolkit.filters import has_focus
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import HSplit, Layout
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Label, TextArea

from .dispatcher import EventKind
from .errors import RConError
from .session import Session

LOG_TRIM_LIMIT = 2_000_000  # keep last ~2MB in the in-memory text area


async def run_console_ui(session: Session) -> None:
    """Fullscreen RCon console: server chatter on top, an input bar below."""
    host, port = session.server_address

    log = TextArea(
        style="class:log",
        focusable=False,
        scrollbar=True,
        wrap_lines=False,
        read_only=False,  # programmatic inserts
    )
    input_field = TextArea(height=1, prompt="> ", multiline=False)
    status = Label(
        text=f"BattlEye RCon — {host}:{port}    (Ctrl-C / Esc to exit)",
        style="class:status",
    )

    kb = KeyBindings()
    pending: set[asyncio.Task] = set()

    async def run_command(cmd: str) -> None:
        try:
            out = await session.command(cmd)
            _append(app, log, f"$ {cmd}\n{out}\n" if out else f"$ {cmd}\n")
        except RConError as e:
            _append(app, log, f"[rcon error] {e}\n")

    @kb.add("enter", filter=has_focus(input_field))
    def _(event) -> None:
        cmd = (input_field.text or "").strip()
        input_field.buffer.document = Document(text="")
        if not cmd:
            return
        # commands run concurrently so a slow reply does not freeze the input bar
        task = asyncio.get_running_loop().create_task(run_command(cmd))
        pending.add(task)
        task.add_done_callback(pending.discard)

    @kb.add("c-c")
    @kb.add("escape")
    def _(event) -> None:
        event.app.exit()

    root = HSplit([status, log, input_field])
    app = Application(
        layout=Layout(root, focused_element=input_field),
        key_bindings=kb,
        full_screen=True,
        style=Style.from_dict(
            {
                "log": "bg:#0e162b #d1d5db",
                "status": "reverse",
            }
        ),
    )

    session.register(EventKind.SERVER_MESSAGE, lambda m: _append(app, log, m + "\n"))
    session.register(EventKind.SERVER_ERROR, lambda m: _append(app, log, f"[error] {m}\n"))
    _append(app, log, f"[rcon] connected to {host}:{port}. Try: players, admins, bans\n")

    try:
        await app.run_async()
    finally:
        for t in list(pending):
            t.cancel()
        for t in list(pending):
            with contextlib.suppress(asyncio.CancelledError):
                await t


def _append(app: Optional[Application], area: TextArea, text: str) -> None:
    """
    Append text to the TextArea safely and keep the buffer size bounded.
    """
    buf = area.buffer
    # Insert
    buf.insert_text(text, move_cursor=True)
    # Trim if huge (keep last ~2MB)
    if len(buf.text) > LOG_TRIM_LIMIT:
        new_text = buf.text[-LOG_TRIM_LIMIT:]
        buf.document = Document(new_text, cursor_position=len(new_text))
    # Ask UI to redraw; the loop may already be gone during shutdown
    if app is not None:
        with contextlib.suppress(RuntimeError):
            app.invalidate()
