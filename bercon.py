#!/usr/bin/env python3
from __future__ import annotations
import argparse, asyncio, getpass, logging, sys
from typing import Optional
from be_rcon.config import ClientConfig, load_config
from be_rcon.dispatcher import EventKind
from be_rcon.errors import RConError
from be_rcon.session import Session

LOGIN_TIMEOUT = 10.0  # seconds; the library default waits forever

# --- helpers -----------------------------------------------------------------

def build_config(args) -> ClientConfig:
    cfg = load_config(
        args.config,
        server=args.server,
        bind=args.bind,
        password=args.password,
        command_timeout=getattr(args, "timeout", None),
    )
    if not cfg.server:
        raise SystemExit("No server given. Pass --server HOST:PORT, set BERCON_SERVER, or use --config beserver.cfg")
    return cfg

def ask_password(cfg: ClientConfig) -> str:
    if cfg.password is not None:
        return cfg.password
    return getpass.getpass("RCon password: ")

async def open_session(cfg: ClientConfig, password: str) -> Optional[Session]:
    """Bind, start listening and log in. Returns None (session closed) on a rejected login."""
    session = await Session.create(cfg.server, config=cfg)
    session.start_listening()
    try:
        ok = await session.login(password, timeout=cfg.login_timeout or LOGIN_TIMEOUT)
    except RConError:
        await session.close()
        raise
    if not ok:
        await session.close()
        print("Login failed: wrong password or not a BattlEye RCon port.", file=sys.stderr)
        return None
    session.start_keep_alive()
    return session

# --- exec / console ----------------------------------------------------------

async def _exec(cfg: ClientConfig, password: str, command: str) -> int:
    session = await open_session(cfg, password)
    if session is None:
        return 1
    async with session:
        out = await session.command(command)
        if out:
            print(out)
    return 0

def do_exec(args):
    cfg = build_config(args)
    return asyncio.run(_exec(cfg, ask_password(cfg), " ".join(args.command)))

async def _plain_console(session: Session) -> None:
    session.register(EventKind.SERVER_MESSAGE, lambda m: print(m, flush=True))
    session.register(EventKind.SERVER_ERROR, lambda m: print(f"[error] {m}", file=sys.stderr, flush=True))
    print("Interactive RCon. Type /quit to exit.")
    while True:
        try:
            cmd = (await asyncio.to_thread(input, "> ")).strip()
        except EOFError:
            break
        if cmd.lower() in ("/quit", "quit", "exit"): break
        if not cmd: continue
        try:
            out = await session.command(cmd)
            if out:
                print(out)
        except RConError as e:
            print(f"[rcon error] {e}")

async def _console(cfg: ClientConfig, password: str, plain: bool) -> int:
    session = await open_session(cfg, password)
    if session is None:
        return 1
    async with session:
        if not plain:
            try:
                from be_rcon.console_ui import run_console_ui
            except ImportError as e:
                print(f"prompt_toolkit UI not available ({e}); falling back to plain console.", flush=True)
            else:
                await run_console_ui(session)
                return 0
        await _plain_console(session)
    return 0

def do_console(args):
    cfg = build_config(args)
    try:
        return asyncio.run(_console(cfg, ask_password(cfg), args.plain))
    except KeyboardInterrupt:
        return 0

# --- argparse ----------------------------------------------------------------

def build_parser():
    p = argparse.ArgumentParser(prog="bercon.py", description="BattlEye RCon client.")
    p.add_argument("-s", "--server", help="Server HOST:PORT (default: $BERCON_SERVER or --config)")
    p.add_argument("--bind", help="Local HOST:PORT to bind (default 0.0.0.0:0)")
    p.add_argument("--config", help="Read server and password from a beserver.cfg")
    p.add_argument("--password", help="RCon password (default: $BERCON_PASSWORD, then prompt)")
    p.add_argument("-v", "--verbose", action="count", default=0)
    sub = p.add_subparsers(dest="cmd", required=True)

    pe = sub.add_parser("exec", help="Log in, run one command, print its output")
    pe.add_argument("command", nargs="+")
    pe.add_argument("--timeout", type=float, help="Seconds to wait for the response")
    pe.set_defaults(func=do_exec)

    pc = sub.add_parser("console", help="Interactive console (prompt_toolkit)")
    pc.add_argument("--plain", action="store_true", help="Line mode instead of full screen")
    pc.set_defaults(func=do_console)

    return p

def main(argv=None):
    argv = argv if argv is not None else sys.argv[1:]
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except RConError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

if __name__ == "__main__":
    raise SystemExit(main())
