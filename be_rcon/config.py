# be_rcon/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Mapping, Optional

from .packet import MAX_DATAGRAM

DEFAULT_PORT = 2306  # BattlEye's default RConPort for Arma/DayZ servers


@dataclass(frozen=True)
class ClientConfig:
    server: Optional[str] = None
    bind: str = "0.0.0.0:0"
    password: Optional[str] = None
    keepalive_interval: float = 15.0
    poll_interval: float = 0.1
    command_timeout: float = 5.0
    login_timeout: Optional[float] = None
    max_datagram: int = MAX_DATAGRAM
    verify_checksums: bool = True

    def merged(self, **overrides) -> "ClientConfig":
        """Copy with every non-None override applied."""
        names = {f.name for f in fields(self)}
        unknown = set(overrides) - names
        if unknown:
            raise TypeError(f"unknown config field(s): {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def read_beserver_cfg(path: Path) -> dict:
    """
    Parse a BattlEye beserver.cfg ("Key value" per line). Keys are kept
    as written; blank lines and // comments are skipped.
    """
    props = {}
    if path.exists():
        for line in path.read_text(encoding="utf-8", errors="ignore").splitlines():
            line = line.strip()
            if not line or line.startswith("//"):
                continue
            k, *v = line.split(None, 1)
            props[k] = v[0].strip() if v else ""
    return props


def from_beserver_cfg(path: Path) -> dict:
    props = read_beserver_cfg(path)
    out = {}
    if "RConPassword" in props:
        out["password"] = props["RConPassword"]
    if "RConPort" in props or "RConIP" in props:
        host = props.get("RConIP", "127.0.0.1")
        if host in ("0.0.0.0", ""):
            host = "127.0.0.1"
        out["server"] = f"{host}:{props.get('RConPort', DEFAULT_PORT)}"
    return out


def from_env(environ: Optional[Mapping[str, str]] = None) -> dict:
    env = os.environ if environ is None else environ
    out = {}
    if env.get("BERCON_SERVER"):
        out["server"] = env["BERCON_SERVER"]
    if env.get("BERCON_BIND"):
        out["bind"] = env["BERCON_BIND"]
    if "BERCON_PASSWORD" in env:
        out["password"] = env["BERCON_PASSWORD"]
    if env.get("BERCON_KEEPALIVE"):
        try:
            out["keepalive_interval"] = float(env["BERCON_KEEPALIVE"])
        except ValueError:
            raise ValueError(f"BERCON_KEEPALIVE must be a number, got {env['BERCON_KEEPALIVE']!r}") from None
    return out


def load_config(cfg_path: Optional[Path] = None,
                environ: Optional[Mapping[str, str]] = None,
                **overrides) -> ClientConfig:
    """Defaults, then beserver.cfg, then the environment, then explicit overrides."""
    cfg = ClientConfig()
    if cfg_path is not None:
        cfg = cfg.merged(**from_beserver_cfg(Path(cfg_path).expanduser()))
    cfg = cfg.merged(**from_env(environ))
    return cfg.merged(**overrides)
