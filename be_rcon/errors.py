# be_rcon/errors.py
from __future__ import annotations


class RConError(Exception):
    """Base class for everything raised by the RCon client."""


class AddressParseError(RConError, ValueError):
    pass


class BindError(RConError):
    pass


class TransportError(RConError):
    """A send or receive on the datagram endpoint failed."""


class ReceiveTimeout(RConError, TimeoutError):
    pass


class ProtocolError(RConError):
    """An inbound datagram could not be understood. Never fatal to a session."""


class SessionClosedError(RConError):
    pass
