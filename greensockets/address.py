"""Socket address values.

Each address type knows its socket domain and the wire length of the
matching ``sockaddr`` struct, and converts to and from the raw address
representation the :mod:`socket` module uses (tuples for inet, a path for
Unix domain sockets).
"""

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import ClassVar, Self


class SocketAddress:
    """Base class for address types used by the socket classes."""

    domain: ClassVar[int]
    length: ClassVar[int]

    def to_raw(self) -> object:
        raise NotImplementedError

    @classmethod
    def from_raw(cls, raw: object) -> Self:
        raise NotImplementedError


@dataclass(frozen=True)
class InetAddress(SocketAddress):
    host: str = "0.0.0.0"
    port: int = 0

    domain: ClassVar[int] = socket.AF_INET
    length: ClassVar[int] = 16  # sizeof(struct sockaddr_in)

    def to_raw(self) -> tuple[str, int]:
        return (self.host, self.port)

    @classmethod
    def from_raw(cls, raw: object) -> InetAddress:
        host, port = raw  # type: ignore[misc]
        return cls(str(host), int(port))


@dataclass(frozen=True)
class Inet6Address(SocketAddress):
    host: str = "::"
    port: int = 0
    flowinfo: int = 0
    scope_id: int = 0

    domain: ClassVar[int] = socket.AF_INET6
    length: ClassVar[int] = 28  # sizeof(struct sockaddr_in6)

    def to_raw(self) -> tuple[str, int, int, int]:
        return (self.host, self.port, self.flowinfo, self.scope_id)

    @classmethod
    def from_raw(cls, raw: object) -> Inet6Address:
        parts = tuple(raw)  # type: ignore[call-overload]
        host, port = parts[0], parts[1]
        flowinfo = parts[2] if len(parts) > 2 else 0
        scope_id = parts[3] if len(parts) > 3 else 0
        return cls(str(host), int(port), int(flowinfo), int(scope_id))


@dataclass(frozen=True)
class UnixAddress(SocketAddress):
    path: str = ""

    domain: ClassVar[int] = socket.AF_UNIX
    length: ClassVar[int] = 110  # sizeof(struct sockaddr_un) on Linux

    def to_raw(self) -> str:
        return self.path

    @classmethod
    def from_raw(cls, raw: object) -> UnixAddress:
        # Unnamed peers come back as '' or b''
        if isinstance(raw, (bytes, bytearray)):
            return cls(bytes(raw).decode("utf-8", "surrogateescape"))
        return cls(str(raw) if raw else "")
