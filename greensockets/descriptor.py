"""Raw descriptor primitives.

:class:`FileDescriptor` owns exactly one OS socket handle and exposes the
syscall-level operations the socket classes are built on.  Failures are
returned as ``errno`` values instead of being raised, so callers can
report them the way the socket API expects (booleans, counts, tuples).
"""

from __future__ import annotations

import errno as _errno_mod
import fcntl
import socket
import struct
import termios
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Buffer

from greensockets._diag import _log

# Flags for send(); 0 where the platform lacks them.
_MSG_DONTWAIT: int = getattr(socket, "MSG_DONTWAIT", 0)
_MSG_NOSIGNAL: int = getattr(socket, "MSG_NOSIGNAL", 0)
_SO_NOSIGPIPE: int | None = getattr(socket, "SO_NOSIGPIPE", None)

WOULD_BLOCK: frozenset[int] = frozenset({_errno_mod.EAGAIN, _errno_mod.EWOULDBLOCK})


def _errno_of(exc: OSError) -> int:
    return exc.errno if exc.errno is not None else _errno_mod.EIO


def bytes_available(fd: int) -> int | None:
    """FIONREAD on *fd*; None if the descriptor cannot be queried."""
    if fd < 0:
        return None
    try:
        raw = fcntl.ioctl(fd, termios.FIONREAD, b"\0\0\0\0")
    except OSError:
        return None
    count: int = struct.unpack("i", raw)[0]
    return count


class FileDescriptor:
    """Owner of a single socket handle."""

    __slots__ = ("_sock", "_no_sigpipe")

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._no_sigpipe = False

    @classmethod
    def open(cls, domain: int, type: int = socket.SOCK_STREAM) -> FileDescriptor | None:
        """Create a new socket handle, or return None if the OS refuses."""
        try:
            sock = socket.socket(domain, type, 0)
        except OSError as e:
            _log(f"could not create socket (domain={domain}): {e}")
            return None
        return cls(sock)

    # -- state ---------------------------------------------------------------

    @property
    def is_valid(self) -> bool:
        return self._sock.fileno() >= 0

    def fileno(self) -> int:
        return self._sock.fileno()

    @property
    def is_non_blocking(self) -> bool:
        return self.is_valid and self._sock.gettimeout() == 0.0

    @is_non_blocking.setter
    def is_non_blocking(self, flag: bool) -> None:
        if self.is_valid:
            self._sock.setblocking(not flag)

    @property
    def no_sigpipe(self) -> bool:
        return self._no_sigpipe

    @no_sigpipe.setter
    def no_sigpipe(self, flag: bool) -> None:
        # BSDs have a socket option, Linux needs MSG_NOSIGNAL on every send
        if _SO_NOSIGPIPE is not None and self.is_valid:
            self.set_option(socket.SOL_SOCKET, _SO_NOSIGPIPE, int(flag))
        self._no_sigpipe = flag

    # -- I/O -----------------------------------------------------------------

    def read_into(self, buffer: bytearray | memoryview, max_length: int) -> tuple[int, int]:
        """Single read of at most *max_length* bytes. Returns (count, errno)."""
        try:
            count = self._sock.recv_into(buffer, max_length)
        except OSError as e:
            return -1, _errno_of(e)
        return count, 0

    def write(
        self, buffer: Buffer, length: int | None = None, *, nonblocking: bool = False,
    ) -> tuple[int, int]:
        """Single write. Returns (count, errno)."""
        flags = 0
        if nonblocking:
            flags |= _MSG_DONTWAIT
        if self._no_sigpipe:
            flags |= _MSG_NOSIGNAL
        data = memoryview(buffer)
        if length is not None:
            data = data[:length]
        try:
            count = self._sock.send(data, flags)
        except OSError as e:
            return -1, _errno_of(e)
        return count, 0

    @property
    def number_of_bytes_available_for_reading(self) -> int | None:
        return bytes_available(self._sock.fileno())

    # -- socket calls --------------------------------------------------------

    def connect(self, raw_address: object) -> int:
        try:
            return self._sock.connect_ex(raw_address)  # type: ignore[arg-type]
        except OSError as e:
            return _errno_of(e)

    def bind(self, raw_address: object) -> int:
        try:
            self._sock.bind(raw_address)  # type: ignore[arg-type]
        except OSError as e:
            return _errno_of(e)
        return 0

    def listen(self, backlog: int) -> int:
        try:
            self._sock.listen(backlog)
        except OSError as e:
            return _errno_of(e)
        return 0

    def accept(self) -> tuple[FileDescriptor | None, object, int]:
        """Accept one pending connection. Returns (descriptor, peer, errno)."""
        try:
            conn, raw_address = self._sock.accept()
        except OSError as e:
            return None, None, _errno_of(e)
        # BSD accept() inherits O_NONBLOCK from the listener
        conn.setblocking(True)
        return FileDescriptor(conn), raw_address, 0

    def shutdown(self, how: int) -> int:
        try:
            self._sock.shutdown(how)
        except OSError as e:
            return _errno_of(e)
        return 0

    def local_address(self) -> object | None:
        try:
            return self._sock.getsockname()
        except OSError:
            return None

    def get_option(self, level: int, option: int) -> int | None:
        try:
            return self._sock.getsockopt(level, option)
        except OSError:
            return None

    def set_option(self, level: int, option: int, value: int) -> bool:
        try:
            self._sock.setsockopt(level, option, value)
        except OSError as e:
            _log(f"setsockopt({level}, {option}) failed on fd {self.fileno()}: {e}")
            return False
        return True

    def close(self) -> None:
        self._sock.close()

    def __repr__(self) -> str:
        return f"FileDescriptor(fd={self._sock.fileno()})"
