from __future__ import annotations

import socket
from typing import Generic, TypeVar

from greensockets import _diag
from greensockets._diag import _log
from greensockets.address import SocketAddress
from greensockets.descriptor import FileDescriptor

A = TypeVar("A", bound=SocketAddress)


class Socket(Generic[A]):
    """A stream socket owning one descriptor.

    ``close()`` is the teardown template: subclasses release their own
    resources (subscriptions, channels) and then call up to release the
    descriptor.  Once a socket is invalid it stays invalid.
    """

    def __init__(self, descriptor: FileDescriptor, address_type: type[A]) -> None:
        self.descriptor = descriptor
        self.address_type = address_type
        self.bound_address: A | None = None
        self._sig_pipe_disabled = False

    @property
    def is_valid(self) -> bool:
        return self.descriptor.is_valid

    def fileno(self) -> int:
        return self.descriptor.fileno()

    def close(self) -> None:
        if not self.is_valid:
            return
        if _diag.DEBUG_CLOSE:
            _log(f"releasing descriptor of {self!r}")
        self.descriptor.close()

    # -- addresses -----------------------------------------------------------

    def bind(self, address: A) -> bool:
        if not self.is_valid:
            return False
        err = self.descriptor.bind(address.to_raw())
        if err:
            _log(f"could not bind {self!r} to {address}: errno {err}")
            return False
        self.bound_address = address
        return True

    @property
    def local_address(self) -> A | None:
        """The address the OS reports (getsockname), falling back to the bound one."""
        raw = self.descriptor.local_address() if self.is_valid else None
        if raw is None:
            return self.bound_address
        return self.address_type.from_raw(raw)

    # -- options -------------------------------------------------------------

    @property
    def is_sig_pipe_disabled(self) -> bool:
        return self._sig_pipe_disabled

    @is_sig_pipe_disabled.setter
    def is_sig_pipe_disabled(self, flag: bool) -> None:
        self.descriptor.no_sigpipe = flag
        self._sig_pipe_disabled = flag

    @property
    def is_non_blocking(self) -> bool:
        return self.descriptor.is_non_blocking

    @is_non_blocking.setter
    def is_non_blocking(self, flag: bool) -> None:
        self.descriptor.is_non_blocking = flag

    def _get_flag(self, level: int, option: int) -> bool:
        return bool(self.descriptor.get_option(level, option)) if self.is_valid else False

    def _set_flag(self, level: int, option: int, flag: bool) -> None:
        if self.is_valid:
            self.descriptor.set_option(level, option, 1 if flag else 0)

    @property
    def reuse_address(self) -> bool:
        return self._get_flag(socket.SOL_SOCKET, socket.SO_REUSEADDR)

    @reuse_address.setter
    def reuse_address(self, flag: bool) -> None:
        self._set_flag(socket.SOL_SOCKET, socket.SO_REUSEADDR, flag)

    @property
    def keep_alive(self) -> bool:
        return self._get_flag(socket.SOL_SOCKET, socket.SO_KEEPALIVE)

    @keep_alive.setter
    def keep_alive(self, flag: bool) -> None:
        self._set_flag(socket.SOL_SOCKET, socket.SO_KEEPALIVE, flag)

    @property
    def no_delay(self) -> bool:
        return self._get_flag(socket.IPPROTO_TCP, socket.TCP_NODELAY)

    @no_delay.setter
    def no_delay(self, flag: bool) -> None:
        self._set_flag(socket.IPPROTO_TCP, socket.TCP_NODELAY, flag)

    # -- description ---------------------------------------------------------

    def _describe(self) -> list[str]:
        if not self.is_valid:
            return ["closed"]
        parts = [f"fd={self.fileno()}"]
        if self.bound_address is not None:
            parts.append(f"bound={self.bound_address}")
        return parts

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {' '.join(self._describe())}>"
