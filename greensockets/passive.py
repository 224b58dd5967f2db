"""Passive (listening) stream sockets.

A passive socket has exactly one address, the one it is bound to.  If it
was not bound explicitly the OS picks one during ``listen()``, and
:attr:`local_address` reports it.

Sample::

    hub = Hub()
    server = PassiveSocket.bound_to(InetAddress("127.0.0.1", 4242))

    def on_accept(conn):
        conn.write("hello\\n")
        conn.close()

    server.listen_on(EventQueue(hub), backlog=5, on_accept=on_accept)
    hub.run()
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from greensockets._diag import _log
from greensockets.active import ActiveSocket
from greensockets.base import A, Socket
from greensockets.descriptor import WOULD_BLOCK, FileDescriptor
from greensockets.hub import EventQueue, ReadSource

AcceptCallback = Callable[[ActiveSocket[Any]], None]

DEFAULT_BACKLOG: int = 5


class PassiveSocket(Socket[A]):
    """A listening endpoint producing :class:`ActiveSocket` connections."""

    def __init__(self, descriptor: FileDescriptor, address_type: type[A]) -> None:
        super().__init__(descriptor, address_type)
        self.backlog: int | None = None
        self.listen_source: ReadSource | None = None

    @classmethod
    def bound_to(cls, address: A) -> PassiveSocket[A] | None:
        """Open a new stream socket bound to *address*, or None on failure."""
        descriptor = FileDescriptor.open(address.domain)
        if descriptor is None:
            return None
        sock = cls(descriptor, type(address))
        sock.reuse_address = True
        if not sock.bind(address):
            sock.close()
            return None
        return sock

    @property
    def is_listening(self) -> bool:
        return self.backlog is not None

    def close(self) -> None:
        if self.listen_source is not None:
            self.listen_source.cancel()
            self.listen_source = None
        super().close()

    # -- listening -----------------------------------------------------------

    def listen(self, backlog: int = DEFAULT_BACKLOG) -> bool:
        if not self.is_valid:
            return False
        if self.is_listening:
            return True

        err = self.descriptor.listen(backlog)
        if err:
            _log(f"listen() failed on {self!r}: errno {err}")
            return False

        self.backlog = backlog
        # the accept loop relies on accept() reporting EWOULDBLOCK
        self.is_non_blocking = True
        return True

    def listen_on(
        self,
        queue: EventQueue,
        backlog: int = DEFAULT_BACKLOG,
        *,
        on_accept: AcceptCallback,
    ) -> bool:
        """Listen and hand every accepted connection to *on_accept* on *queue*."""
        if not self.descriptor.is_valid:
            return False
        if self.is_listening:
            _log(f"socket is already listening {self!r}")
            assert not self.is_listening, "listen_on() called twice"
            return False

        def on_readable(source: ReadSource, estimate: int) -> None:
            self._accept_pending(queue, on_accept)

        source = queue.hub.register_read_ready(self.fileno(), queue, on_readable)
        if source is None:
            _log(f"could not create accept source for {self!r}")
            return False
        if not source.resume():
            source.cancel()
            return False

        if not self.listen(backlog):
            source.cancel()
            return False

        self.listen_source = source
        return True

    def _accept_pending(self, queue: EventQueue, on_accept: AcceptCallback) -> None:
        """Drain the accept queue until the OS reports it would block."""
        while self.descriptor.is_valid:
            descriptor, raw_address, err = self.descriptor.accept()
            if descriptor is None:
                if err not in WOULD_BLOCK:
                    _log(f"failed to accept() on {self!r}: errno {err}")
                break

            remote = self.address_type.from_raw(raw_address)
            conn = ActiveSocket(descriptor, self.address_type, remote_address=remote, queue=queue)
            conn.is_sig_pipe_disabled = True
            on_accept(conn)

    def _describe(self) -> list[str]:
        parts = super()._describe()
        if self.is_listening:
            parts.append("listening")
        return parts
