"""Active (connected) stream sockets.

An active socket comes either from :meth:`PassiveSocket.listen_on`
accepting a connection or from explicitly connecting a client socket.
It is full-duplex, and closing it is a staged affair:

1. the receive channel is shut down right away (read events stop and the
   read callback is dropped),
2. if asynchronous writes are still in flight the socket only records
   that a close was requested,
3. the last write completion then releases the descriptor.

Sample::

    hub = Hub()
    sock = ActiveSocket.open(InetAddress, queue=EventQueue(hub))

    def on_data(sock, estimate):
        result = sock.read()
        if result.count < 1:
            sock.close()
            return
        print(bytes(result.block))

    sock.on_read(on_data)
    sock.connect(InetAddress("127.0.0.1", 80), lambda s: s.write("Ring, ring!\\r\\n"))
    hub.run()
"""

from __future__ import annotations

import errno
import os
import socket
import weakref
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, NamedTuple

if TYPE_CHECKING:
    from collections.abc import Buffer

from greensockets import _diag
from greensockets._diag import _log
from greensockets.address import InetAddress
from greensockets.base import A, Socket
from greensockets.buffer import ReadBuffer
from greensockets.descriptor import FileDescriptor
from greensockets.hub import EventQueue, ReadSource, default_queue

ReadCallback = Callable[["ActiveSocket[Any]", int], None]
ConnectCallback = Callable[["ActiveSocket[Any]"], None]

# Count returned by read() on a socket that is already closed
READ_ON_CLOSED_SOCKET: int = -42

_EMPTY_VIEW = memoryview(b"")


class ReadResult(NamedTuple):
    count: int
    block: memoryview
    error: int


class ActiveSocket(Socket[A]):
    """A connected, full-duplex stream endpoint."""

    def __init__(
        self,
        descriptor: FileDescriptor,
        address_type: type[A],
        remote_address: A | None = None,
        queue: EventQueue | None = None,
    ) -> None:
        super().__init__(descriptor, address_type)
        self.remote_address = remote_address
        self.queue = queue
        self.read_source: ReadSource | None = None
        self.read_callback: ReadCallback | None = None
        self.read_buffer = ReadBuffer()
        self.pending_write_count = 0
        self.close_requested = False
        self.did_shutdown_read = False
        if remote_address is not None:
            self.is_sig_pipe_disabled = descriptor.is_valid

    @classmethod
    def open(
        cls,
        address_type: type[A] = InetAddress,  # type: ignore[assignment]
        queue: EventQueue | None = None,
    ) -> ActiveSocket[A] | None:
        """Create an unconnected stream socket for *address_type*'s domain."""
        descriptor = FileDescriptor.open(address_type.domain, socket.SOCK_STREAM)
        if descriptor is None:
            return None
        return cls(descriptor, address_type, queue=queue)

    def __del__(self) -> None:
        source = getattr(self, "read_source", None)
        if source is not None and not source.is_cancelled:
            source.cancel()

    @property
    def is_connected(self) -> bool:
        return self.is_valid and self.remote_address is not None

    @property
    def read_buffer_size(self) -> int:
        return self.read_buffer.capacity

    @read_buffer_size.setter
    def read_buffer_size(self, size: int) -> None:
        self.read_buffer.resize(size)

    @property
    def number_of_bytes_available_for_reading(self) -> int | None:
        return self.descriptor.number_of_bytes_available_for_reading

    def _ensure_queue(self, *, announce: bool) -> EventQueue:
        if self.queue is None:
            if announce:
                _log(f"no queue set for {self!r}, using the default queue")
            self.queue = default_queue()
        return self.queue

    # -- close ---------------------------------------------------------------

    def close(self) -> None:
        if _diag.DEBUG_CLOSE:
            _log(f"closing socket {self!r}")
        if not self.is_valid:
            return

        if not self.did_shutdown_read:
            self.stop_event_handler()
            # close() may run inside the read callback; drop it to break cycles
            self.read_callback = None
            self.descriptor.shutdown(socket.SHUT_RD)
            self.did_shutdown_read = True

        if self.pending_write_count > 0:
            if _diag.DEBUG_CLOSE:
                _log(f"{self.pending_write_count} writes pending, close requested")
            self.close_requested = True
            return

        self.queue = None
        super().close()

    # -- connect -------------------------------------------------------------

    def connect(self, address: A, on_connect: ConnectCallback) -> bool:
        """Blocking connect; *on_connect* runs before this returns True."""
        if self.is_connected:
            _log(f"socket is already connected {self!r}")
            return False
        if not self.is_valid:
            return False

        err = self.descriptor.connect(address.to_raw())
        if err:
            _log(f"could not connect {self!r} to {address}: {os.strerror(err)}")
            return False

        self.remote_address = address
        on_connect(self)
        return True

    # -- reading -------------------------------------------------------------

    def on_read(self, callback: ReadCallback | None) -> ActiveSocket[A]:
        had_callback = self.read_callback is not None
        has_callback = callback is not None

        if had_callback and not has_callback:
            self.stop_event_handler()

        self.read_callback = callback

        if has_callback and not had_callback:
            if not self.start_event_handler():
                # no subscription, so no callback either
                self.read_callback = None
        return self

    def read(self) -> ReadResult:
        """Read once into the socket's buffer.

        The returned block is a read-only view that stays valid until the
        next read or buffer resize.
        """
        if not self.descriptor.is_valid:
            _log(f"called read() on closed socket {self!r}")
            return ReadResult(READ_ON_CLOSED_SOCKET, _EMPTY_VIEW, errno.EBADF)

        count, error = self.read_buffer.fill(self.descriptor)
        if count < 0:
            return ReadResult(count, _EMPTY_VIEW, error)
        return ReadResult(count, self.read_buffer.view(count), 0)

    def start_event_handler(self) -> bool:
        if self.read_source is not None:
            return True
        queue = self._ensure_queue(announce=False)

        ref = weakref.ref(self)

        def on_readable(source: ReadSource, estimate: int) -> None:
            sock = ref()
            if sock is None:
                return
            callback = sock.read_callback
            if callback is not None:
                callback(sock, estimate)

        source = queue.hub.register_read_ready(self.fileno(), queue, on_readable)
        if source is None:
            _log(f"could not create read source for {self!r}")
            return False
        if not source.resume():
            source.cancel()
            _log(f"could not start read source for {self!r}")
            return False
        self.read_source = source
        return True

    def stop_event_handler(self) -> None:
        if self.read_source is not None:
            self.read_source.cancel()
            self.read_source = None

    # -- writing -------------------------------------------------------------

    @property
    def can_write(self) -> bool:
        if not self.is_valid:
            assert self.is_valid, "socket closed, can't do async writes anymore"
            return False
        if self.close_requested:
            assert not self.close_requested, "socket is being shut down already"
            return False
        return True

    def send(self, buffer: Buffer, length: int | None = None) -> int:
        """Blocking write straight to the descriptor. Returns -1 on error."""
        count, _ = self.descriptor.write(buffer, length)
        return count

    def async_write(self, buffer: Buffer, length: int | None = None) -> bool:
        if not self.can_write:
            return False

        view = memoryview(buffer)
        if length is not None:
            view = view[:length]
        data = view.tobytes()  # the caller keeps ownership of *buffer*
        if not data:
            return True

        queue = self._ensure_queue(announce=True)
        self.pending_write_count += 1
        queue.hub.submit_async_write(self.descriptor, data, queue, self._did_write)
        return True

    def write(self, data: bytes | str) -> bool:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not data:
            return True
        return self.async_write(data)

    def _did_write(self, error: int) -> None:
        if error:
            _log(f"async write on {self!r} failed: {os.strerror(error)}")
        self.pending_write_count -= 1
        if _diag.DEBUG_ASYNC_WRITES:
            _log(f"write done on {self!r}, {self.pending_write_count} pending")

        if self.pending_write_count == 0 and self.close_requested:
            self.close()
            self.close_requested = False

    def _describe(self) -> list[str]:
        parts = super()._describe()
        if self.remote_address is not None:
            parts.append(f"remote={self.remote_address}")
        return parts
