"""Greenlet hub: readiness notifications, serial queues and async writes.

The hub greenlet runs a selectors loop and is the ONLY place that blocks
on I/O.  Each iteration drains the ready queue (callbacks dispatched to
any :class:`EventQueue` bound to this hub) and then polls once.  Because
every callback runs in the hub greenlet, callbacks of one hub never run
concurrently and socket state needs no locking.

Asynchronous writes are carried out by one writer greenlet per
descriptor.  A writer sends as much as the socket takes, and when the
kernel buffer is full it registers in ``_write_waiters`` and switches to
the hub until the descriptor becomes writable again.
"""

from __future__ import annotations

import errno as _errno_mod
import os
import selectors
import threading
import time
import traceback
from collections import deque
from collections.abc import Callable

import greenlet

from greensockets import _diag
from greensockets._diag import _log
from greensockets.descriptor import WOULD_BLOCK, FileDescriptor, bytes_available

ReadHandler = Callable[["ReadSource", int], None]
WriteCompletion = Callable[[int], None]

# ---------------------------------------------------------------------------
# Defaults (overridable per hub through ``config``)
# ---------------------------------------------------------------------------

POLL_INTERVAL_MS: int = 50
MAX_WRITE_CHUNK: int = 65536


class EventQueue:
    """A serial execution context bound to a hub."""

    __slots__ = ("hub", "label")

    def __init__(self, hub: Hub, label: str = "") -> None:
        self.hub = hub
        self.label = label

    def dispatch(self, fn: Callable[..., object], *args: object) -> None:
        """Run ``fn(*args)`` on the hub, after everything dispatched before it."""
        self.hub.call_soon(fn, *args)

    def __repr__(self) -> str:
        return f"EventQueue({self.label!r})"


class ReadSource:
    """Read-readiness subscription for a single descriptor.

    A source is created suspended.  :meth:`resume` starts delivery and
    :meth:`cancel` stops it for good.  Cancelling a source that was never
    resumed is a protocol error.
    """

    __slots__ = ("hub", "fd", "queue", "_handler", "_resumed", "_cancelled", "_queued")

    def __init__(self, hub: Hub, fd: int, queue: EventQueue, handler: ReadHandler) -> None:
        self.hub = hub
        self.fd = fd
        self.queue = queue
        self._handler = handler
        self._resumed = False
        self._cancelled = False
        self._queued = False

    @property
    def is_resumed(self) -> bool:
        return self._resumed

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def resume(self) -> bool:
        """Start delivering events. Returns False if the hub refused the fd."""
        if self._cancelled:
            raise RuntimeError(f"cannot resume cancelled source for fd {self.fd}")
        if self._resumed:
            return True
        self._resumed = True
        return self.hub._add_reader(self)

    def cancel(self) -> None:
        """Stop delivery. No event is delivered after this returns."""
        if not self._resumed:
            raise RuntimeError(f"source for fd {self.fd} cancelled before it was resumed")
        if self._cancelled:
            return
        self._cancelled = True
        self.hub._remove_reader(self)

    def _fire(self) -> None:
        # Level-triggered: don't queue a second delivery while one is pending
        if self._queued or self._cancelled:
            return
        self._queued = True
        self.queue.dispatch(self._deliver)

    def _deliver(self) -> None:
        self._queued = False
        if self._cancelled:
            return
        self._handler(self, bytes_available(self.fd) or 0)

    def __repr__(self) -> str:
        if self._cancelled:
            state = "cancelled"
        elif self._resumed:
            state = "resumed"
        else:
            state = "suspended"
        return f"ReadSource(fd={self.fd}, {state})"


class Hub:
    """Selector loop plus ready queue, driven by whichever greenlet runs it."""

    def __init__(self, config: dict[str, int] | None = None) -> None:
        cfg = config or {}
        self._poll_interval: float = cfg.get("poll_interval_ms", POLL_INTERVAL_MS) / 1000.0
        self._max_write_chunk: int = cfg.get("max_write_chunk", MAX_WRITE_CHUNK)

        self._sel = selectors.DefaultSelector()
        self._greenlet: greenlet.greenlet | None = None
        self._owner: int | None = None
        self._lock = threading.Lock()
        self._ready: deque[tuple[Callable[..., object], tuple[object, ...]]] = deque()
        self._readers: dict[int, ReadSource] = {}
        self._write_waiters: dict[int, greenlet.greenlet] = {}
        self._writes: dict[int, deque[tuple[bytes, EventQueue, WriteCompletion]]] = {}
        self._in_flight: dict[int, tuple[EventQueue, WriteCompletion]] = {}
        self.running = False
        self.closed = False

        # Self-pipe so call_soon()/stop() from other threads wake select()
        self._wake_r, self._wake_w = os.pipe()
        os.set_blocking(self._wake_r, False)
        os.set_blocking(self._wake_w, False)
        self._sel.register(self._wake_r, selectors.EVENT_READ)

    # -- scheduling ----------------------------------------------------------

    def call_soon(self, fn: Callable[..., object], *args: object) -> None:
        """Queue a callback for the next loop iteration. Thread-safe."""
        with self._lock:
            self._ready.append((fn, args))
        if self._owner is not None and self._owner != threading.get_ident():
            self._wakeup()

    def _wakeup(self) -> None:
        try:
            os.write(self._wake_w, b"W")
        except OSError:
            pass  # pipe full means a wakeup is already pending

    def _drain_wakeup(self) -> None:
        try:
            while os.read(self._wake_r, 4096):
                pass
        except BlockingIOError:
            pass

    def _run_ready(self) -> None:
        with self._lock:
            batch = self._ready
            self._ready = deque()
        for fn, args in batch:
            try:
                fn(*args)
            except Exception:
                _log(f"callback {fn!r} raised:\n{traceback.format_exc()}")

    def _switch(self, g: greenlet.greenlet) -> None:
        try:
            g.switch()
        except Exception:
            _log(f"writer greenlet raised:\n{traceback.format_exc()}")

    # -- selector interest ---------------------------------------------------

    def _sync_interest(self, fd: int) -> bool:
        """Bring the selector registration of *fd* in line with readers/waiters."""
        mask = 0
        if fd in self._readers:
            mask |= selectors.EVENT_READ
        if fd in self._write_waiters:
            mask |= selectors.EVENT_WRITE
        try:
            try:
                self._sel.get_key(fd)
            except KeyError:
                if mask:
                    self._sel.register(fd, mask)
            else:
                if mask:
                    self._sel.modify(fd, mask)
                else:
                    self._sel.unregister(fd)
        except (OSError, ValueError) as e:
            _log(f"could not watch fd {fd}: {e}")
            return False
        return True

    def register_read_ready(
        self, fd: int, queue: EventQueue, handler: ReadHandler,
    ) -> ReadSource | None:
        """Create a suspended read source for *fd*, delivering on *queue*."""
        if self.closed or fd < 0:
            return None
        if queue.hub is not self:
            _log(f"queue {queue!r} belongs to a different hub")
            return None
        return ReadSource(self, fd, queue, handler)

    def _add_reader(self, source: ReadSource) -> bool:
        if self.closed:
            return False
        previous = self._readers.get(source.fd)
        if previous is not None and previous is not source:
            _log(f"fd {source.fd} already has a read source, replacing it")
            previous._cancelled = True
        self._readers[source.fd] = source
        if not self._sync_interest(source.fd):
            del self._readers[source.fd]
            return False
        return True

    def _remove_reader(self, source: ReadSource) -> None:
        if self._readers.get(source.fd) is source:
            del self._readers[source.fd]
            if not self.closed:
                self._sync_interest(source.fd)

    # -- asynchronous writes -------------------------------------------------

    def submit_async_write(
        self,
        descriptor: FileDescriptor,
        data: bytes,
        queue: EventQueue,
        completion: WriteCompletion,
    ) -> None:
        """Write all of *data* to *descriptor* in the background.

        Writes to one descriptor complete in submission order.
        ``completion(errno)`` is dispatched on *queue* once the data has
        been written (errno 0) or the write failed.
        """
        fd = descriptor.fileno()
        with self._lock:
            pending = self._writes.get(fd)
            start = pending is None
            if pending is None:
                pending = self._writes[fd] = deque()
            pending.append((data, queue, completion))
        if start:
            self.call_soon(self._start_writer, descriptor, fd, pending)

    def _start_writer(
        self,
        descriptor: FileDescriptor,
        fd: int,
        pending: deque[tuple[bytes, EventQueue, WriteCompletion]],
    ) -> None:
        writer = greenlet.greenlet(
            lambda: self._drain_writes(descriptor, fd, pending),
            parent=self._greenlet,
        )
        self._switch(writer)

    def _drain_writes(
        self,
        descriptor: FileDescriptor,
        fd: int,
        pending: deque[tuple[bytes, EventQueue, WriteCompletion]],
    ) -> None:
        while True:
            with self._lock:
                if not pending:
                    if self._writes.get(fd) is pending:
                        del self._writes[fd]
                    return
                data, queue, completion = pending.popleft()
            self._in_flight[fd] = (queue, completion)
            error = self._green_write(descriptor, data)
            del self._in_flight[fd]
            if _diag.DEBUG_ASYNC_WRITES:
                _log(f"fd {fd}: wrote {len(data)} bytes, errno {error}")
            queue.dispatch(completion, error)

    def _green_write(self, descriptor: FileDescriptor, data: bytes) -> int:
        view = memoryview(data)
        total = len(view)
        sent = 0
        while sent < total:
            chunk = view[sent:sent + self._max_write_chunk]
            count, error = descriptor.write(chunk, nonblocking=True)
            if error in WOULD_BLOCK:
                if not self._wait_writable(descriptor.fileno()):
                    return _errno_mod.EBADF
                continue
            if error:
                return error
            sent += count
        return 0

    def _wait_writable(self, fd: int) -> bool:
        assert self._greenlet is not None
        self._write_waiters[fd] = greenlet.getcurrent()
        if not self._sync_interest(fd):
            self._write_waiters.pop(fd, None)
            return False
        self._greenlet.switch()
        return True

    # -- loop ----------------------------------------------------------------

    def run_once(self, timeout: float | None = None) -> None:
        """Run ready callbacks, then poll once and dispatch the events."""
        if self.closed:
            raise RuntimeError("hub is closed")
        self._greenlet = greenlet.getcurrent()
        self._owner = threading.get_ident()

        self._run_ready()

        with self._lock:
            has_ready = bool(self._ready)
        if has_ready:
            wait = 0.0
        elif timeout is None:
            wait = self._poll_interval
        else:
            wait = timeout

        events = self._sel.select(wait)
        for key, mask in events:
            fd = key.fd
            if fd == self._wake_r:
                self._drain_wakeup()
                continue
            if mask & selectors.EVENT_READ:
                source = self._readers.get(fd)
                if source is not None:
                    source._fire()
            if mask & selectors.EVENT_WRITE:
                waiter = self._write_waiters.pop(fd, None)
                if waiter is not None:
                    self._sync_interest(fd)
                    self._switch(waiter)

    def run(self) -> None:
        """Run the loop until :meth:`stop` is called."""
        self.running = True
        try:
            while self.running:
                self.run_once()
        finally:
            self.running = False

    def run_until(self, predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        """Run the loop until *predicate* holds. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        while not predicate():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self.run_once(min(remaining, self._poll_interval))
        return True

    def stop(self) -> None:
        """Ask :meth:`run` to return. Thread-safe."""
        self.running = False
        self._wakeup()

    def close(self) -> None:
        """Shut the hub down.

        Queued and in-flight async writes are abandoned; their completions
        run with ``errno.ECANCELED`` before this returns, so sockets waiting
        on them finish closing.  Called from another thread while the loop
        runs, the completions are dropped instead.
        """
        if self.closed:
            return
        self.closed = True
        self.running = False

        cancelled: list[tuple[EventQueue, WriteCompletion]] = []
        with self._lock:
            for pending in self._writes.values():
                cancelled.extend((queue, completion) for _, queue, completion in pending)
                pending.clear()
            self._writes.clear()
        cancelled.extend(self._in_flight.values())
        self._in_flight.clear()

        waiters = list(self._write_waiters.values())
        self._write_waiters.clear()
        for source in list(self._readers.values()):
            source._cancelled = True
        self._readers.clear()

        if self._owner in (None, threading.get_ident()):
            for waiter in waiters:
                if not waiter.dead:
                    waiter.throw(greenlet.GreenletExit)
            for queue, completion in cancelled:
                queue.dispatch(completion, _errno_mod.ECANCELED)
            # last flush: completions and anything dispatched before close()
            self._run_ready()

        self._sel.close()
        os.close(self._wake_r)
        os.close(self._wake_w)

    def __enter__(self) -> Hub:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Process-wide default queue
# ---------------------------------------------------------------------------

_default_queue: EventQueue | None = None
_default_hub: Hub | None = None  # set only when we created the hub ourselves


def default_queue() -> EventQueue:
    """Return the default queue, creating a hub-backed one if none is set."""
    global _default_queue, _default_hub
    if _default_queue is None:
        _default_hub = Hub()
        _default_queue = EventQueue(_default_hub, "default")
    return _default_queue


def set_default_queue(queue: EventQueue | None) -> None:
    """Install *queue* as the process-wide default (None clears it)."""
    global _default_queue
    _default_queue = queue


def reset_default_queue() -> None:
    """Drop the default queue and close the hub created for it, if any."""
    global _default_queue, _default_hub
    hub = _default_hub
    _default_queue = None
    _default_hub = None
    if hub is not None:
        hub.close()
