"""Tests for PassiveSocket: bind, listen, the drain-accept loop.
Real TCP and Unix sockets, the hub is driven in the test thread."""

from __future__ import annotations

import os
import socket
import tempfile
from collections.abc import Generator
from typing import Any

import pytest

from greensockets import (
    ActiveSocket,
    EventQueue,
    FileDescriptor,
    Hub,
    InetAddress,
    PassiveSocket,
    UnixAddress,
)


@pytest.fixture()
def hub() -> Generator[Hub]:
    h = Hub(config={"poll_interval_ms": 10})
    yield h
    h.close()


@pytest.fixture()
def queue(hub: Hub) -> EventQueue:
    return EventQueue(hub, "accept")


@pytest.fixture()
def server() -> Generator[PassiveSocket[InetAddress]]:
    sock = PassiveSocket.bound_to(InetAddress("127.0.0.1", 0))
    assert sock is not None
    yield sock
    sock.close()


def _connect(server: PassiveSocket[InetAddress]) -> socket.socket:
    address = server.local_address
    assert address is not None
    client = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    client.settimeout(5.0)
    client.connect(address.to_raw())
    return client


def test_bound_to_records_address(server: PassiveSocket[InetAddress]) -> None:
    assert server.bound_address == InetAddress("127.0.0.1", 0)
    assert server.reuse_address
    assert not server.is_listening


def test_bound_to_fails_on_address_in_use(server: PassiveSocket[InetAddress]) -> None:
    assert server.listen()
    taken = server.local_address
    assert taken is not None
    # bind the concrete port again without SO_REUSEPORT
    assert PassiveSocket.bound_to(InetAddress("127.0.0.1", taken.port)) is None


def test_listen_is_idempotent(server: PassiveSocket[InetAddress]) -> None:
    assert server.listen(3)
    assert server.is_listening
    assert server.backlog == 3
    assert server.is_non_blocking
    assert server.listen(10)
    assert server.backlog == 3


def test_listen_on_closed_socket_fails(server: PassiveSocket[InetAddress], queue: EventQueue) -> None:
    server.close()
    assert not server.listen()
    assert not server.listen_on(queue, 5, on_accept=lambda conn: None)


def test_listen_on_twice_fails_loudly(
    server: PassiveSocket[InetAddress],
    queue: EventQueue,
    capsys: pytest.CaptureFixture[str],
) -> None:
    assert server.listen_on(queue, 5, on_accept=lambda conn: None)
    source = server.listen_source
    with pytest.raises(AssertionError):
        server.listen_on(queue, 5, on_accept=lambda conn: None)
    assert "already listening" in capsys.readouterr().err
    assert server.listen_source is source
    assert source is not None and not source.is_cancelled


def test_local_address_reports_assigned_port(server: PassiveSocket[InetAddress]) -> None:
    assert server.listen()
    address = server.local_address
    assert address is not None
    assert address.host == "127.0.0.1"
    assert address.port != 0
    assert address.port == server.descriptor.local_address()[1]  # type: ignore[index]
    # the requested address is kept as given
    assert server.bound_address == InetAddress("127.0.0.1", 0)


def test_listen_on_cancels_source_when_listen_fails(hub: Hub, queue: EventQueue) -> None:
    """A datagram socket cannot listen: no source may stay registered."""
    descriptor = FileDescriptor.open(socket.AF_INET, socket.SOCK_DGRAM)
    assert descriptor is not None
    sock = PassiveSocket(descriptor, InetAddress)
    try:
        assert sock.bind(InetAddress("127.0.0.1", 0))
        assert not sock.listen_on(queue, 5, on_accept=lambda conn: None)
        assert sock.listen_source is None
        assert not sock.is_listening
        assert hub._readers == {}
    finally:
        sock.close()


def test_accept_yields_connected_socket(
    hub: Hub, queue: EventQueue, server: PassiveSocket[InetAddress],
) -> None:
    accepted: list[ActiveSocket[Any]] = []
    assert server.listen_on(queue, 5, on_accept=accepted.append)

    client = _connect(server)
    try:
        assert hub.run_until(lambda: bool(accepted), timeout=2.0)
        for _ in range(3):
            hub.run_once(0.01)
        assert len(accepted) == 1

        conn = accepted[0]
        assert conn.is_connected
        assert conn.remote_address == InetAddress(*client.getsockname())
        assert conn.queue is queue
        assert conn.is_sig_pipe_disabled
    finally:
        client.close()
        for conn in accepted:
            conn.close()


def test_drain_loop_accepts_all_pending_connections(
    hub: Hub,
    queue: EventQueue,
    server: PassiveSocket[InetAddress],
    capsys: pytest.CaptureFixture[str],
) -> None:
    """K queued connections yield exactly K sockets, then the loop stops quietly."""
    accepted: list[ActiveSocket[Any]] = []
    assert server.listen_on(queue, 16, on_accept=accepted.append)

    clients = [_connect(server) for _ in range(5)]
    try:
        assert hub.run_until(lambda: len(accepted) == 5, timeout=2.0)
        for _ in range(3):
            hub.run_once(0.01)
        assert len(accepted) == 5
        assert "failed to accept" not in capsys.readouterr().err

        peers = {conn.remote_address for conn in accepted}
        assert peers == {InetAddress(*c.getsockname()) for c in clients}
    finally:
        for c in clients:
            c.close()
        for conn in accepted:
            conn.close()


def test_accepted_socket_round_trip(
    hub: Hub, queue: EventQueue, server: PassiveSocket[InetAddress],
) -> None:
    """The accepted socket reads through events and answers with async writes."""

    def on_data(conn: ActiveSocket[Any], estimate: int) -> None:
        result = conn.read()
        if result.count < 1:
            conn.close()
            return
        conn.write(bytes(result.block).upper())

    def on_accept(conn: ActiveSocket[Any]) -> None:
        conn.on_read(on_data)

    assert server.listen_on(queue, 5, on_accept=on_accept)
    client = _connect(server)
    try:
        client.sendall(b"shout")
        reply = bytearray()

        def got_reply() -> bool:
            client.setblocking(False)
            try:
                reply.extend(client.recv(4096))
            except BlockingIOError:
                pass
            return bytes(reply) == b"SHOUT"

        assert hub.run_until(got_reply, timeout=2.0)
    finally:
        client.close()


def test_close_stops_accepting(
    hub: Hub, queue: EventQueue, server: PassiveSocket[InetAddress],
) -> None:
    accepted: list[ActiveSocket[Any]] = []
    assert server.listen_on(queue, 5, on_accept=accepted.append)
    source = server.listen_source
    assert source is not None

    server.close()
    assert source.is_cancelled
    assert server.listen_source is None
    assert not server.is_valid
    server.close()
    for _ in range(3):
        hub.run_once(0.01)
    assert accepted == []


def test_unix_domain_listener(hub: Hub, queue: EventQueue) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "sock")
        server = PassiveSocket.bound_to(UnixAddress(path))
        assert server is not None
        accepted: list[ActiveSocket[Any]] = []
        try:
            assert server.listen_on(queue, 5, on_accept=accepted.append)
            client = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            client.connect(path)
            assert hub.run_until(lambda: bool(accepted), timeout=2.0)
            assert accepted[0].remote_address == UnixAddress("")
            assert accepted[0].is_connected
            client.close()
        finally:
            for conn in accepted:
                conn.close()
            server.close()
