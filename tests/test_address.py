"""Tests for address values."""

from __future__ import annotations

import socket

from greensockets.address import Inet6Address, InetAddress, UnixAddress


def test_defaults_and_domains() -> None:
    assert InetAddress() == InetAddress("0.0.0.0", 0)
    assert InetAddress.domain == socket.AF_INET
    assert Inet6Address.domain == socket.AF_INET6
    assert UnixAddress.domain == socket.AF_UNIX
    assert InetAddress.length < Inet6Address.length < UnixAddress.length


def test_raw_conversion_matches_socket_module() -> None:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        s.bind(InetAddress("127.0.0.1", 0).to_raw())
        bound = InetAddress.from_raw(s.getsockname())
    finally:
        s.close()
    assert bound.host == "127.0.0.1"
    assert bound.port > 0


def test_inet6_accepts_short_tuples() -> None:
    assert Inet6Address.from_raw(("::1", 80)) == Inet6Address("::1", 80, 0, 0)


def test_unix_unnamed_peer() -> None:
    assert UnixAddress.from_raw("") == UnixAddress()
    assert UnixAddress.from_raw(b"") == UnixAddress()
    assert UnixAddress.from_raw("/tmp/x") == UnixAddress("/tmp/x")


def test_addresses_of_different_families_differ() -> None:
    assert InetAddress("::", 0) != Inet6Address("::", 0)
