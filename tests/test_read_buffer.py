"""Tests for the owned read buffer."""

from __future__ import annotations

import socket

import pytest

from greensockets.buffer import DEFAULT_READ_BUFFER_SIZE, READ_BUFFER_MARGIN, ReadBuffer
from greensockets.descriptor import FileDescriptor


def test_default_capacity_includes_terminator_margin() -> None:
    buf = ReadBuffer()
    assert buf.capacity == DEFAULT_READ_BUFFER_SIZE
    assert buf.allocation_size == DEFAULT_READ_BUFFER_SIZE + READ_BUFFER_MARGIN
    assert buf.allocations == 1


def test_resize_to_same_size_is_a_noop() -> None:
    buf = ReadBuffer(128)
    view = buf.view(4)
    assert not buf.resize(128)
    assert buf.allocations == 1
    # still the same storage
    assert view.obj is buf.view(0).obj


def test_resize_swaps_storage() -> None:
    buf = ReadBuffer(128)
    old = buf.view(0).obj
    assert buf.resize(64)
    assert buf.capacity == 64
    assert buf.allocation_size == 64 + READ_BUFFER_MARGIN
    assert buf.allocations == 2
    assert buf.view(0).obj is not old


def test_resize_rejects_non_positive_sizes() -> None:
    buf = ReadBuffer(8)
    with pytest.raises(ValueError):
        buf.resize(0)
    assert buf.capacity == 8
    with pytest.raises(ValueError):
        ReadBuffer(-1)


def test_fill_terminates_data() -> None:
    a, b = socket.socketpair()
    try:
        buf = ReadBuffer(16)
        fd = FileDescriptor(a)
        b.sendall(b"\xff" * 16)
        assert buf.fill(fd) == (16, 0)
        b.sendall(b"abc")
        count, err = buf.fill(fd)
        assert (count, err) == (3, 0)
        assert bytes(buf.view(count + 1)) == b"abc\x00"
    finally:
        a.close()
        b.close()


def test_views_are_read_only() -> None:
    buf = ReadBuffer(8)
    view = buf.view(4)
    assert view.readonly
    with pytest.raises(TypeError):
        view[0] = 1  # type: ignore[index]
