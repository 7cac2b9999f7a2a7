import io

import pytest

from zbproxy.buffer import Buffer, ShortBufferError


def test_new_buffer_is_empty():
    buffer = Buffer(16)
    assert buffer.is_empty
    assert len(buffer) == 0
    assert buffer.capacity == 16
    assert buffer.free_len == 16


def test_write_then_getvalue_round_trip():
    buffer = Buffer(16)
    data = b"mc.hypixel.net"
    assert buffer.write(data) == len(data)
    assert buffer.getvalue() == data
    assert len(buffer) == len(data)


def test_write_partial_then_full():
    buffer = Buffer(2)
    assert buffer.write(b"abc") == 2
    assert buffer.is_full
    assert buffer.getvalue() == b"ab"
    with pytest.raises(ShortBufferError):
        buffer.write(b"c")


def test_write_empty_is_noop_even_when_full():
    buffer = Buffer.wrap(b"xy")
    assert buffer.write(b"") == 0
    assert buffer.getvalue() == b"xy"


def test_wrap_is_full():
    data = b"\x01\x02\x03"
    buffer = Buffer.wrap(data)
    assert buffer.is_full
    assert buffer.getvalue() == data


def test_read_byte_consumes_and_eof():
    buffer = Buffer.wrap(b"\x07\x09")
    assert buffer.read_byte() == 0x07
    assert buffer.read_byte() == 0x09
    with pytest.raises(EOFError):
        buffer.read_byte()


def test_read_returns_requested_prefix():
    buffer = Buffer.wrap(b"hello world")
    assert buffer.read(5) == b"hello"
    assert buffer.read() == b" world"
    with pytest.raises(EOFError):
        buffer.read()


def test_peek_consumes_exact_or_fails():
    buffer = Buffer.wrap(b"abcd")
    assert buffer.peek(2) == b"ab"
    with pytest.raises(ShortBufferError):
        buffer.peek(3)
    assert buffer.getvalue() == b"cd"


def test_write_byte_and_zero():
    buffer = Buffer(4)
    buffer.write_byte(0xFF)
    buffer.write_zero()
    buffer.write_zero(2)
    assert buffer.getvalue() == b"\xff\x00\x00\x00"
    with pytest.raises(ShortBufferError):
        buffer.write_byte(1)
    with pytest.raises(ShortBufferError):
        buffer.write_zero()


def test_extend_returns_writable_region():
    buffer = Buffer(4)
    buffer.extend(2)[:] = b"ok"
    assert buffer.getvalue() == b"ok"
    with pytest.raises(ShortBufferError):
        buffer.extend(3)


def test_extend_header_uses_headroom():
    buffer = Buffer(8)
    buffer.reset(5)
    buffer.write(b"xy")
    buffer.extend_header(2)[:] = b"hd"
    assert buffer.getvalue() == b"hdxy"
    with pytest.raises(ShortBufferError):
        buffer.extend_header(4)


def test_byte_and_set_byte_are_relative_to_start():
    buffer = Buffer.wrap(b"abc")
    buffer.advance(1)
    assert buffer.byte(0) == ord("b")
    buffer.set_byte(1, ord("Z"))
    assert buffer.getvalue() == b"bZ"


def test_truncate_and_resize():
    buffer = Buffer.wrap(b"abcdef")
    buffer.truncate(3)
    assert buffer.getvalue() == b"abc"
    buffer.resize(2, 3)
    assert buffer.getvalue() == b"cde"


def test_reset_and_rewind():
    buffer = Buffer(8)
    buffer.reset(3)
    buffer.write(b"data")
    buffer.read(2)
    buffer.rewind(3)
    assert buffer.getvalue() == b"data"
    buffer.reset()
    assert buffer.is_empty
    assert buffer.free_len == buffer.capacity


def test_read_full_from_stream():
    buffer = Buffer(8)
    assert buffer.read_full_from(io.BytesIO(b"abcdef"), 4) == 4
    assert buffer.getvalue() == b"abcd"


def test_read_full_from_short_stream_raises():
    buffer = Buffer(8)
    with pytest.raises(EOFError):
        buffer.read_full_from(io.BytesIO(b"ab"), 4)
    assert buffer.getvalue() == b"ab"


def test_read_full_from_without_room_raises():
    buffer = Buffer(2)
    with pytest.raises(ShortBufferError):
        buffer.read_full_from(io.BytesIO(b"abcdef"), 3)


def test_read_full_from_another_buffer():
    source = Buffer.wrap(b"payload")
    target = Buffer(16)
    target.read_full_from(source, 3)
    assert target.getvalue() == b"pay"
    assert source.getvalue() == b"load"


def test_read_once_from_limited_by_free_space():
    buffer = Buffer(3)
    assert buffer.read_once_from(io.BytesIO(b"abcdef")) == 3
    assert buffer.getvalue() == b"abc"
    with pytest.raises(ShortBufferError):
        buffer.read_once_from(io.BytesIO(b"x"))


def test_read_from_reads_until_eof():
    data = b"0123456789"
    buffer = Buffer(32)
    assert buffer.read_from(io.BytesIO(data)) == len(data)
    assert buffer.getvalue() == data


def test_read_from_overflow_raises():
    buffer = Buffer(4)
    with pytest.raises(ShortBufferError):
        buffer.read_from(io.BytesIO(b"0123456789"))


def test_write_to_does_not_consume():
    buffer = Buffer.wrap(b"keep")
    sink = io.BytesIO()
    assert buffer.write_to(sink) == 4
    assert sink.getvalue() == b"keep"
    assert buffer.getvalue() == b"keep"


def test_copy_is_independent():
    buffer = Buffer(8)
    buffer.reset(2)
    buffer.write(b"abc")
    other = buffer.copy()
    assert other.getvalue() == b"abc"
    assert other.capacity == buffer.capacity
    other.set_byte(0, ord("X"))
    assert buffer.getvalue() == b"abc"


def test_negative_size_rejected():
    with pytest.raises(ValueError):
        Buffer(-1)