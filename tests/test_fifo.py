import pytest

from c139link.fifo import FifoOverflowError, FifoUnderflowError, RingBuffer


def test_default_capacity_matches_source_size():
    fifo = RingBuffer()
    assert fifo.capacity == 0x80000
    assert fifo.free() == 0x80000 - 1


def test_empty_buffer_has_no_data():
    fifo = RingBuffer(16)
    assert len(fifo) == 0
    assert fifo.free() == fifo.capacity - 1


def test_write_then_read_round_trip():
    fifo = RingBuffer(32)
    payload = b"hello link"
    assert fifo.write(payload) == len(payload)
    assert len(fifo) == len(payload)
    assert fifo.read(len(payload)) == payload
    assert len(fifo) == 0


def test_used_plus_free_is_constant():
    fifo = RingBuffer(10)
    for chunk in (b"ab", b"cde", b"f"):
        fifo.write(chunk)
        assert len(fifo) + fifo.free() == fifo.capacity - 1
    fifo.read(4)
    assert len(fifo) + fifo.free() == fifo.capacity - 1


def test_peek_does_not_consume():
    fifo = RingBuffer(16)
    fifo.write(b"abcdef")
    assert fifo.read(3, peek=True) == b"abc"
    assert len(fifo) == 6
    assert fifo.read(6) == b"abcdef"


def test_wrap_around_preserves_order():
    fifo = RingBuffer(8)
    fifo.write(b"12345")
    assert fifo.read(5) == b"12345"
    fifo.write(b"abcdef")
    assert len(fifo) == 6
    assert fifo.read(6, peek=True) == b"abcdef"
    assert fifo.read(6) == b"abcdef"


def test_write_exceeding_free_space_raises():
    fifo = RingBuffer(8)
    with pytest.raises(FifoOverflowError):
        fifo.write(bytes(fifo.capacity))
    assert len(fifo) == 0


def test_buffer_fills_to_capacity_minus_one():
    fifo = RingBuffer(8)
    data = bytes(range(fifo.capacity - 1))
    fifo.write(data)
    assert fifo.free() == 0
    with pytest.raises(FifoOverflowError):
        fifo.write(b"x")
    assert fifo.read(len(data)) == data


def test_read_more_than_available_raises():
    fifo = RingBuffer(16)
    fifo.write(b"abc")
    with pytest.raises(FifoUnderflowError):
        fifo.read(4)
    assert fifo.read(3) == b"abc"


def test_zero_sized_operations():
    fifo = RingBuffer(16)
    assert fifo.write(b"") == 0
    assert fifo.read(0) == b""
    assert len(fifo) == 0


def test_consume_drops_front_bytes():
    fifo = RingBuffer(16)
    fifo.write(b"abcdef")
    fifo.consume(2)
    assert fifo.read(4) == b"cdef"


def test_consume_is_clamped_to_available():
    fifo = RingBuffer(16)
    fifo.write(b"abc")
    fifo.consume(100)
    assert len(fifo) == 0
    fifo.write(b"xyz")
    assert fifo.read(3) == b"xyz"


def test_peek_then_consume_matches_read():
    fifo = RingBuffer(8)
    fifo.write(b"1234")
    fifo.read(4)
    fifo.write(b"abcdef")
    peeked = fifo.read(6, peek=True)
    fifo.consume(len(peeked))
    assert peeked == b"abcdef"
    assert len(fifo) == 0


def test_clear_empties_buffer():
    fifo = RingBuffer(16)
    fifo.write(b"abcdef")
    fifo.read(2)
    fifo.clear()
    assert len(fifo) == 0
    assert fifo.free() == fifo.capacity - 1
    fifo.write(b"new")
    assert fifo.read(3) == b"new"


def test_invalid_capacity_rejected():
    with pytest.raises(ValueError):
        RingBuffer(1)


def test_negative_sizes_rejected():
    fifo = RingBuffer(16)
    with pytest.raises(ValueError):
        fifo.read(-1)
    with pytest.raises(ValueError):
        fifo.consume(-1)


def test_write_accepts_bytearray_and_memoryview():
    fifo = RingBuffer(16)
    fifo.write(bytearray(b"ab"))
    fifo.write(memoryview(b"cd"))
    assert fifo.read(4) == b"abcd"