"""
Test the bounded retention buffer behind /alloc.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from demo_app.faults.retention import RetentionBuffer, RetentionSnapshot


def _block(tag: int, size: int = 16) -> bytearray:
    return bytearray([tag % 256]) * size


def test_length_never_exceeds_capacity():
    buffer = RetentionBuffer(capacity=3)

    for i in range(10):
        buffer.retain(_block(i))
        assert len(buffer) <= 3

    assert len(buffer) == 3


def test_fifo_eviction_after_capacity_plus_one():
    capacity = 5
    buffer = RetentionBuffer(capacity=capacity)
    first = _block(0)

    buffer.retain(first)
    for i in range(1, capacity + 1):
        buffer.retain(_block(i))

    assert len(buffer) == capacity
    assert not any(block is first for block in buffer.blocks())
    # Oldest survivor is the second block appended
    assert buffer.blocks()[0][0] == 1


def test_retain_reports_evictions_and_tracks_bytes():
    buffer = RetentionBuffer(capacity=2)

    assert buffer.retain(_block(1, size=10)).evicted == 0
    assert buffer.retain(_block(2, size=20)).evicted == 0

    state = buffer.retain(_block(3, size=30))

    assert state == RetentionSnapshot(blocks=2, nbytes=50, evicted=1)
    assert buffer.nbytes == 50


def test_make_room_evicts_before_the_next_block_exists():
    buffer = RetentionBuffer(capacity=3)
    for i in range(3):
        buffer.retain(_block(i))

    assert buffer.make_room() == 1
    assert len(buffer) == 2
    assert buffer.make_room() == 0

    assert buffer.retain(_block(9)).evicted == 0
    assert len(buffer) == 3


def test_clear_drops_everything():
    buffer = RetentionBuffer(capacity=4)
    for i in range(3):
        buffer.retain(_block(i))

    assert buffer.clear() == 3
    assert len(buffer) == 0
    assert buffer.nbytes == 0


@pytest.mark.parametrize("capacity", [0, -1])
def test_capacity_must_be_positive(capacity):
    with pytest.raises(ValueError, match="capacity"):
        RetentionBuffer(capacity=capacity)


def test_concurrent_retains_respect_capacity():
    buffer = RetentionBuffer(capacity=20)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: buffer.retain(_block(i)), range(500)))

    assert len(buffer) == 20
    assert buffer.nbytes == 20 * 16


def test_concurrent_retains_report_consistent_snapshots():
    buffer = RetentionBuffer(capacity=20)

    with ThreadPoolExecutor(max_workers=8) as pool:
        states = list(pool.map(lambda i: buffer.retain(_block(i)), range(500)))

    for state in states:
        assert state.nbytes == state.blocks * 16
        assert 1 <= state.blocks <= 20
