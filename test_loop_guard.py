"""Tests for the repetition guard."""

from agent.loop_guard import LoopGuard, canonical_params


def test_trips_at_threshold(clock):
    guard = LoopGuard(threshold=3, window=30, clock=clock)
    for expected in (1, 2, 3):
        assert not guard.is_tripped("read_file", {"path": "a"})
        assert guard.record("read_file", {"path": "a"}) == expected
    assert guard.is_tripped("read_file", {"path": "a"})


def test_entry_expires_after_window(clock):
    guard = LoopGuard(threshold=3, window=30, clock=clock)
    for _ in range(3):
        guard.record("read_file", {"path": "a"})
    clock.advance(29)
    assert guard.is_tripped("read_file", {"path": "a"})
    clock.advance(2)
    assert not guard.is_tripped("read_file", {"path": "a"})
    assert guard.record("read_file", {"path": "a"}) == 1


def test_window_counts_from_first_sighting(clock):
    guard = LoopGuard(threshold=3, window=30, clock=clock)
    guard.record("x", {})
    clock.advance(20)
    guard.record("x", {})
    clock.advance(11)
    assert guard.count("x", {}) == 0


def test_params_are_compared_canonically(clock):
    guard = LoopGuard(threshold=2, clock=clock)
    guard.record("search_files", {"pattern": "foo", "path": "/"})
    guard.record("search_files", {"path": "/", "pattern": "foo"})
    assert guard.is_tripped("search_files", {"pattern": "foo", "path": "/"})
    assert not guard.is_tripped("search_files", {"pattern": "bar", "path": "/"})
    assert not guard.is_tripped("list_files", {"pattern": "foo", "path": "/"})
    assert canonical_params(None) == canonical_params({}) == "{}"


def test_reset_and_len(clock):
    guard = LoopGuard(clock=clock)
    guard.record("a", {})
    guard.record("b", {})
    assert len(guard) == 2
    clock.advance(31)
    assert len(guard) == 0
    guard.record("a", {})
    guard.reset()
    assert guard.count("a", {}) == 0
