"""Tests for tutor_chat.generation."""

from tutor_chat.generation import GenerationGuard


def test_starts_at_zero() -> None:
    guard = GenerationGuard()
    assert guard.current == 0
    assert guard.current_generation() == 0


def test_bump_returns_new_value() -> None:
    guard = GenerationGuard()
    assert guard.bump() == 1
    assert guard.bump() == 2
    assert guard.current == 2


def test_only_latest_generation_is_current() -> None:
    guard = GenerationGuard()
    captured = guard.current_generation()
    assert guard.is_current(captured)
    guard.bump()
    assert not guard.is_current(captured)
    assert guard.is_current(guard.current)


def test_strictly_increasing() -> None:
    guard = GenerationGuard()
    seen = [guard.bump() for _ in range(20)]
    assert seen == sorted(set(seen))
