"""Generation guard — staleness detection for in-flight async work.

Every scenario switch bumps the counter. Async work (greetings, streamed
replies) captures the value when it is issued and may only apply its result
while that value is still current; otherwise the result is dropped.
"""

from __future__ import annotations


class GenerationGuard:
    def __init__(self) -> None:
        self._generation = 0

    @property
    def current(self) -> int:
        return self._generation

    def current_generation(self) -> int:
        return self._generation

    def bump(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation
