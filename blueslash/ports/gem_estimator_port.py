"""Gem estimator port - values a task description against a household rubric."""

from typing import Protocol


class GemEstimatorPort(Protocol):
    """Return a gem value for the description; raise on failure."""

    async def estimate_gems(self, *, description: str, rubric: str) -> int: ...
