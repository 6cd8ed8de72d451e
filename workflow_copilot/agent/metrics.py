"""Per-stage timing telemetry for the refinement pipeline.

StageMetrics — frozen snapshot of one pipeline stage's duration.
StageTimer   — async context manager; read .result / .to_dict() after exit.

Usage::

    timings: dict[str, float] = {}
    async with StageTimer("executing", timings) as t:
        result = await runner.run(prompt, timeout_ms, correlation_id)
    # timings == {"executing": 1234.5}

The timer records the duration even when the body raises.
"""

from __future__ import annotations

import dataclasses
import time
from typing import Any


@dataclasses.dataclass(frozen=True)
class StageMetrics:
    """Timing snapshot for one pipeline stage.

    stage:       "loading_context", "prompting", "executing", "classifying",
                 "validating", "resolving".
    start_ts:    time.monotonic() at stage start.
    end_ts:      time.monotonic() at stage end.
    duration_ms: (end_ts - start_ts) * 1000.
    """

    stage: str
    start_ts: float
    end_ts: float
    duration_ms: float


class StageTimer:
    """Async context manager that times one stage and writes it into a shared dict."""

    def __init__(self, stage: str, sink: dict[str, float] | None = None) -> None:
        self.stage = stage
        self._sink = sink
        self._start_ts: float = 0.0
        self._result: StageMetrics | None = None

    async def __aenter__(self) -> "StageTimer":
        self._start_ts = time.monotonic()
        return self

    async def __aexit__(self, *_args: object) -> None:
        end_ts = time.monotonic()
        self._result = StageMetrics(
            stage=self.stage,
            start_ts=self._start_ts,
            end_ts=end_ts,
            duration_ms=(end_ts - self._start_ts) * 1000,
        )
        if self._sink is not None:
            self._sink[self.stage] = round(self._result.duration_ms, 3)

    @property
    def result(self) -> StageMetrics | None:
        """Finalized StageMetrics after the context manager exits, else None."""
        return self._result

    def to_dict(self) -> dict[str, Any]:
        """Finalized StageMetrics as a dict; {} before exit."""
        return dataclasses.asdict(self._result) if self._result is not None else {}
