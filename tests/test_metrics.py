"""StageTimer / StageMetrics tests."""

from __future__ import annotations

import asyncio
import dataclasses
import json

import pytest

from workflow_copilot.agent.metrics import StageMetrics, StageTimer


class TestStageMetrics:

    def test_frozen(self):
        m = StageMetrics(stage="executing", start_ts=0.0, end_ts=1.0, duration_ms=1000.0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            m.stage = "other"  # type: ignore[misc]

    def test_json_serialisable(self):
        m = StageMetrics(stage="prompting", start_ts=1.0, end_ts=1.5, duration_ms=500.0)
        assert json.loads(json.dumps(dataclasses.asdict(m)))["duration_ms"] == 500.0


class TestStageTimer:

    @pytest.mark.asyncio
    async def test_records_duration_into_sink(self):
        sink: dict[str, float] = {}
        async with StageTimer("executing", sink) as timer:
            await asyncio.sleep(0.01)
        assert sink["executing"] >= 5
        assert timer.result.stage == "executing"
        assert timer.result.end_ts >= timer.result.start_ts

    @pytest.mark.asyncio
    async def test_result_none_before_exit(self):
        timer = StageTimer("x")
        assert timer.result is None
        assert timer.to_dict() == {}

    @pytest.mark.asyncio
    async def test_records_even_when_body_raises(self):
        sink: dict[str, float] = {}
        with pytest.raises(RuntimeError):
            async with StageTimer("classifying", sink):
                raise RuntimeError("boom")
        assert "classifying" in sink

    @pytest.mark.asyncio
    async def test_to_dict_keys(self):
        async with StageTimer("resolving") as timer:
            pass
        assert set(timer.to_dict()) == {"stage", "start_ts", "end_ts", "duration_ms"}
