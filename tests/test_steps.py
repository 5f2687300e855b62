"""
Tests for step numbering and recording.
"""

from __future__ import annotations

import asyncio
import threading

import pytest

from erjobs.steps import StepCounter, StepRecorder
from erjobs.types import Step


class TestStepCounter:
    """Tests for StepCounter."""

    def test_starts_at_one(self) -> None:
        """Test that the first number handed out is 1."""
        counter = StepCounter()
        assert counter.next() == 1
        assert counter.next() == 2
        assert counter.current == 2

    def test_custom_start(self) -> None:
        """Test that numbering continues after the start value."""
        counter = StepCounter(start=10)
        assert counter.current == 10
        assert counter.next() == 11

    def test_negative_start_rejected(self) -> None:
        """Test that a negative start value is rejected."""
        with pytest.raises(ValueError):
            StepCounter(start=-1)

    def test_unique_across_threads(self) -> None:
        """Test that concurrent callers never get the same number."""
        counter = StepCounter()
        results: list[int] = []
        lock = threading.Lock()

        def worker() -> None:
            local = [counter.next() for _ in range(200)]
            with lock:
                results.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == list(range(1, 1601))


class TestStepRecorder:
    """Tests for StepRecorder."""

    @pytest.mark.asyncio
    async def test_record_numbers_and_notifies(self) -> None:
        """Test that steps are numbered and passed to the observer."""
        seen: list[Step] = []

        async def observer(step: Step) -> None:
            seen.append(step)

        recorder = StepRecorder("Planner", StepCounter(), observer)
        first = await recorder.record("Starting", "details")
        second = await recorder.record("Failed", success=False, error="boom")

        assert [s.step_number for s in seen] == [1, 2]
        assert first.stage == "Planner"
        assert first.details == "details"
        assert first.success is True
        assert second.success is False
        assert second.error_message == "boom"

    @pytest.mark.asyncio
    async def test_stages_share_counter(self) -> None:
        """Test that recorders for different stages share one sequence."""
        recorder = StepRecorder("Orchestrator", StepCounter())
        planner = recorder.for_stage("Planner")
        news = recorder.for_stage("NewsAnalyst")

        a = await planner.record("plan")
        b = await news.record("news")
        c = await planner.record("plan again")

        assert (a.step_number, b.step_number, c.step_number) == (1, 2, 3)
        assert b.stage == "NewsAnalyst"

    @pytest.mark.asyncio
    async def test_concurrent_recording_is_contiguous(self) -> None:
        """Test that concurrent recorders produce 1..N with no gaps."""
        recorder = StepRecorder("Orchestrator", StepCounter())

        async def burst(stage: str) -> list[Step]:
            r = recorder.for_stage(stage)
            steps = []
            for i in range(20):
                steps.append(await r.record(f"{stage} {i}"))
                await asyncio.sleep(0)
            return steps

        a, b = await asyncio.gather(burst("FinancialData"), burst("NewsAnalyst"))
        numbers = sorted(s.step_number for s in a + b)
        assert numbers == list(range(1, 41))

    @pytest.mark.asyncio
    async def test_observer_failure_is_swallowed(self) -> None:
        """Test that an observer exception does not reach the stage."""
        calls = 0

        async def observer(step: Step) -> None:
            nonlocal calls
            calls += 1
            raise RuntimeError("store down")

        recorder = StepRecorder("Planner", StepCounter(), observer)
        step = await recorder.record("Starting")
        following = await recorder.record("Next")

        assert calls == 2
        assert step.step_number == 1
        # The number issued to the failed notification stays consumed.
        assert following.step_number == 2

    @pytest.mark.asyncio
    async def test_observer_cancellation_propagates(self) -> None:
        """Test that task cancellation inside the observer is not swallowed."""

        async def observer(step: Step) -> None:
            raise asyncio.CancelledError()

        recorder = StepRecorder("Planner", StepCounter(), observer)
        with pytest.raises(asyncio.CancelledError):
            await recorder.record("Starting")
