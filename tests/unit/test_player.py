"""Unit tests for the execution engine."""

import asyncio
import time

import pytest

from sequencer.interfaces import (
    BrokenReference,
    CircularReference,
    ExecutionCancelled,
    RemoteActionError,
)
from sequencer.scenario.models import DelayStep, Scenario, ScenarioRefStep
from sequencer.scenario.player import CancellationToken, ExecutionEngine, ExecutionStatus
from sequencer.simulation import SimulatedNativeService, SimulationConfig

CLICK = {"type": "click", "position": {"x": 1, "y": 2}, "button": "left"}
KEY = {"type": "keypress", "key": "a", "modifiers": ["cmd"]}
PIXEL = {"type": "pixel-state", "position": {"x": 5, "y": 5}, "color": {"r": 0, "g": 0, "b": 0}, "threshold": 15}


def ref(scenario: Scenario) -> dict:
    return {"type": "scenario-ref", "scenarioId": scenario.id}


@pytest.fixture
def engine(store, fake_service) -> ExecutionEngine:
    return ExecutionEngine(store, fake_service, pixel_wait_timeout_ms=1000)


class TestCounting:
    """Flattened leaf step counts."""

    def test_counts_nested_leaf_steps(self, engine, make_scenario):
        inner = make_scenario("Inner", [CLICK, KEY])
        outer = make_scenario("Outer", [CLICK, ref(inner), {"type": "delay", "ms": 0}])

        assert engine.count_total_steps(outer) == 4

    def test_cycle_counted_once(self, engine, store, make_scenario):
        a = make_scenario("A", [CLICK])
        b = make_scenario("B", [KEY, ref(a)])
        store.add_step(a.id, ScenarioRefStep(scenario_id=b.id))

        assert engine.count_total_steps(store.get_scenario(a.id)) == 2

    def test_missing_reference_counts_zero(self, engine, make_scenario):
        outer = make_scenario("Outer", [CLICK, {"type": "scenario-ref", "scenarioId": "gone"}])

        assert engine.count_total_steps(outer) == 1


class TestExecution:
    """Playback through the simulated helper."""

    @pytest.mark.asyncio
    async def test_issues_one_call_per_leaf_step_in_order(self, engine, fake_service, make_scenario):
        inner = make_scenario("Inner", [KEY, PIXEL])
        outer = make_scenario("Outer", [CLICK, ref(inner), CLICK])
        progress = []

        await engine.execute(outer, CancellationToken(), progress.append)

        assert fake_service.call_names() == [
            "execute_click", "execute_keypress", "wait_for_pixel_state", "execute_click",
        ]
        final = progress[-1]
        assert (final.current_step, final.total_steps, final.status) == (4, 4, ExecutionStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_progress_sequence(self, engine, make_scenario):
        scenario = make_scenario("S", [CLICK, PIXEL])
        progress = []

        await engine.execute(scenario, on_progress=progress.append)

        assert [(p.current_step, p.status) for p in progress] == [
            (0, ExecutionStatus.RUNNING),
            (1, ExecutionStatus.RUNNING),
            (1, ExecutionStatus.WAITING),
            (2, ExecutionStatus.COMPLETED),
        ]
        assert progress[0].step_description == "Click left at (1, 2)"
        assert progress[2].step_description == "Wait for pixel at (5, 5)"

    @pytest.mark.asyncio
    async def test_pixel_wait_uses_configured_timeout(self, engine, fake_service, make_scenario):
        scenario = make_scenario("S", [PIXEL])

        await engine.execute(scenario)

        assert fake_service.calls[0][1]["timeout_ms"] == 1000

    @pytest.mark.asyncio
    async def test_success_marks_scenario_used(self, engine, store, make_scenario):
        scenario = make_scenario("S", [CLICK])

        await engine.execute(scenario)

        assert store.get_scenario(scenario.id).last_used_at > scenario.last_used_at

    @pytest.mark.asyncio
    async def test_empty_scenario_completes(self, engine, make_scenario):
        scenario = make_scenario("Empty", [])
        progress = []

        await engine.execute(scenario, on_progress=progress.append)

        assert [(p.current_step, p.total_steps, p.status) for p in progress] == [
            (0, 0, ExecutionStatus.COMPLETED)
        ]

    @pytest.mark.asyncio
    async def test_sibling_reuse_is_not_a_cycle(self, engine, fake_service, make_scenario):
        shared = make_scenario("Shared", [CLICK])
        outer = make_scenario("Outer", [ref(shared), ref(shared)])

        await engine.execute(outer)

        assert fake_service.call_names() == ["execute_click", "execute_click"]


class TestFailures:
    """Error, abort and reference handling."""

    @pytest.mark.asyncio
    async def test_circular_reference_aborts_run(self, engine, store, fake_service, make_scenario):
        a = make_scenario("A", [CLICK])
        b = make_scenario("B", [KEY, ref(a)])
        store.add_step(a.id, ScenarioRefStep(scenario_id=b.id))
        store.add_step(a.id, DelayStep(ms=0))
        progress = []

        with pytest.raises(CircularReference, match="Circular reference detected: A"):
            await engine.execute(store.get_scenario(a.id), on_progress=progress.append)

        assert fake_service.call_names() == ["execute_click", "execute_keypress"]
        assert progress[-1].status == ExecutionStatus.ERROR
        assert "Circular reference" in progress[-1].error

    @pytest.mark.asyncio
    async def test_broken_reference(self, engine, fake_service, make_scenario):
        scenario = make_scenario("S", [{"type": "scenario-ref", "scenarioId": "gone"}, CLICK])

        with pytest.raises(BrokenReference, match="Sub-scenario not found: gone"):
            await engine.execute(scenario)

        assert fake_service.calls == []

    @pytest.mark.asyncio
    async def test_cancelled_delay_aborts_promptly(self, engine, fake_service, make_scenario):
        scenario = make_scenario("S", [{"type": "delay", "ms": 5000}, CLICK])
        token = CancellationToken()
        progress = []

        loop = asyncio.get_running_loop()
        loop.call_later(0.1, token.cancel)
        start = time.monotonic()

        with pytest.raises(ExecutionCancelled):
            await engine.execute(scenario, token, progress.append)

        assert time.monotonic() - start < 1.0
        assert fake_service.calls == []
        assert progress[-1].status == ExecutionStatus.ABORTED

    @pytest.mark.asyncio
    async def test_cancelled_before_start_runs_nothing(self, engine, fake_service, make_scenario):
        scenario = make_scenario("S", [CLICK])
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ExecutionCancelled):
            await engine.execute(scenario, token)

        assert fake_service.calls == []

    @pytest.mark.asyncio
    async def test_abort_does_not_mark_scenario_used(self, engine, store, make_scenario):
        scenario = make_scenario("S", [CLICK])
        token = CancellationToken()
        token.cancel()

        with pytest.raises(ExecutionCancelled):
            await engine.execute(scenario, token)

        assert store.get_scenario(scenario.id).last_used_at == scenario.last_used_at

    @pytest.mark.asyncio
    async def test_unmatched_pixel_wait_is_an_error(self, store, make_scenario):
        service = SimulatedNativeService(SimulationConfig(pixel_match=False))
        engine = ExecutionEngine(store, service, pixel_wait_timeout_ms=10)
        scenario = make_scenario("S", [PIXEL, CLICK])

        result = await engine.run(scenario)

        assert result.status == ExecutionStatus.ERROR
        assert "did not match" in result.error
        assert service.call_names() == ["wait_for_pixel_state"]

    @pytest.mark.asyncio
    async def test_remote_failure_is_not_retried(self, engine, fake_service, make_scenario):
        fake_service.inject_error("execute_click", RemoteActionError("executeClick", "denied"))
        scenario = make_scenario("S", [CLICK, KEY])

        result = await engine.run(scenario)

        assert result.status == ExecutionStatus.ERROR
        assert result.error == "denied"
        assert result.current_step == 0
        assert fake_service.call_names() == ["execute_click"]

    @pytest.mark.asyncio
    async def test_unexpected_failure_reports_error(self, engine, fake_service, make_scenario):
        fake_service.inject_error("execute_click", RuntimeError("driver crashed"))
        scenario = make_scenario("S", [CLICK, KEY])
        progress = []

        with pytest.raises(RuntimeError):
            await engine.execute(scenario, on_progress=progress.append)

        assert progress[-1].status == ExecutionStatus.ERROR
        assert progress[-1].error == "driver crashed"
        assert fake_service.call_names() == ["execute_click"]

    @pytest.mark.asyncio
    async def test_run_does_not_raise_on_unexpected_failure(self, engine, store, fake_service, make_scenario):
        fake_service.inject_error("execute_click", OSError("device gone"))
        scenario = make_scenario("S", [CLICK])
        seen = []

        result = await engine.run(scenario, CancellationToken(), seen.append)

        assert result.status == ExecutionStatus.ERROR
        assert result.error == "device gone"
        assert seen[-1].status == ExecutionStatus.ERROR
        assert store.get_scenario(scenario.id).last_used_at == scenario.last_used_at


class TestRun:
    @pytest.mark.asyncio
    async def test_run_returns_result(self, engine, make_scenario):
        scenario = make_scenario("S", [CLICK, KEY])

        result = await engine.run(scenario)

        assert result.success
        assert (result.current_step, result.total_steps) == (2, 2)
        assert result.duration >= 0
        assert result.get_summary()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_run_reports_abort(self, engine, make_scenario):
        scenario = make_scenario("S", [CLICK])
        token = CancellationToken()
        token.cancel()

        result = await engine.run(scenario, token)

        assert result.status == ExecutionStatus.ABORTED
        assert not result.success


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_sleep_completes_without_cancel(self):
        token = CancellationToken()

        await token.sleep(1)

        assert not token.is_cancelled

