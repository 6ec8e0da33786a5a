"""Tick scheduler: priming gate, ordering, error pause, and lifecycle transitions."""

import asyncio

from agentsim.agents.adapters.mock_adapter import MockBackendAdapter
from agentsim.db import new_session
from agentsim.runtime import SimulationRuntime
from agentsim.scheduler import SchedulerState


class PrimingBackend(MockBackendAdapter):
    def __init__(self, prime_ok=False):
        super().__init__()
        self.prime_ok = prime_ok
        self.prime_calls = 0

    async def prime_agents(self, agent_ids, force=False):
        self.prime_calls += 1
        if not self.prime_ok:
            return False
        return await super().prime_agents(agent_ids, force)


def test_failed_priming_blocks_ticks_until_it_succeeds():
    backend = PrimingBackend(prime_ok=False)
    runtime = SimulationRuntime(backend, session_factory=new_session)

    async def run():
        await runtime.registry.create_agent("Agent_A", "", "home")
        first = await runtime.scheduler.trigger()
        state_after_failure = runtime.scheduler.state
        backend.prime_ok = True
        second = await runtime.scheduler.trigger()
        await asyncio.gather(*second)
        return first, state_after_failure, second

    first, state_after_failure, second = asyncio.run(run())
    assert first == []
    assert state_after_failure == SchedulerState.idle
    assert len(second) == 1
    assert runtime.scheduler.state == SchedulerState.running
    assert backend.prime_calls == 2
    assert [r.agent_id for r in backend.requests] == ["Agent_A"]
    assert runtime.store.get("Agent_A").primed is True


def test_tick_dispatches_in_registration_order_and_primes_late_agents(runtime, backend):
    async def run():
        await runtime.registry.create_agent("Agent_B", "", "gym")
        await runtime.registry.create_agent("Agent_A", "", "park")
        await asyncio.gather(*await runtime.scheduler.trigger())
        await runtime.registry.create_agent("Agent_C", "", "cantina")
        await asyncio.gather(*await runtime.scheduler.trigger())

    asyncio.run(run())
    assert [r.agent_id for r in backend.requests] == ["Agent_B", "Agent_A", "Agent_B", "Agent_A", "Agent_C"]
    assert backend.primed == ["Agent_B", "Agent_A", "Agent_C"]
    assert runtime.scheduler.tick_count == 2
    assert runtime.recorder.tick == 2


def test_disconnected_backend_skips_tick(runtime, backend):
    async def run():
        await runtime.registry.create_agent("Agent_A", "", "home")
        await runtime.scheduler.trigger()
        backend.connected = False
        return await runtime.scheduler.trigger()

    assert asyncio.run(run()) == []
    assert runtime.scheduler.skipped_ticks == 1
    assert runtime.scheduler.tick_count == 1


def test_tick_error_pauses_when_configured(runtime, monkeypatch):
    def explode(agent_id):
        raise RuntimeError("dispatch broke")

    async def run():
        await runtime.registry.create_agent("Agent_A", "", "home")
        monkeypatch.setattr(runtime.dispatcher, "dispatch", explode)
        runtime.scheduler.pause_on_error = True
        await runtime.scheduler.trigger()
        paused = runtime.scheduler.state
        ignored = await runtime.scheduler.trigger()
        resumed = runtime.scheduler.resume()
        return paused, ignored, resumed

    paused, ignored, resumed = asyncio.run(run())
    assert paused == SchedulerState.paused
    assert ignored == []
    assert resumed is True
    assert runtime.scheduler.state == SchedulerState.running
    assert runtime.scheduler.last_error is None


def test_tick_error_is_logged_and_loop_continues_without_pause(runtime, monkeypatch):
    def explode(agent_id):
        raise RuntimeError("dispatch broke")

    async def run():
        await runtime.registry.create_agent("Agent_A", "", "home")
        monkeypatch.setattr(runtime.dispatcher, "dispatch", explode)
        runtime.scheduler.pause_on_error = False
        await runtime.scheduler.trigger()

    asyncio.run(run())
    assert runtime.scheduler.state == SchedulerState.running
    assert runtime.scheduler.last_error == "RuntimeError: dispatch broke"


def test_automatic_loop_then_stop_and_restart(runtime, backend):
    async def run():
        await runtime.registry.create_agent("Agent_A", "", "home")
        runtime.scheduler.tick_interval = 0.01
        assert runtime.scheduler.start() is True
        assert runtime.scheduler.start() is False
        await asyncio.sleep(0.08)
        await runtime.scheduler.stop()
        stopped_at = runtime.scheduler.tick_count
        ignored = await runtime.scheduler.trigger()
        return stopped_at, ignored

    stopped_at, ignored = asyncio.run(run())
    assert stopped_at >= 2
    assert ignored == []
    assert runtime.scheduler.state == SchedulerState.stopped
    assert runtime.scheduler.is_looping is False

    assert runtime.scheduler.restart() is True
    assert runtime.scheduler.state == SchedulerState.idle
    assert runtime.store.get("Agent_A").primed is False


def test_pause_and_resume_only_from_matching_states(runtime):
    scheduler = runtime.scheduler
    assert scheduler.pause() is False
    assert scheduler.resume() is False
    scheduler.state = SchedulerState.running
    assert scheduler.pause() is True
    assert scheduler.state == SchedulerState.paused
    assert scheduler.resume() is True
    assert scheduler.restart() is False


class CrashingPrimeBackend(MockBackendAdapter):
    def __init__(self):
        super().__init__()
        self.prime_calls = 0

    async def prime_agents(self, agent_ids, force=False):
        self.prime_calls += 1
        if self.prime_calls == 1:
            raise ValueError("malformed prime reply")
        return await super().prime_agents(agent_ids, force)


def test_unexpected_priming_error_returns_to_idle_and_retries():
    backend = CrashingPrimeBackend()
    runtime = SimulationRuntime(backend, session_factory=new_session)

    async def run():
        await runtime.registry.create_agent("Agent_A", "", "home")
        first = await runtime.scheduler.trigger()
        state_after_crash = runtime.scheduler.state
        error_after_crash = runtime.scheduler.last_error
        second = await runtime.scheduler.trigger()
        await asyncio.gather(*second)
        return first, state_after_crash, error_after_crash, second

    first, state_after_crash, error_after_crash, second = asyncio.run(run())
    assert first == []
    assert state_after_crash == SchedulerState.idle
    assert "ValueError: malformed prime reply" in error_after_crash
    assert len(second) == 1
    assert backend.prime_calls == 2
    assert runtime.scheduler.state == SchedulerState.running


def test_automatic_loop_survives_a_failing_tick(runtime, monkeypatch):
    calls = {"count": 0}
    original_trigger = runtime.scheduler.trigger

    async def flaky_trigger():
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("tick blew up")
        return await original_trigger()

    async def run():
        await runtime.registry.create_agent("Agent_A", "", "home")
        monkeypatch.setattr(runtime.scheduler, "trigger", flaky_trigger)
        runtime.scheduler.pause_on_error = False
        runtime.scheduler.tick_interval = 0.01
        runtime.scheduler.start()
        await asyncio.sleep(0.08)
        looping = runtime.scheduler.is_looping
        await runtime.scheduler.stop()
        return looping

    assert asyncio.run(run()) is True
    assert calls["count"] >= 2
    assert runtime.scheduler.tick_count >= 1
    assert runtime.scheduler.last_error == "RuntimeError: tick blew up"
