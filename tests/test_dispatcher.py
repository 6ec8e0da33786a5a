"""Decision dispatch: request building, action application, and failure absorption."""

import asyncio

from agentsim.agents.adapters.mock_adapter import MockBackendAdapter
from agentsim.agents.state import AgentStatus, DecisionResponse
from agentsim.db import new_session
from agentsim.errors import TransportFailure
from agentsim.runtime import SimulationRuntime


async def _spawn(runtime, *placements):
    for agent_id, location in placements:
        await runtime.registry.create_agent(agent_id, f"{agent_id} personality", location)


async def _tick(runtime):
    tasks = await runtime.scheduler.trigger()
    await asyncio.gather(*tasks)
    return tasks


def test_move_decision_and_arrival(runtime, backend):
    backend.queue("Agent_A", "The library may have the manuals.\nMOVE: library")

    async def run():
        await _spawn(runtime, ("Agent_A", "home"))
        action = await runtime.dispatcher.request_decision("Agent_A")
        agent = runtime.store.get("Agent_A")
        moving = (agent.is_moving, agent.desired_location, agent.status_text, agent.feedback)
        runtime.movement.arrive("Agent_A")
        return action, moving, agent

    action, moving, agent = asyncio.run(run())
    assert action == "move"
    assert moving == (True, "library", "Moving to library", "Moving to library.")
    assert agent.is_moving is False
    assert agent.location == "library"
    assert agent.status_text == "At library"
    assert agent.feedback == "Used move tool to successfully move to library."
    assert runtime.presenter.status_of("Agent_A") == "At library"


def test_second_move_while_moving_is_rejected(runtime, backend):
    backend.queue("Agent_A", "Go.\nMOVE: library", "Changed my mind.\nMOVE: gym")

    async def run():
        await _spawn(runtime, ("Agent_A", "home"))
        await runtime.dispatcher.request_decision("Agent_A")
        await runtime.dispatcher.request_decision("Agent_A")
        return runtime.store.get("Agent_A")

    agent = asyncio.run(run())
    assert agent.desired_location == "library"
    assert agent.feedback == "Move rejected: already moving to library."


def test_move_toward_agent_and_unknown_target(runtime, backend):
    backend.queue("Agent_A", "Where is that?\nMOVE: Atlantis", "Join B.\nMOVE: Agent_B")

    async def run():
        await _spawn(runtime, ("Agent_A", "library"), ("Agent_B", "home"))
        await runtime.dispatcher.request_decision("Agent_A")
        agent = runtime.store.get("Agent_A")
        failed = (agent.is_moving, agent.feedback)
        await runtime.dispatcher.request_decision("Agent_A")
        heading = agent.desired_location
        runtime.movement.arrive("Agent_A")
        return failed, heading, agent

    failed, heading, agent = asyncio.run(run())
    assert failed == (False, "Move failed: no agent named Atlantis nearby.")
    assert heading == "Agent_B"
    assert agent.location == "near Agent_B"
    assert agent.status_text == "Near Agent_B"
    assert agent.feedback == "Used move tool to successfully move to near Agent_B."


def test_mutual_converse_pairs_then_ends_after_rounds(runtime, backend):
    backend.queue("Agent_A", "B is close.\nCONVERSE: Agent_B")
    backend.queue("Agent_B", "A is close.\nCONVERSE: Agent_A")

    async def run():
        await _spawn(runtime, ("Agent_A", "library"), ("Agent_B", "home"))
        await _tick(runtime)
        a, b = runtime.store.get("Agent_A"), runtime.store.get("Agent_B")
        paired = (
            a.conversation_partner_id,
            b.conversation_partner_id,
            a.conversation_rounds_remaining,
            b.conversation_rounds_remaining,
        )
        remaining = []
        for _ in range(runtime.dispatcher.conversation_rounds):
            await _tick(runtime)
            remaining.append(b.conversation_rounds_remaining)
        return paired, remaining, a, b

    paired, remaining, a, b = asyncio.run(run())
    rounds = runtime.dispatcher.conversation_rounds
    assert paired == ("Agent_B", "Agent_A", rounds, rounds)
    assert remaining == list(range(rounds - 1, -1, -1))
    assert not a.is_in_conversation and not b.is_in_conversation
    assert a.conversation_partner_id is None and b.conversation_partner_id is None
    assert a.feedback == "Conversation ended with Agent_B."
    assert runtime.store.invariant_violations() == []


def test_converse_with_current_partner_is_a_no_op(runtime):
    async def run():
        await _spawn(runtime, ("Agent_A", "library"), ("Agent_B", "home"))
        first = runtime.dispatcher.converse("Agent_A", "Agent_B")
        a = runtime.store.get("Agent_A")
        a.conversation_rounds_remaining = 2
        runtime.store.get("Agent_B").conversation_rounds_remaining = 2
        second = runtime.dispatcher.converse("Agent_A", "agent_b")
        return first, second, a

    first, second, a = asyncio.run(run())
    assert first is True
    assert second is False
    assert a.conversation_partner_id == "Agent_B"
    assert a.conversation_rounds_remaining == 2


def test_converse_opening_is_forwarded_to_partner(runtime, backend):
    backend.queue("Agent_A", "Have you seen the regulator?\nCONVERSE: Agent_B")

    async def run():
        await _spawn(runtime, ("Agent_A", "library"), ("Agent_B", "home"))
        await runtime.dispatcher.request_decision("Agent_A")
        inbox = list(runtime.store.get("Agent_B").inbox)
        await runtime.dispatcher.request_decision("Agent_B")
        return inbox

    inbox = asyncio.run(run())
    assert inbox == ["Agent_A says: Have you seen the regulator?"]
    last_request = backend.requests[-1]
    assert last_request.agent_id == "Agent_B"
    assert "Agent_A says: Have you seen the regulator?" in last_request.user_input
    assert "[CONVERSE mode with Agent_A, rounds remaining:" in last_request.user_input
    assert runtime.store.get("Agent_B").inbox == []
    assert runtime.presenter.current_speech("Agent_A") == "Have you seen the regulator?"


def test_converse_with_someone_else_while_conversing_is_rejected(runtime, backend):
    backend.queue("Agent_A", "C looks busy too.\nCONVERSE: Agent_C")

    async def run():
        await _spawn(runtime, ("Agent_A", "library"), ("Agent_B", "home"), ("Agent_C", "center"))
        runtime.dispatcher.converse("Agent_A", "Agent_B")
        await runtime.dispatcher.request_decision("Agent_A")
        return runtime.store.get("Agent_A"), runtime.store.get("Agent_C")

    a, c = asyncio.run(run())
    assert a.conversation_partner_id == "Agent_B"
    assert a.feedback.startswith("Converse rejected:")
    assert c.is_in_conversation is False


def test_moving_away_ends_conversation_for_both(runtime, backend):
    backend.queue("Agent_B", "I need to leave.\nMOVE: gym")

    async def run():
        await _spawn(runtime, ("Agent_A", "library"), ("Agent_B", "home"))
        runtime.dispatcher.converse("Agent_A", "Agent_B")
        await runtime.dispatcher.request_decision("Agent_B")
        return runtime.store.get("Agent_A"), runtime.store.get("Agent_B")

    a, b = asyncio.run(run())
    assert not a.is_in_conversation and not b.is_in_conversation
    assert b.desired_location == "gym"
    assert a.feedback == "Agent_B walked away and ended the conversation."


def test_system_prompt_is_sent_only_with_first_request(runtime, backend):
    async def run():
        await _spawn(runtime, ("Agent_A", "home"))
        await runtime.dispatcher.request_decision("Agent_A")
        await runtime.dispatcher.request_decision("Agent_A")

    asyncio.run(run())
    first, second = backend.requests
    assert "Agent_A personality" in first.system_prompt
    assert "'library'" in first.system_prompt
    assert second.system_prompt is None
    assert first.user_input.startswith("Agent Agent_A is at home with status: At home.")


def test_unknown_action_marks_agent_error(runtime):
    async def run():
        await _spawn(runtime, ("Agent_A", "home"))
        return runtime.dispatcher.apply_response(
            "Agent_A",
            DecisionResponse(agent_id="Agent_A", text="Time to dance.\nNOTHING: dance", action="dance"),
        )

    action = asyncio.run(run())
    agent = runtime.store.get("Agent_A")
    assert action == "dance"
    assert agent.status == AgentStatus.error
    assert agent.feedback == "Unknown action returned: dance."


def test_invalid_decision_leaves_agent_idle(runtime, backend):
    backend.queue("Agent_A", "I would rather not say.")

    async def run():
        await _spawn(runtime, ("Agent_A", "home"))
        return await runtime.dispatcher.request_decision("Agent_A")

    assert asyncio.run(run()) is None
    agent = runtime.store.get("Agent_A")
    assert agent.status == AgentStatus.idle
    assert agent.feedback.startswith("Last decision was invalid")
    assert agent.system_prompt_sent is True
    failures = [e for e in runtime.recorder.recent() if e["event_type"] == "failure"]
    assert len(failures) == 1


class FailingBackend(MockBackendAdapter):
    async def decide(self, request):
        self.requests.append(request)
        raise TransportFailure("connection refused")


def test_transport_failure_is_absorbed():
    backend = FailingBackend()
    runtime = SimulationRuntime(backend, session_factory=new_session)

    async def run():
        await _spawn(runtime, ("Agent_A", "home"))
        return await runtime.dispatcher.request_decision("Agent_A")

    assert asyncio.run(run()) is None
    agent = runtime.store.get("Agent_A")
    assert agent.feedback == "Decision request failed (TransportFailure)."
    assert agent.system_prompt_sent is False
    assert agent.is_moving is False


def test_disconnected_backend_sends_nothing(runtime, backend):
    async def run():
        await _spawn(runtime, ("Agent_A", "home"))
        backend.connected = False
        return await runtime.dispatcher.request_decision("Agent_A")

    assert asyncio.run(run()) is None
    assert backend.requests == []
    assert runtime.store.get("Agent_A").feedback == "No action taken yet."


class SlowBackend(MockBackendAdapter):
    def __init__(self):
        super().__init__()
        self.release = None

    async def decide(self, request):
        self.requests.append(request)
        await self.release.wait()
        return DecisionResponse(agent_id=request.agent_id, text="Off I go.\nMOVE: park")


def test_decision_for_removed_agent_is_discarded():
    backend = SlowBackend()
    runtime = SimulationRuntime(backend, session_factory=new_session)

    async def run():
        backend.release = asyncio.Event()
        await _spawn(runtime, ("Agent_A", "home"))
        task = runtime.dispatcher.dispatch("Agent_A")
        await asyncio.sleep(0)
        runtime.store.remove("Agent_A")
        backend.release.set()
        return await task

    assert asyncio.run(run()) is None
    assert "Agent_A" not in runtime.store


def test_remove_agent_cancels_in_flight_decision():
    backend = SlowBackend()
    runtime = SimulationRuntime(backend, session_factory=new_session)

    async def run():
        backend.release = asyncio.Event()
        await _spawn(runtime, ("Agent_A", "home"))
        task = runtime.dispatcher.dispatch("Agent_A")
        await asyncio.sleep(0)
        assert runtime.dispatcher.in_flight("Agent_A") == 1
        await runtime.registry.remove_agent("Agent_A")
        await asyncio.gather(task, return_exceptions=True)
        return task

    task = asyncio.run(run())
    assert task.cancelled()
    assert runtime.dispatcher.in_flight() == 0
    assert backend.deregistered == ["Agent_A"]


def test_speak_reaches_partner_inbox(runtime):
    async def run():
        await _spawn(runtime, ("Agent_A", "library"), ("Agent_B", "home"))
        runtime.dispatcher.converse("Agent_A", "Agent_B")
        runtime.dispatcher.speak("Agent_A", "Check the vents.")

    asyncio.run(run())
    assert runtime.presenter.current_speech("Agent_A") == "Check the vents."
    assert runtime.store.get("Agent_B").inbox[-1] == "Agent_A says: Check the vents."
