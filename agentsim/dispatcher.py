"""Per-agent decision dispatch.

Builds the feedback snapshot for an agent, asks the backend for a
decision, and applies the returned action exactly once. Every failure is
absorbed here: the agent keeps its prior state, gets a feedback string
describing what went wrong, and is offered another decision next tick.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Optional

from .agents.adapters.base import BackendAdapter
from .agents.decisions import resolve_decision
from .agents.state import ActionType, Agent, AgentStatus, DecisionRequest, DecisionResponse, ParsedDecision
from .agents.store import AgentStore
from .config import settings
from .errors import (
    AlreadyInProgress,
    ApplicationError,
    InvalidResponseFormat,
    TransportFailure,
    UnknownAgentTarget,
    UnknownLocation,
)
from .events import EventRecorder
from .locations import LocationRegistry, normalize_location
from .models import EventType
from .world.movement import KinematicMovement
from .world.perception import EnvironmentReporter
from .world.presentation import Presenter

logger = logging.getLogger(__name__)

DEFAULT_GOAL = "Collaborate with any other agents to locate the missing O2 regulator on this Mars base."

CENTRAL_SYSTEM_PROMPT = """You are an autonomous game agent with the following personality:
{personality}

PRIMARY GOAL: {goal}
You can:
1) MOVE to {locations}, or move toward another agent by naming them.
2) NOTHING: do nothing.
3) CONVERSE: have a multi-round chat with a specific agent by naming them.

IMPORTANT RULES:
- Provide at least one sentence of reasoning in your response.
- The final line MUST begin with one of: MOVE:, NOTHING:, CONVERSE:
- If you fail to provide reasoning or break the final-line rule, your response is invalid.
"""


class DecisionDispatcher:
    """Requests decisions from the backend and applies them to agent state."""

    def __init__(
        self,
        store: AgentStore,
        backend: BackendAdapter,
        movement: KinematicMovement,
        perception: EnvironmentReporter,
        presenter: Presenter,
        locations: LocationRegistry,
        recorder: Optional[EventRecorder] = None,
        *,
        conversation_rounds: int = settings.conversation_rounds,
        proximity_radius: float = settings.proximity_radius,
        speech_duration: float = settings.speech_duration,
        forward_conversation_opening: bool = settings.forward_conversation_opening,
        task: str = settings.default_task,
        goal: str = DEFAULT_GOAL,
    ) -> None:
        self.store = store
        self.backend = backend
        self.movement = movement
        self.perception = perception
        self.presenter = presenter
        self.locations = locations
        self.recorder = recorder or EventRecorder()
        # the decision that starts a pairing does not count as a round
        self.conversation_rounds = conversation_rounds
        self.proximity_radius = proximity_radius
        self.speech_duration = speech_duration
        self.forward_conversation_opening = forward_conversation_opening
        self.task = task or None
        self.goal = goal
        self._in_flight: dict[str, set[asyncio.Task]] = defaultdict(set)
        movement.on_arrival(self.handle_arrival)

    # Request side

    def build_system_prompt(self, agent: Agent) -> str:
        return CENTRAL_SYSTEM_PROMPT.format(
            personality=agent.personality or "You are curious and cooperative.",
            goal=self.goal,
            locations=", ".join(f"'{name}'" for name in self.locations.names()),
        )

    def build_feedback(self, agent: Agent) -> str:
        lines = [f"Agent {agent.agent_id} is at {agent.location or 'an unknown place'} with status: {agent.status_text}."]
        if agent.is_in_conversation:
            lines.append(
                f"[CONVERSE mode with {agent.conversation_partner_id}, "
                f"rounds remaining: {agent.conversation_rounds_remaining}]"
            )
        else:
            lines.append(f"Last action: {agent.feedback}")
        lines.append(self.perception.narrate(agent.agent_id))
        if agent.inbox:
            lines.append("Messages: " + " | ".join(agent.inbox))
        return "\n".join(lines)

    def build_request(self, agent: Agent) -> DecisionRequest:
        request = DecisionRequest(
            agent_id=agent.agent_id,
            user_input=self.build_feedback(agent),
            system_prompt=None if agent.system_prompt_sent else self.build_system_prompt(agent),
            task=self.task,
        )
        agent.inbox.clear()
        return request

    def dispatch(self, agent_id: str) -> asyncio.Task:
        """Fire-and-forget decision request for one agent."""

        task = asyncio.create_task(self._run_decision(agent_id))
        self._in_flight[agent_id].add(task)
        task.add_done_callback(lambda done, key=agent_id: self._forget(key, done))
        return task

    def in_flight(self, agent_id: Optional[str] = None) -> int:
        if agent_id is not None:
            return len(self._in_flight.get(agent_id, ()))
        return sum(len(tasks) for tasks in self._in_flight.values())

    def cancel(self, agent_id: str) -> int:
        tasks = self._in_flight.pop(agent_id, set())
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("cancelled in-flight decisions agent=%s count=%s", agent_id, len(tasks))
        return len(tasks)

    def cancel_all(self) -> int:
        return sum(self.cancel(agent_id) for agent_id in list(self._in_flight.keys()))

    async def request_decision(self, agent_id: str) -> Optional[str]:
        """Request and apply one decision; returns the applied action."""

        agent = self.store.get(agent_id)
        if agent is None:
            logger.warning("decision skipped, agent not registered agent=%s", agent_id)
            return None
        if not self.backend.is_connected:
            logger.warning("decision skipped, backend not connected agent=%s", agent_id)
            return None

        request = self.build_request(agent)
        logger.debug("decision request agent=%s input=%s", agent_id, request.user_input)
        try:
            response = await self.backend.decide(request)
        except (TransportFailure, ApplicationError) as exc:
            reason = f"{type(exc).__name__}: {str(exc)[:160]}"
            logger.warning("decision request failed agent=%s reason=%s", agent_id, reason)
            current = self.store.get(agent_id)
            if current is not None:
                current.feedback = f"Decision request failed ({type(exc).__name__})."
            self.recorder.record(EventType.failure, reason, agent_id)
            return None
        except InvalidResponseFormat as exc:
            current = self.store.get(agent_id)
            if current is not None:
                current.system_prompt_sent = True
                self._invalid_decision(current, exc)
            return None

        current = self.store.get(agent_id)
        if current is None:
            logger.info("agent removed before decision resolved agent=%s", agent_id)
            return None
        current.system_prompt_sent = True
        return self.apply_response(agent_id, response)

    # Apply side

    def apply_response(self, agent_id: str, response: DecisionResponse) -> Optional[str]:
        agent = self.store.get(agent_id)
        if agent is None:
            return None
        logger.info("decision received agent=%s text=%s", agent_id, response.text[-300:])
        try:
            decision = resolve_decision(response)
        except InvalidResponseFormat as exc:
            self._invalid_decision(agent, exc)
            return None
        return self.apply_decision(agent_id, decision)

    def apply_decision(self, agent_id: str, decision: ParsedDecision) -> Optional[str]:
        agent = self.store.get(agent_id)
        if agent is None:
            return None
        action = decision.action
        param = decision.param
        started_conversation = False
        logger.info("applying decision agent=%s action=%s param=%s", agent_id, action, param)

        if action == ActionType.move.value:
            try:
                self.move(agent_id, param)
            except AlreadyInProgress:
                agent.feedback = f"Move rejected: already moving to {agent.desired_location}."
            except (UnknownAgentTarget, UnknownLocation) as exc:
                agent.feedback = str(exc)
        elif action == ActionType.nothing.value:
            agent.feedback = "Chose to do nothing."
            if not agent.is_moving and not agent.is_in_conversation:
                agent.status = AgentStatus.idle
        elif action == ActionType.converse.value:
            opening = " ".join(decision.reasoning)
            try:
                started_conversation = self.converse(agent_id, param, opening=opening)
            except AlreadyInProgress as exc:
                agent.feedback = f"Converse rejected: {exc}."
            except UnknownAgentTarget as exc:
                agent.feedback = str(exc)
        else:
            agent.status = AgentStatus.error
            agent.status_text = "Error"
            agent.feedback = f"Unknown action returned: {action}."
            logger.warning("unknown action agent=%s action=%s", agent_id, action)

        if agent.is_in_conversation and agent.conversation_lead and not started_conversation:
            partner_id = agent.conversation_partner_id
            if self.store.advance_conversation(agent_id):
                self.recorder.record(EventType.conversation, f"ended with {partner_id}", agent_id)
                if partner_id:
                    self._sync_status(partner_id)

        self._sync_status(agent_id)
        self.recorder.record(EventType.decision, f"{action}: {param} -> {agent.feedback}", agent_id)
        return action

    def move(self, agent_id: str, target: str) -> str:
        """Start moving toward a known location or a nearby agent.

        Raises ``AlreadyInProgress`` while a move is pending,
        ``UnknownAgentTarget`` when the target cannot be resolved and
        ``UnknownLocation`` when the movement system refuses the position.
        """

        agent = self.store.require(agent_id)
        if agent.is_moving and agent.desired_location:
            logger.warning("already moving agent=%s destination=%s ignored=%s", agent_id, agent.desired_location, target)
            raise AlreadyInProgress(f"Already moving to {agent.desired_location}")

        position = self.locations.get(target)
        label = normalize_location(target)
        if position is None:
            found = self.perception.find_agent_in_proximity(agent_id, target, self.proximity_radius)
            if found is None:
                raise UnknownAgentTarget(f"Move failed: no agent named {target} nearby.")
            target_agent, position = found
            label = target_agent.agent_id

        if agent.is_in_conversation:
            partner_id = self.store.end_conversation(agent_id)
            partner = self.store.get(partner_id or "")
            if partner is not None:
                partner.feedback = f"{agent_id} walked away and ended the conversation."
                self._sync_status(partner.agent_id)

        self.store.begin_move(agent_id, label)
        if not self.movement.move_to(agent_id, position):
            self.store.cancel_move(agent_id)
            raise UnknownLocation(f"Move failed: could not reach {label}.")
        agent.feedback = f"Moving to {label}."
        self._sync_status(agent_id)
        self.recorder.record(EventType.move, f"to {label} at {position.to_dict()}", agent_id)
        return label

    def converse(self, agent_id: str, target_name: str, opening: str = "") -> bool:
        """Pair the agent with a nearby partner.

        Returns False when already conversing with that exact partner.
        """

        agent = self.store.require(agent_id)
        wanted = (target_name or "").strip()
        if agent.is_in_conversation and (agent.conversation_partner_id or "").lower() == wanted.lower():
            logger.info("already conversing agent=%s partner=%s", agent_id, agent.conversation_partner_id)
            return False
        if agent.is_in_conversation:
            raise AlreadyInProgress(f"already conversing with {agent.conversation_partner_id}")

        found = self.perception.find_agent_in_proximity(agent_id, wanted, self.proximity_radius)
        if found is None:
            raise UnknownAgentTarget(f"Converse failed: no agent named {wanted} nearby.")
        target, _ = found
        self.store.pair(agent_id, target.agent_id, self.conversation_rounds)
        agent.feedback = f"Initiated conversation with {target.agent_id}."
        target.feedback = f"{agent_id} started a conversation with you."
        if self.forward_conversation_opening and opening:
            target.inbox.append(f"{agent_id} says: {opening}")
            self.presenter.display_speech(agent_id, opening, self.speech_duration)
        self._sync_status(agent_id)
        self._sync_status(target.agent_id)
        self.recorder.record(EventType.conversation, f"started with {target.agent_id}", agent_id)
        return True

    def speak(self, agent_id: str, message: str) -> None:
        agent = self.store.require(agent_id)
        self.presenter.display_speech(agent_id, message, self.speech_duration)
        if agent.is_in_conversation and agent.conversation_partner_id:
            partner = self.store.get(agent.conversation_partner_id)
            if partner is not None:
                partner.inbox.append(f"{agent_id} says: {message}")
        self.recorder.record(EventType.speech, message, agent_id)

    def handle_arrival(self, agent_id: str) -> None:
        pending = self.store.get(agent_id)
        label = None
        if pending is not None and pending.desired_location and pending.desired_location not in self.locations:
            label = f"near {pending.desired_location}"
        agent = self.store.complete_move(agent_id, label)
        if agent is None:
            return
        logger.info("agent reached destination agent=%s location=%s", agent_id, agent.location)
        self._sync_status(agent_id)
        self.recorder.record(EventType.arrival, agent.location, agent_id)

    def _invalid_decision(self, agent: Agent, exc: InvalidResponseFormat) -> None:
        logger.warning("invalid decision agent=%s reason=%s", agent.agent_id, exc.reason)
        agent.feedback = "Last decision was invalid: the final line must begin with MOVE:, NOTHING: or CONVERSE:."
        if not agent.is_moving and not agent.is_in_conversation:
            agent.status = AgentStatus.idle
        self.recorder.record(EventType.failure, f"invalid decision: {exc.reason}", agent.agent_id)

    def _sync_status(self, agent_id: str) -> None:
        agent = self.store.get(agent_id)
        if agent is not None:
            self.presenter.update_status(agent_id, agent.status_text)

    async def _run_decision(self, agent_id: str) -> Optional[str]:
        try:
            return await self.request_decision(agent_id)
        except asyncio.CancelledError:
            logger.info("decision cancelled agent=%s", agent_id)
            raise
        except Exception as exc:
            logger.exception("decision crashed agent=%s error=%s", agent_id, type(exc).__name__)
            agent = self.store.get(agent_id)
            if agent is not None:
                agent.feedback = f"Decision failed ({type(exc).__name__})."
            return None

    def _forget(self, agent_id: str, task: asyncio.Task) -> None:
        tasks = self._in_flight.get(agent_id)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            self._in_flight.pop(agent_id, None)
