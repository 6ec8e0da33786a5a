"""In-memory agent state store.

Holds every active ``Agent`` in registration order and owns the state
transitions that must stay consistent across records: starting and
finishing moves, and symmetric conversation pairing.
"""

import logging
from typing import Optional

from ..errors import AlreadyInProgress, UnknownAgent, UnknownAgentTarget
from .state import Agent, AgentStatus

logger = logging.getLogger(__name__)


class AgentStore:
    """Registration-ordered map of agent id -> ``Agent``."""

    def __init__(self) -> None:
        self._agents: dict[str, Agent] = {}

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def add(self, agent: Agent) -> None:
        if agent.agent_id in self._agents:
            raise ValueError(f"Agent {agent.agent_id} already stored")
        self._agents[agent.agent_id] = agent

    def remove(self, agent_id: str) -> Optional[Agent]:
        return self._agents.pop(agent_id, None)

    def get(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def require(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise UnknownAgent(f"Agent with ID {agent_id} not found")
        return agent

    def find(self, name: str) -> Optional[Agent]:
        """Exact id match first, then a case-insensitive one."""

        if name in self._agents:
            return self._agents[name]
        wanted = (name or "").strip().lower()
        for agent in self._agents.values():
            if agent.agent_id.lower() == wanted:
                return agent
        return None

    def agents(self) -> list[Agent]:
        return list(self._agents.values())

    def ids(self) -> list[str]:
        return list(self._agents.keys())

    # Movement

    def begin_move(self, agent_id: str, destination: str) -> Agent:
        agent = self.require(agent_id)
        if agent.is_moving and agent.desired_location:
            raise AlreadyInProgress(f"Already moving to {agent.desired_location}")
        agent.desired_location = destination
        agent.is_moving = True
        agent.status = AgentStatus.moving
        agent.status_text = f"Moving to {destination}"
        return agent

    def complete_move(self, agent_id: str, label: Optional[str] = None) -> Optional[Agent]:
        """Finish the pending move; ``label`` replaces the location name when given."""

        agent = self._agents.get(agent_id)
        if agent is None or not agent.is_moving:
            return None
        if label:
            agent.location = label
        elif agent.desired_location:
            agent.location = agent.desired_location.lower()
        agent.is_moving = False
        agent.desired_location = ""
        agent.status = AgentStatus.conversing if agent.is_in_conversation else AgentStatus.idle
        agent.status_text = f"{label[:1].upper()}{label[1:]}" if label else f"At {agent.location}"
        agent.feedback = f"Used move tool to successfully move to {agent.location}."
        return agent

    def cancel_move(self, agent_id: str) -> None:
        agent = self._agents.get(agent_id)
        if agent is None or not agent.is_moving:
            return
        agent.is_moving = False
        agent.desired_location = ""
        agent.status = AgentStatus.idle
        agent.status_text = "Idle"

    # Conversation

    def pair(self, initiator_id: str, target_id: str, rounds: int) -> tuple[Agent, Agent]:
        initiator = self.require(initiator_id)
        target = self._agents.get(target_id)
        if target is None or target is initiator:
            raise UnknownAgentTarget(f"Cannot converse with {target_id}")
        if initiator.is_in_conversation:
            raise AlreadyInProgress(f"Already conversing with {initiator.conversation_partner_id}")
        if target.is_in_conversation:
            raise AlreadyInProgress(f"{target.agent_id} is already conversing with {target.conversation_partner_id}")
        rounds = max(1, rounds)
        for agent, partner, lead in ((initiator, target, True), (target, initiator, False)):
            agent.is_in_conversation = True
            agent.conversation_partner_id = partner.agent_id
            agent.conversation_rounds_remaining = rounds
            agent.conversation_lead = lead
            agent.status = AgentStatus.conversing
            agent.status_text = f"Conversing with {partner.agent_id}"
        logger.info("conversation started initiator=%s target=%s rounds=%s", initiator.agent_id, target.agent_id, rounds)
        return initiator, target

    def end_conversation(self, agent_id: str) -> Optional[str]:
        """Clear the pairing on both sides; returns the former partner id."""

        agent = self._agents.get(agent_id)
        if agent is None or not agent.is_in_conversation:
            return None
        partner_id = agent.conversation_partner_id
        partner = self._agents.get(partner_id) if partner_id else None
        if partner is not None and partner.conversation_partner_id == agent.agent_id:
            self._clear_conversation(partner)
        self._clear_conversation(agent)
        logger.info("conversation ended agent=%s partner=%s", agent_id, partner_id)
        return partner_id

    def advance_conversation(self, agent_id: str) -> bool:
        """Count one round for the pair; returns True when it just ended."""

        agent = self._agents.get(agent_id)
        if agent is None or not agent.is_in_conversation:
            return False
        partner = self._agents.get(agent.conversation_partner_id or "")
        remaining = max(0, agent.conversation_rounds_remaining - 1)
        agent.conversation_rounds_remaining = remaining
        if partner is not None:
            partner.conversation_rounds_remaining = remaining
        if remaining > 0:
            return False
        partner_id = self.end_conversation(agent_id)
        agent.feedback = f"Conversation ended with {partner_id}."
        if partner is not None:
            partner.feedback = f"Conversation ended with {agent.agent_id}."
        return True

    def invariant_violations(self) -> list[str]:
        problems: list[str] = []
        for agent in self._agents.values():
            if agent.is_moving and not agent.desired_location:
                problems.append(f"{agent.agent_id}: moving without destination")
            if agent.is_in_conversation:
                partner = self._agents.get(agent.conversation_partner_id or "")
                if partner is None:
                    problems.append(f"{agent.agent_id}: partner {agent.conversation_partner_id} missing")
                elif partner.conversation_partner_id != agent.agent_id:
                    problems.append(f"{agent.agent_id}: asymmetric pairing with {partner.agent_id}")
        return problems

    @staticmethod
    def _clear_conversation(agent: Agent) -> None:
        agent.is_in_conversation = False
        agent.conversation_partner_id = None
        agent.conversation_rounds_remaining = 0
        agent.conversation_lead = False
        if agent.is_moving:
            agent.status = AgentStatus.moving
            agent.status_text = f"Moving to {agent.desired_location}"
        else:
            agent.status = AgentStatus.idle
            agent.status_text = f"At {agent.location}" if agent.location else "Idle"
