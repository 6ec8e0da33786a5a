"""Presentation sink for speech bubbles and status lines.

Nothing is rendered here; the latest speech and status per agent are kept
so the control surface and tests can observe them.
"""

import logging
import time
from dataclasses import dataclass


logger = logging.getLogger(__name__)


@dataclass
class Speech:
    text: str
    expires_at: float


class Presenter:
    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._speech: dict[str, Speech] = {}
        self._status: dict[str, str] = {}

    def display_speech(self, agent_id: str, text: str, duration: float) -> None:
        self._speech[agent_id] = Speech(text=text, expires_at=self._clock() + max(0.0, duration))
        logger.info("speech agent=%s duration=%.1f text=%s", agent_id, duration, text[:200])

    def update_status(self, agent_id: str, text: str) -> None:
        if self._status.get(agent_id) == text:
            return
        self._status[agent_id] = text
        logger.debug("status agent=%s text=%s", agent_id, text)

    def current_speech(self, agent_id: str) -> str:
        speech = self._speech.get(agent_id)
        if speech is None or speech.expires_at < self._clock():
            return ""
        return speech.text

    def status_of(self, agent_id: str) -> str:
        return self._status.get(agent_id, "")

    def forget(self, agent_id: str) -> None:
        self._speech.pop(agent_id, None)
        self._status.pop(agent_id, None)
