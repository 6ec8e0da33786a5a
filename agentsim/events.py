"""Append-only decision event log backed by SQLModel."""

import logging
from collections.abc import Callable
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .models import DecisionEvent, EventType

logger = logging.getLogger(__name__)


class EventRecorder:
    """Writes one row per orchestration event; read back for the control surface."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory
        self.tick = 0

    def record(self, event_type: EventType, content: str, agent_id: Optional[str] = None) -> None:
        if self._session_factory is None:
            return
        try:
            with self._session_factory() as session:
                session.add(
                    DecisionEvent(
                        tick=self.tick,
                        agent_id=agent_id,
                        event_type=event_type,
                        content=content[:2000],
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            logger.warning("event log write failed type=%s agent=%s error=%s", event_type.value, agent_id, exc)

    def recent(self, limit: int = 200, agent_id: Optional[str] = None) -> list[dict[str, Any]]:
        if self._session_factory is None:
            return []
        with self._session_factory() as session:
            stmt = select(DecisionEvent)
            if agent_id:
                stmt = stmt.where(DecisionEvent.agent_id == agent_id)
            rows = list(session.exec(stmt.order_by(DecisionEvent.id.desc()).limit(limit)).all())
        rows.reverse()
        return [row.model_dump(mode="json") for row in rows]
