from typing import Dict, Any, Callable, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import uuid
import structlog

from context_engine.domain.models.context_state import utc_now

logger = structlog.get_logger(__name__)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    SHUTDOWN = "shutdown"


class SessionState(BaseModel):
    """Lifecycle bookkeeping for the current conversation"""
    session_id: str
    status: SessionStatus = SessionStatus.ACTIVE
    start_time: datetime = Field(default_factory=utc_now)
    turn_count: int = 0
    last_updated: datetime = Field(default_factory=utc_now)


def generate_session_id(now: Optional[datetime] = None) -> str:
    moment = now or utc_now()
    return f"session_{int(moment.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"


class StateManager:
    """Owns the session lifecycle: Active, cleared into a new session, or shut down"""

    def __init__(self, now: Callable[[], datetime] = utc_now):
        self._now = now
        self.state = self._new_state()

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def is_shut_down(self) -> bool:
        return self.state.status == SessionStatus.SHUTDOWN

    def record_turn(self) -> int:
        """Advance the turn counter and return the new turn number"""

        self.state.turn_count += 1
        self.state.last_updated = self._now()
        return self.state.turn_count

    def session_duration_seconds(self) -> float:
        return max(0.0, (self._now() - self.state.start_time).total_seconds())

    def start_new_session(self) -> SessionState:
        """Replace the current session with a fresh one"""

        previous = self.state.session_id
        self.state = self._new_state()
        logger.info("Session started", session_id=self.state.session_id, previous_session_id=previous)
        return self.state

    def shutdown(self) -> None:
        self.state.status = SessionStatus.SHUTDOWN
        self.state.last_updated = self._now()

    def get_current_state(self) -> Dict[str, Any]:
        return self.state.model_dump(mode="json")

    def _new_state(self) -> SessionState:
        now = self._now()
        return SessionState(session_id=generate_session_id(now), start_time=now, last_updated=now)
