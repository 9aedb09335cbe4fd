"""
Session recorder for instrumented agents.

Builds well-formed lifecycle events for one session and forwards each
event to a sink.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..storage.models import Environment, Event, EventType

logger = logging.getLogger(__name__)

# Receives the events of one emit call, e.g. a bound AnalyticsService.ingest
EventSink = Callable[[List[Event]], Any]


def new_event_id() -> str:
    return f"evt_{uuid.uuid4().hex}"


def new_session_id() -> str:
    return f"sess_{uuid.uuid4().hex}"


class SessionRecorder:
    """Emits the events of a single agent session.

    Every event carries the recorder's session, user, agent and environment.
    Sink failures propagate to the caller so that lost events are never
    silent.
    """

    def __init__(
        self,
        user_id: str,
        agent_id: str,
        sink: EventSink,
        environment: Environment = Environment.PRODUCTION,
        session_id: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize a recorder.

        Args:
            user_id: End user running the agent (required)
            agent_id: Agent identifier (required)
            sink: Callable receiving each batch of emitted events
            environment: Deployment environment of the agent
            session_id: Session ID to reuse; generated when None
            clock: Source of event timestamps

        Raises:
            ValueError: If user_id or agent_id is missing/empty
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required and cannot be empty")
        if not agent_id or not agent_id.strip():
            raise ValueError("agent_id is required and cannot be empty")

        self.user_id = user_id
        self.agent_id = agent_id
        self.sink = sink
        self.environment = Environment(environment)
        self.session_id = session_id or new_session_id()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.ended = False

    def emit(self, event_type: EventType, metadata: Optional[Dict[str, Any]] = None) -> Event:
        """Build one event for this session and send it to the sink.

        Raises:
            RuntimeError: If the session has already ended
        """
        if self.ended:
            raise RuntimeError(f"Session {self.session_id} has already ended")

        event = Event(
            event_id=new_event_id(),
            event_type=event_type,
            timestamp=self._clock(),
            session_id=self.session_id,
            user_id=self.user_id,
            agent_id=self.agent_id,
            environment=self.environment,
            metadata={k: v for k, v in (metadata or {}).items() if v is not None},
        )
        self.sink([event])
        logger.debug("Recorded %s for session %s", event_type.value, self.session_id)
        return event

    def start(self, client_info: Optional[Dict[str, str]] = None) -> Event:
        return self.emit(EventType.SESSION_START, {"client_info": client_info})

    def task_start(self, task_type: Optional[str] = None) -> Event:
        return self.emit(EventType.TASK_START, {"task_type": task_type})

    def task_complete(
        self,
        tokens_input: int = 0,
        tokens_output: int = 0,
        duration_ms: Optional[float] = None,
        task_type: Optional[str] = None,
    ) -> Event:
        """Record a successful task with its token usage."""
        return self.emit(EventType.TASK_COMPLETE, {
            "tokens_input": tokens_input,
            "tokens_output": tokens_output,
            "duration_ms": duration_ms,
            "task_type": task_type,
            "success": True,
        })

    def task_error(
        self,
        error_code: str,
        error_message: Optional[str] = None,
        duration_ms: Optional[float] = None,
        task_type: Optional[str] = None,
    ) -> Event:
        """Record a failed task."""
        return self.emit(EventType.TASK_ERROR, {
            "error_code": error_code,
            "error_message": error_message,
            "duration_ms": duration_ms,
            "task_type": task_type,
            "success": False,
        })

    def task_cancel(self, task_type: Optional[str] = None) -> Event:
        return self.emit(EventType.TASK_CANCEL, {"task_type": task_type})

    def tool_call(self, tool_name: str, duration_ms: Optional[float] = None) -> Event:
        return self.emit(EventType.TOOL_CALL, {"tool_name": tool_name, "duration_ms": duration_ms})

    def error(self, error_code: str, error_message: Optional[str] = None) -> Event:
        return self.emit(EventType.ERROR, {"error_code": error_code, "error_message": error_message})

    def warning(self, message: str) -> Event:
        return self.emit(EventType.WARNING, {"error_message": message})

    def feedback(self, positive: bool, comment: Optional[str] = None) -> Event:
        event_type = EventType.FEEDBACK_POSITIVE if positive else EventType.FEEDBACK_NEGATIVE
        return self.emit(event_type, {"comment": comment})

    def end(self) -> Event:
        """Record the session end; the recorder accepts no further events."""
        event = self.emit(EventType.SESSION_END)
        self.ended = True
        return event
