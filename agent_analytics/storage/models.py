"""
Data models for storage layer.

Defines ingested events, their metadata and ingestion results.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional


class EventType(Enum):
    """Lifecycle events emitted by agent sessions."""
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    SESSION_PAUSE = "session_pause"
    SESSION_RESUME = "session_resume"
    TASK_START = "task_start"
    TASK_COMPLETE = "task_complete"
    TASK_ERROR = "task_error"
    TASK_CANCEL = "task_cancel"
    TOOL_CALL = "tool_call"
    TOOL_RESPONSE = "tool_response"
    ERROR = "error"
    WARNING = "warning"
    FEEDBACK_POSITIVE = "feedback_positive"
    FEEDBACK_NEGATIVE = "feedback_negative"

    @property
    def is_error(self) -> bool:
        """Error-class events mark the whole session as failed."""
        return self in (EventType.ERROR, EventType.TASK_ERROR)

    @property
    def is_session_lifecycle(self) -> bool:
        return self.value.startswith("session_")

    @property
    def is_task_lifecycle(self) -> bool:
        return self.value.startswith("task_")


class Environment(Enum):
    """Deployment environment an event was emitted from."""
    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"


# Error codes reported per item in an ingestion result
EVT_DUPLICATE = "EVT_DUPLICATE"
EVT_DB_ERROR = "EVT_DB_ERROR"


def _as_number(value: Any) -> float:
    """Coerce a metadata value to a finite number, treating junk as 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return 0
        if not math.isfinite(number):
            return 0
        return int(number) if number.is_integer() else number
    return 0


def _as_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


class EventMetadata(Mapping[str, Any]):
    """Read-only attribute bag with typed accessors for well-known keys.

    Unknown keys are preserved and reachable through the mapping interface.
    Numeric keys are coerced once, at construction, so consumers never see
    strings or None where they expect token counts.
    """

    NUMERIC_KEYS = ("tokens_input", "tokens_output", "duration_ms")

    def __init__(self, data: Optional[Mapping[str, Any]] = None):
        raw = dict(data or {})
        for key in self.NUMERIC_KEYS:
            if key in raw:
                raw[key] = _as_number(raw[key])
        self._data = raw

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, EventMetadata):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(sorted(self._data)))

    def __repr__(self) -> str:
        return f"EventMetadata({self._data!r})"

    @property
    def tokens_input(self) -> float:
        return self._data.get("tokens_input", 0)

    @property
    def tokens_output(self) -> float:
        return self._data.get("tokens_output", 0)

    @property
    def duration_ms(self) -> Optional[float]:
        """Explicit duration, or None when the key is absent."""
        if "duration_ms" not in self._data:
            return None
        return self._data["duration_ms"]

    @property
    def error_code(self) -> Optional[str]:
        return _as_optional_str(self._data.get("error_code"))

    @property
    def error_message(self) -> Optional[str]:
        return _as_optional_str(self._data.get("error_message"))

    @property
    def task_type(self) -> Optional[str]:
        return _as_optional_str(self._data.get("task_type"))

    @property
    def success(self) -> Optional[bool]:
        value = self._data.get("success")
        return value if isinstance(value, bool) else None

    @property
    def client_info(self) -> Optional[Dict[str, Any]]:
        value = self._data.get("client_info")
        return dict(value) if isinstance(value, Mapping) else None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Naive values are assumed to already be UTC.

    Raises:
        ValueError: If the value is not a datetime or ISO 8601 string
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Event:
    """Immutable lifecycle event as submitted by an agent SDK."""
    event_id: str
    event_type: EventType
    timestamp: datetime
    session_id: str
    user_id: str
    agent_id: str
    environment: Environment = Environment.PRODUCTION
    metadata: EventMetadata = field(default_factory=EventMetadata)

    def __post_init__(self):
        """Normalize loosely typed fields at the ingestion boundary."""
        if not self.event_id:
            raise ValueError("event_id is required")
        for name in ("session_id", "user_id", "agent_id"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"{name} is required and must be a non-empty string")
        if not isinstance(self.event_type, EventType):
            object.__setattr__(self, "event_type", EventType(self.event_type))
        if not isinstance(self.environment, Environment):
            object.__setattr__(self, "environment", Environment(self.environment))
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp))
        if not isinstance(self.metadata, EventMetadata):
            object.__setattr__(self, "metadata", EventMetadata(self.metadata))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Event":
        """Build an event from its wire representation.

        Args:
            data: Mapping with the event's JSON fields

        Returns:
            Validated Event

        Raises:
            KeyError: If a required field is missing
            ValueError: If an enum or timestamp value is invalid
        """
        return cls(
            event_id=data["event_id"],
            event_type=EventType(data["event_type"]),
            timestamp=parse_timestamp(data["timestamp"]),
            session_id=data["session_id"],
            user_id=data["user_id"],
            agent_id=data["agent_id"],
            environment=Environment(data.get("environment") or "production"),
            metadata=EventMetadata(data.get("metadata")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "environment": self.environment.value,
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class StoredEvent(Event):
    """Event accepted into a tenant's partition."""
    org_id: str = ""
    ingested_at: Optional[datetime] = None

    @classmethod
    def from_event(cls, event: Event, org_id: str, ingested_at: datetime) -> "StoredEvent":
        return cls(
            event_id=event.event_id,
            event_type=event.event_type,
            timestamp=event.timestamp,
            session_id=event.session_id,
            user_id=event.user_id,
            agent_id=event.agent_id,
            environment=event.environment,
            metadata=event.metadata,
            org_id=org_id,
            ingested_at=ingested_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["org_id"] = self.org_id
        data["ingested_at"] = self.ingested_at.isoformat() if self.ingested_at else None
        return data


@dataclass(frozen=True)
class IngestError:
    """Per-item rejection inside an ingestion batch."""
    index: int
    event_id: str
    code: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "event_id": self.event_id,
            "code": self.code,
            "message": self.message,
        }


@dataclass
class IngestResult:
    """Outcome of ingesting a batch of events."""
    accepted: int = 0
    rejected: int = 0
    errors: List[IngestError] = field(default_factory=list)

    def reject(self, index: int, event_id: str, code: str, message: str) -> None:
        self.rejected += 1
        self.errors.append(IngestError(index=index, event_id=event_id, code=code, message=message))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "rejected": self.rejected,
            "errors": [error.to_dict() for error in self.errors],
        }


def with_org(event: Event, org_id: str, ingested_at: datetime) -> StoredEvent:
    """Attach tenant context to an event, copying a StoredEvent if given one."""
    if isinstance(event, StoredEvent):
        return replace(event, org_id=org_id, ingested_at=ingested_at)
    return StoredEvent.from_event(event, org_id, ingested_at)
