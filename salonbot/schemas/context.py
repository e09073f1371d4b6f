"""Typed conversation memory stored in conversation_contexts.context_data."""

from datetime import date, datetime, time
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

MEMORY_VERSION = 1

# Legacy camel-case keys written by older deployments
LEGACY_KEYS = {
    "messageCount": "message_count",
    "firstInteraction": "first_interaction",
    "lastInteraction": "last_interaction",
    "lastTopics": "history",
}


class HistoryEntry(BaseModel):
    message: str
    response: Optional[str] = None
    intent: Optional[str] = None
    timestamp: datetime


class CancellationCandidate(BaseModel):
    appointment_id: UUID
    service_name: str
    professional_name: str
    appointment_date: date
    appointment_time: time


class IdleFlow(BaseModel):
    kind: Literal["idle"] = "idle"


class AwaitingCancellationChoice(BaseModel):
    kind: Literal["awaiting_cancellation_choice"] = "awaiting_cancellation_choice"
    candidates: list[CancellationCandidate]
    started_at: datetime


PendingFlow = Annotated[Union[IdleFlow, AwaitingCancellationChoice], Field(discriminator="kind")]


class ContextMemory(BaseModel):
    version: int = MEMORY_VERSION
    message_count: int = 0
    first_interaction: Optional[datetime] = None
    last_interaction: Optional[datetime] = None
    welcome_sent_at: Optional[datetime] = None
    history: list[HistoryEntry] = Field(default_factory=list)
    pending_flow: PendingFlow = Field(default_factory=IdleFlow)
    extensions: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_stored(cls, data: Optional[dict]) -> "ContextMemory":
        """Parse stored JSON; unknown keys land in extensions."""
        data = dict(data or {})
        for legacy, current in LEGACY_KEYS.items():
            if legacy in data:
                value = data.pop(legacy)
                data.setdefault(current, value)

        known = set(cls.model_fields)
        extensions = dict(data.pop("extensions", None) or {})
        for key in list(data):
            if key not in known:
                extensions[key] = data.pop(key)

        history = data.get("history") or []
        data["history"] = [
            entry
            for entry in history
            if isinstance(entry, dict) and entry.get("message") and entry.get("timestamp")
        ]
        data["extensions"] = extensions
        return cls.model_validate(data)

    def to_stored(self) -> dict:
        return self.model_dump(mode="json")

    def append_history(self, entry: HistoryEntry, limit: int = 10) -> None:
        self.history.append(entry)
        if len(self.history) > limit:
            self.history = self.history[-limit:]

    @property
    def awaiting_cancellation(self) -> bool:
        return isinstance(self.pending_flow, AwaitingCancellationChoice)


class ContextUpdate(BaseModel):
    """Partial update; only explicitly supplied fields are applied."""

    client_name: Optional[str] = None
    intent: Optional[str] = None
    sentiment: Optional[str] = None
    conversation_state: Optional[Literal["active", "waiting", "closed"]] = None
    last_message: Optional[str] = None
    last_response: Optional[str] = None
    pending_flow: Optional[PendingFlow] = None
    welcome_sent_at: Optional[datetime] = None
    extensions: Optional[dict[str, Any]] = None


class ContextStats(BaseModel):
    total: int = 0
    active: int = 0
    waiting: int = 0
    closed: int = 0
    average_message_count: float = 0.0


class ContextSummary(BaseModel):
    client_phone: str
    client_name: Optional[str] = None
    conversation_state: str
    intent: Optional[str] = None
    sentiment: Optional[str] = None
    message_count: int = 0
    last_interaction: datetime
