from typing import Protocol, TypedDict, runtime_checkable


class EventSubject(TypedDict):
    type: str  # slot | appointment | availability_config | blocked_period
    id: str


class SchedulingEvent(TypedDict):
    """What the outbox relay hands to a bus, one per committed change."""
    event_type: str
    subject: EventSubject
    payload: dict
    occurred_at: str
    outbox_id: str


@runtime_checkable
class EventBusPort(Protocol):
    async def publish(self, topic: str, key: str, value: SchedulingEvent, headers: dict | None = None) -> None: ...
    async def close(self) -> None: ...
