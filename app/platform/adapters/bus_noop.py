import logging
from app.platform.ports.event_bus import EventBusPort, SchedulingEvent

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Logs events instead of shipping them; the default when no broker is configured."""

    async def publish(self, topic: str, key: str, value: SchedulingEvent, headers: dict | None = None) -> None:
        subject = value["subject"]
        log.info(f"[NOOP BUS] {topic} {value['event_type']} {subject['type']}={subject['id']} key={key}")
        log.debug(f"[NOOP BUS] payload={value['payload']} headers={headers or {}}")

    async def close(self) -> None:
        return None
