import json
import logging
from redis.asyncio import from_url as redis_from_url
from app.platform.ports.event_bus import EventBusPort, SchedulingEvent

log = logging.getLogger("bus.redis")

class RedisEventBus(EventBusPort):
    """Appends events to a Redis stream (XADD, approximate MAXLEN trimming)."""

    def __init__(self, url: str | None, stream: str | None = None, maxlen: int = 10000):
        if not url:
            raise RuntimeError("REDIS_URL not configured")
        self.redis = redis_from_url(url, encoding="utf-8", decode_responses=True)
        self.stream = stream or "slotbook.events"
        self.maxlen = maxlen

    async def publish(self, topic: str, key: str, value: SchedulingEvent, headers: dict | None = None) -> None:
        payload = {
            "topic": topic,
            "event_type": value["event_type"],
            "key": key,
            "value": json.dumps(value, default=str),
            "headers": json.dumps(headers or {}),
        }
        await self.redis.xadd(self.stream, payload, maxlen=self.maxlen, approximate=True)
        log.debug(f"[REDIS BUS] XADD stream={self.stream} topic={topic} key={key}")

    async def close(self) -> None:
        await self.redis.aclose()
