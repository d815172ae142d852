from app.core.config import Settings
from app.platform.ports.event_bus import EventBusPort
from app.platform.adapters.bus_noop import NoopEventBus
from app.platform.adapters.bus_redis import RedisEventBus

def build_event_bus(settings: Settings) -> EventBusPort:
    """Pick the bus adapter named by EVENT_BUS_PROVIDER; built once per app in the lifespan."""
    prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
    if prov == "redis":
        return RedisEventBus(settings.REDIS_URL, settings.REDIS_STREAM, settings.REDIS_STREAM_MAXLEN)
    return NoopEventBus()
