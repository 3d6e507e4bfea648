"""Realtime fanout - WebSocket hub, Redis pub/sub y composición de sinks."""

from .broadcaster import Broadcaster, FanoutBroadcaster
from .hub import WebSocketHub
from .redis_publisher import RedisBroadcaster, RedisConnection

__all__ = [
    "Broadcaster",
    "FanoutBroadcaster",
    "WebSocketHub",
    "RedisBroadcaster",
    "RedisConnection",
]
