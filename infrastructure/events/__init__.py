"""EventSink implementations."""
from .inmemory import InMemoryEventSink
from .redis import RedisEventSink

__all__ = ["InMemoryEventSink", "RedisEventSink"]
