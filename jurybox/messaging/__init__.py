"""Per-session message log and durable log backends."""

from jurybox.messaging.backend import InMemoryLogBackend, LogBackend, SQLiteLogBackend
from jurybox.messaging.log import MessageLog, Subscription, for_round

__all__ = [
    "InMemoryLogBackend",
    "LogBackend",
    "MessageLog",
    "SQLiteLogBackend",
    "Subscription",
    "for_round",
]
