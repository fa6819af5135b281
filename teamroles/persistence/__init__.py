"""
Persistence layer for groups, rosters and sessions.
No business logic here, only read/write interfaces over in-memory stores.
"""
from .repositories import (
    GroupRepository,
    RosterRepository,
    SessionRepository,
    Stores,
)
from .store import InMemoryStore

__all__ = [
    "InMemoryStore",
    "GroupRepository",
    "RosterRepository",
    "SessionRepository",
    "Stores",
]
