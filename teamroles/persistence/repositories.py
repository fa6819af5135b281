"""
Repository interfaces for groups, rosters and sessions.
No business logic here, only read/write operations over InMemoryStore.

Guards (group active, roster full, legal status transitions) live in the
services and orchestrators; repositories trust their callers.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from teamroles.models import (
    AssignmentResult,
    CompatibilityMatrix,
    Group,
    GroupSettings,
    GroupStatus,
    Member,
    Phase,
    Role,
    Roster,
    Session,
    SessionStatus,
)
from teamroles.persistence.store import InMemoryStore


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------- GroupRepository ----------


class GroupRepository:
    """CRUD for groups. Join codes are unique among stored groups."""

    def __init__(self, store: InMemoryStore[Group] | None = None) -> None:
        self._store: InMemoryStore[Group] = store if store is not None else InMemoryStore()

    def create(
        self,
        name: str,
        created_by: str,
        settings: GroupSettings,
        description: str = "",
        join_code: str | None = None,
        id: str | None = None,
    ) -> Group:
        group = Group(
            id=id or str(uuid.uuid4()),
            name=name,
            description=description,
            created_by=created_by,
            created_at=_now(),
            settings=settings,
            join_code=join_code,
        )
        return self._store.put(group.id, group)

    def get(self, group_id: str) -> Group | None:
        return self._store.get(group_id)

    def get_by_code(self, join_code: str) -> Group | None:
        code = join_code.strip().upper()
        for g in self._store.list():
            if g.join_code is not None and g.join_code == code:
                return g
        return None

    def list(self, status: GroupStatus | None = None) -> list[Group]:
        """Newest first."""
        groups = self._store.list(lambda g: status is None or g.status == status)
        return sorted(groups, key=lambda g: g.created_at, reverse=True)

    def update(self, group_id: str, **fields: Any) -> Group | None:
        group = self._store.get(group_id)
        if group is None:
            return None
        for key, value in fields.items():
            if not hasattr(group, key):
                raise AttributeError(f"Group has no field {key!r}")
            setattr(group, key, value)
        return group

    def update_status(self, group_id: str, status: GroupStatus) -> Group | None:
        group = self._store.get(group_id)
        if group is None:
            return None
        group.status = status
        if status == GroupStatus.ENDED and group.ended_at is None:
            group.ended_at = _now()
        return group

    def delete(self, group_id: str) -> bool:
        return self._store.delete(group_id)

    def is_active(self, group_id: str) -> bool:
        group = self._store.get(group_id)
        return group is not None and group.is_active


# ---------- RosterRepository ----------


class RosterRepository:
    """CRUD for rosters and their member lists."""

    def __init__(self, store: InMemoryStore[Roster] | None = None) -> None:
        self._store: InMemoryStore[Roster] = store if store is not None else InMemoryStore()

    def create(self, group_id: str, name: str, size: int, id: str | None = None) -> Roster:
        roster = Roster(
            id=id or str(uuid.uuid4()),
            name=name,
            group_id=group_id,
            size=size,
            created_at=_now(),
        )
        return self._store.put(roster.id, roster)

    def get(self, roster_id: str) -> Roster | None:
        return self._store.get(roster_id)

    def list(self) -> list[Roster]:
        return self._store.list()

    def list_by_group(self, group_id: str) -> list[Roster]:
        """Creation order (Team 1, Team 2, ...)."""
        return self._store.list(lambda r: r.group_id == group_id)

    def add_member(
        self,
        roster_id: str,
        name: str,
        occupation: str,
        skills: list[str],
        traits: list[str],
        id: str | None = None,
    ) -> Member | None:
        roster = self._store.get(roster_id)
        if roster is None:
            return None
        member = Member(
            id=id or str(uuid.uuid4()),
            name=name,
            occupation=occupation,
            skills=tuple(skills),
            traits=tuple(traits),
            submitted_at=_now(),
        )
        roster.members.append(member)
        return member

    def remove_member(self, roster_id: str, member_id: str) -> bool:
        roster = self._store.get(roster_id)
        if roster is None:
            return False
        before = len(roster.members)
        roster.members = [m for m in roster.members if m.id != member_id]
        return len(roster.members) != before

    def clear_members(self, roster_id: str) -> bool:
        roster = self._store.get(roster_id)
        if roster is None:
            return False
        roster.members = []
        return True

    def delete(self, roster_id: str) -> bool:
        return self._store.delete(roster_id)


# ---------- SessionRepository ----------


class SessionRepository:
    """
    Sessions keyed by id. A roster's sessions are its history; the most recently
    created one is current.
    """

    def __init__(self, store: InMemoryStore[Session] | None = None) -> None:
        self._store: InMemoryStore[Session] = store if store is not None else InMemoryStore()

    def create(
        self,
        roster_id: str,
        phase: Phase,
        roles: list[Role],
        members: list[Member] | None = None,
        id: str | None = None,
    ) -> Session:
        session = Session(
            id=id or str(uuid.uuid4()),
            roster_id=roster_id,
            phase=phase,
            roles=list(roles),
            created_at=_now(),
            members=list(members or []),
        )
        return self._store.put(session.id, session)

    def get(self, session_id: str) -> Session | None:
        return self._store.get(session_id)

    def list_for_roster(self, roster_id: str) -> list[Session]:
        """Oldest first (store insertion order == creation order)."""
        return self._store.list(lambda s: s.roster_id == roster_id)

    def get_latest_for_roster(self, roster_id: str) -> Session | None:
        sessions = self.list_for_roster(roster_id)
        return sessions[-1] if sessions else None

    def update_status(self, session_id: str, status: SessionStatus) -> Session | None:
        session = self._store.get(session_id)
        if session is None:
            return None
        session.status = status
        return session

    def attach_matrix(self, session_id: str, matrix: CompatibilityMatrix) -> Session | None:
        session = self._store.get(session_id)
        if session is None:
            return None
        session.matrix = matrix
        return session

    def attach_result(self, session_id: str, result: AssignmentResult) -> Session | None:
        session = self._store.get(session_id)
        if session is None:
            return None
        session.result = result
        return session

    def set_error(self, session_id: str, error: str | None) -> Session | None:
        session = self._store.get(session_id)
        if session is None:
            return None
        session.error = error
        return session

    def delete_for_roster(self, roster_id: str) -> int:
        sessions = self.list_for_roster(roster_id)
        for s in sessions:
            self._store.delete(s.id)
        return len(sessions)


# ---------- Stores ----------


@dataclass
class Stores:
    """The three repositories, created once per process by the application container."""
    groups: GroupRepository = field(default_factory=GroupRepository)
    rosters: RosterRepository = field(default_factory=RosterRepository)
    sessions: SessionRepository = field(default_factory=SessionRepository)
