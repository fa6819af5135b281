"""
Data models for the role assignment backend.
Domain objects only; persistence and pipeline logic live elsewhere.

Group → Rosters (exactly N members when complete) → Sessions (one per pipeline
run). A Session carries the roles it was run against, the compatibility matrix
and the final assignment.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

MAX_EXPLANATION_CHARS = 500


# ---------- Session status (state machine) ----------
class SessionStatus(str, Enum):
    """Pipeline lifecycle: pending → scoring → assigning → justifying → complete."""
    PENDING = "pending"
    SCORING = "scoring"
    ASSIGNING = "assigning"
    JUSTIFYING = "justifying"
    COMPLETE = "complete"


# ---------- Group status ----------
class GroupStatus(str, Enum):
    """Group lifecycle: active → ended → archived."""
    ACTIVE = "active"
    ENDED = "ended"
    ARCHIVED = "archived"


# ---------- Assignment phase ----------
class Phase(str, Enum):
    PRIMARY = "primary"      # canonical role list
    SECONDARY = "secondary"  # caller-supplied role names


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


# ---------- Member ----------
@dataclass(frozen=True)
class Member:
    """
    One profiled person. Immutable once submitted; the only way to change a
    roster's membership is explicit removal.
    """
    id: str
    name: str
    occupation: str
    skills: tuple[str, ...]
    traits: tuple[str, ...]
    submitted_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "occupation": self.occupation,
            "skills": list(self.skills),
            "traits": list(self.traits),
            "submitted_at": self.submitted_at.isoformat(),
        }


# ---------- Role ----------
@dataclass(frozen=True)
class Role:
    id: str
    name: str
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "name": self.name}
        if self.description is not None:
            d["description"] = self.description
        return d


# ---------- Roster ----------
@dataclass
class Roster:
    """
    Fixed-size collection of members owned by a group.
    is_complete is derived from the member count, so it can never go stale.
    """
    id: str
    name: str
    group_id: str
    size: int
    created_at: datetime
    members: list[Member] = field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def is_complete(self) -> bool:
        return len(self.members) == self.size

    def member(self, member_id: str) -> Member | None:
        for m in self.members:
            if m.id == member_id:
                return m
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "group_id": self.group_id,
            "size": self.size,
            "member_count": self.member_count,
            "is_complete": self.is_complete,
            "members": [m.to_dict() for m in self.members],
            "created_at": self.created_at.isoformat(),
        }


# ---------- CompatibilityMatrix ----------
@dataclass(frozen=True)
class CompatibilityMatrix:
    """N×N scores in [0, 100]: row = member index, column = role index."""
    roster_id: str
    scores: tuple[tuple[float, ...], ...]
    generated_at: datetime

    @property
    def size(self) -> int:
        return len(self.scores)

    def to_dict(self) -> dict[str, Any]:
        return {
            "roster_id": self.roster_id,
            "scores": [list(row) for row in self.scores],
            "generated_at": self.generated_at.isoformat(),
        }


# ---------- Pairing ----------
@dataclass(frozen=True)
class Pairing:
    member_id: str
    role_id: str
    score: float
    explanation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "member_id": self.member_id,
            "role_id": self.role_id,
            "score": self.score,
        }
        if self.explanation is not None:
            d["explanation"] = self.explanation
        return d


# ---------- AssignmentResult ----------
@dataclass(frozen=True)
class AssignmentResult:
    """
    Bijection between a roster's members and a session's roles.
    explanation_failed is set when the explanation pass ran and gave up.
    """
    roster_id: str
    pairings: tuple[Pairing, ...]
    total_score: float
    generated_at: datetime
    explanations_generated: bool = False
    explanation_failed: bool = False

    def pairing_for(self, member_id: str) -> Pairing | None:
        for p in self.pairings:
            if p.member_id == member_id:
                return p
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "roster_id": self.roster_id,
            "pairings": [p.to_dict() for p in self.pairings],
            "total_score": self.total_score,
            "generated_at": self.generated_at.isoformat(),
            "explanations_generated": self.explanations_generated,
            "explanation_failed": self.explanation_failed,
        }


# ---------- Session ----------
@dataclass
class Session:
    """
    One run of scoring → matching → explanation for a roster.
    A roster keeps every session it ever had; the latest one is current.
    members is the roster as it was when the run started.
    """
    id: str
    roster_id: str
    phase: Phase
    roles: list[Role]
    created_at: datetime
    status: SessionStatus = SessionStatus.PENDING
    matrix: CompatibilityMatrix | None = None
    result: AssignmentResult | None = None
    members: list[Member] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "roster_id": self.roster_id,
            "phase": self.phase.value,
            "roles": [r.to_dict() for r in self.roles],
            "members": [m.to_dict() for m in self.members],
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "matrix": self.matrix.to_dict() if self.matrix else None,
            "result": self.result.to_dict() if self.result else None,
        }
        if self.error is not None:
            d["error"] = self.error
        return d


# ---------- Group ----------
@dataclass
class GroupSettings:
    max_rosters: int = 10
    roster_size: int = 10
    allow_self_registration: bool = True
    enable_secondary_phase: bool = True
    auto_end_after_all_complete: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_rosters": self.max_rosters,
            "roster_size": self.roster_size,
            "allow_self_registration": self.allow_self_registration,
            "enable_secondary_phase": self.enable_secondary_phase,
            "auto_end_after_all_complete": self.auto_end_after_all_complete,
        }


@dataclass
class Group:
    """
    Administrative container for rosters. Rosters and their membership can only
    change while the group is active; once ended it is frozen.
    """
    id: str
    name: str
    created_by: str
    created_at: datetime
    settings: GroupSettings
    description: str = ""
    status: GroupStatus = GroupStatus.ACTIVE
    join_code: str | None = None
    ended_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == GroupStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "status": self.status.value,
            "settings": self.settings.to_dict(),
            "join_code": self.join_code,
            "created_at": self.created_at.isoformat(),
            "ended_at": _iso(self.ended_at),
        }
