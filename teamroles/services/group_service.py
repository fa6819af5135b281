"""
Group-centric service: lifecycle state machine, join codes, stats and summaries.
Create group: auto-create its rosters. End group: freeze rosters, drop the join code.
"""
from __future__ import annotations

import logging
import random
import re
import string
from datetime import datetime, timedelta, timezone
from typing import Any

from teamroles.config import Settings, get_settings
from teamroles.errors import (
    ConflictError,
    GroupInactiveError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from teamroles.models import Group, GroupSettings, GroupStatus
from teamroles.persistence import Stores
from teamroles.roles import DEFAULT_ROLE_DEFINITIONS

logger = logging.getLogger(__name__)

JOIN_CODE_LENGTH = 6
JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
_JOIN_CODE_RE = re.compile(r"^[A-Z0-9]{6}$")

MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000
MAX_ROSTERS_LIMIT = 1000

# Settings that may change while a group is active. Roster size and count are
# fixed at creation because rosters already exist.
_MUTABLE_SETTINGS = {"allow_self_registration", "enable_secondary_phase", "auto_end_after_all_complete"}

# ---------- Valid transitions ----------

_VALID_TRANSITIONS: dict[GroupStatus, set[GroupStatus]] = {
    GroupStatus.ACTIVE: {GroupStatus.ENDED},
    GroupStatus.ENDED: {GroupStatus.ARCHIVED},
    GroupStatus.ARCHIVED: set(),
}


# ---------- GroupService ----------


class GroupService:
    """
    Domain logic for groups: status transitions, guards, derived stats.
    Persistence is delegated to repositories.
    """

    def __init__(
        self,
        stores: Stores,
        settings: Settings | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._stores = stores
        self._settings = settings or get_settings()
        self._rng = rng or random.SystemRandom()

    # ---------- Lookup ----------

    def get_group(self, group_id: str) -> Group:
        group = self._stores.groups.get(group_id)
        if group is None:
            raise NotFoundError(f"Group not found: {group_id}")
        return group

    def get_by_code(self, join_code: str) -> Group:
        group = self._stores.groups.get_by_code(join_code)
        if group is None:
            raise NotFoundError(f"No group with join code {join_code.strip().upper()}")
        return group

    def list_groups(self, status: GroupStatus | None = None) -> list[Group]:
        return self._stores.groups.list(status)

    def list_active(self) -> list[Group]:
        return self._stores.groups.list(GroupStatus.ACTIVE)

    # ---------- Guards ----------

    def validate_active(self, group_id: str) -> Group:
        """Return the group, or raise if it is missing or no longer accepts changes."""
        group = self.get_group(group_id)
        if not group.is_active:
            raise GroupInactiveError(
                f"Group is {group.status.value} and cannot accept new operations"
            )
        return group

    def transition_status(self, group_id: str, new_status: GroupStatus) -> Group:
        """
        Move the group to new_status if the state machine allows it.
        Valid: active -> ended -> archived.
        """
        group = self.get_group(group_id)
        allowed = _VALID_TRANSITIONS.get(group.status, set())
        if new_status not in allowed:
            raise InvalidTransitionError(
                f"Invalid transition: {group.status.value} -> {new_status.value}"
            )
        self._stores.groups.update_status(group_id, new_status)
        return group

    # ---------- Create / update ----------

    def _generate_join_code(self) -> str:
        while True:
            code = "".join(self._rng.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))
            if self._stores.groups.get_by_code(code) is None:
                return code

    def _check_join_code(self, code: str, group_id: str | None = None) -> str:
        code = code.strip().upper()
        if not _JOIN_CODE_RE.match(code):
            raise ValidationError("Join code must be 6 uppercase letters/numbers")
        existing = self._stores.groups.get_by_code(code)
        if existing is not None and existing.id != group_id:
            raise ConflictError(f"Join code {code} is already in use")
        return code

    def create_group(
        self,
        name: str,
        description: str = "",
        created_by: str = "admin",
        max_rosters: int | None = None,
        roster_size: int | None = None,
        join_code: str | None = None,
        allow_self_registration: bool = True,
        enable_secondary_phase: bool = True,
        auto_end_after_all_complete: bool = False,
    ) -> Group:
        """Create an active group and its rosters ("Team 1" .. "Team k")."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name is required")
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError("Group name too long")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError("Description too long")
        max_rosters = self._settings.default_max_rosters if max_rosters is None else max_rosters
        roster_size = self._settings.roster_size if roster_size is None else roster_size
        if not 1 <= max_rosters <= MAX_ROSTERS_LIMIT:
            raise ValidationError(f"max_rosters must be between 1 and {MAX_ROSTERS_LIMIT}")
        if not 1 <= roster_size <= len(DEFAULT_ROLE_DEFINITIONS):
            raise ValidationError(
                f"roster_size must be between 1 and {len(DEFAULT_ROLE_DEFINITIONS)}"
            )
        code = self._check_join_code(join_code) if join_code else self._generate_join_code()

        group = self._stores.groups.create(
            name=name,
            created_by=created_by,
            description=description,
            join_code=code,
            settings=GroupSettings(
                max_rosters=max_rosters,
                roster_size=roster_size,
                allow_self_registration=allow_self_registration,
                enable_secondary_phase=enable_secondary_phase,
                auto_end_after_all_complete=auto_end_after_all_complete,
            ),
        )
        for i in range(1, max_rosters + 1):
            self._stores.rosters.create(group.id, f"Team {i}", roster_size)
        logger.info(
            "Group created: %r with code %s and %d rosters", name, code, max_rosters,
            extra={"group_id": group.id},
        )
        return group

    def update_group(
        self,
        group_id: str,
        name: str | None = None,
        description: str | None = None,
        join_code: str | None = None,
        settings: dict[str, Any] | None = None,
    ) -> Group:
        group = self.get_group(group_id)
        if not group.is_active:
            raise GroupInactiveError(f"Cannot update {group.status.value} group")
        if name is not None:
            name = name.strip()
            if not name or len(name) > MAX_NAME_LENGTH:
                raise ValidationError("Group name must be 1-200 characters")
            group.name = name
        if description is not None:
            if len(description) > MAX_DESCRIPTION_LENGTH:
                raise ValidationError("Description too long")
            group.description = description
        if join_code is not None:
            group.join_code = self._check_join_code(join_code, group_id)
        if settings:
            unknown = set(settings) - _MUTABLE_SETTINGS
            if unknown:
                raise ValidationError(f"Settings cannot be changed: {', '.join(sorted(unknown))}")
            for key, value in settings.items():
                setattr(group.settings, key, bool(value))
        return group

    # ---------- Lifecycle ----------

    def end_group(self, group_id: str, clear_data: bool = False) -> dict[str, Any]:
        """
        End an active group. Returns the summary taken just before ending.
        The join code is released; with clear_data, rosters and sessions are deleted.
        """
        group = self.get_group(group_id)
        if group.status != GroupStatus.ACTIVE:
            raise InvalidTransitionError(f"Group already {group.status.value}")
        summary = self.summary(group_id)
        self.transition_status(group_id, GroupStatus.ENDED)
        group.join_code = None
        logger.info("Group ended: %r", group.name, extra={"group_id": group_id})
        if clear_data:
            rosters, sessions = self._clear_group_data(group_id)
            logger.info(
                "Cleared %d rosters and %d sessions", rosters, sessions, extra={"group_id": group_id}
            )
        return summary

    def archive_group(self, group_id: str) -> Group:
        group = self.get_group(group_id)
        if group.status == GroupStatus.ACTIVE:
            raise InvalidTransitionError("Cannot archive active group. End it first.")
        return self.transition_status(group_id, GroupStatus.ARCHIVED)

    def delete_group(self, group_id: str) -> dict[str, int]:
        """Remove the group with all of its rosters and sessions. Irreversible."""
        self.get_group(group_id)
        rosters, sessions = self._clear_group_data(group_id)
        self._stores.groups.delete(group_id)
        logger.info("Group deleted", extra={"group_id": group_id})
        return {"rosters": rosters, "sessions": sessions}

    def _clear_group_data(self, group_id: str) -> tuple[int, int]:
        rosters = self._stores.rosters.list_by_group(group_id)
        sessions = 0
        for r in rosters:
            sessions += self._stores.sessions.delete_for_roster(r.id)
            self._stores.rosters.delete(r.id)
        return len(rosters), sessions

    def check_auto_end(self, group_id: str) -> tuple[bool, str | None]:
        """(should_end, reason). Only active groups with auto-end enabled qualify."""
        group = self._stores.groups.get(group_id)
        if group is None or not group.is_active or not group.settings.auto_end_after_all_complete:
            return (False, None)
        stats = self.stats(group_id)
        if stats["total_rosters"] > 0 and stats["assigned_rosters"] >= stats["total_rosters"]:
            return (True, "All rosters have been assigned roles")
        return (False, None)

    def maybe_auto_end(self, group_id: str) -> bool:
        should_end, reason = self.check_auto_end(group_id)
        if not should_end:
            return False
        logger.info("Auto-ending group: %s", reason, extra={"group_id": group_id})
        self.end_group(group_id)
        return True

    def cleanup_ended(self, days_to_keep: int = 30, now: datetime | None = None) -> int:
        """Delete ended groups whose end time is older than days_to_keep. Returns count."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days_to_keep)
        cleaned = 0
        for g in self._stores.groups.list(GroupStatus.ENDED):
            if g.ended_at is not None and g.ended_at < cutoff:
                self.delete_group(g.id)
                cleaned += 1
        logger.info("Cleaned up %d old groups", cleaned)
        return cleaned

    # ---------- Derived data ----------

    def _latest_total(self, roster_id: str) -> float | None:
        session = self._stores.sessions.get_latest_for_roster(roster_id)
        if session is None or session.result is None:
            return None
        return session.result.total_score

    def stats(self, group_id: str) -> dict[str, int]:
        self.get_group(group_id)
        rosters = self._stores.rosters.list_by_group(group_id)
        return {
            "total_rosters": len(rosters),
            "complete_rosters": sum(1 for r in rosters if r.is_complete),
            "total_members": sum(r.member_count for r in rosters),
            "assigned_rosters": sum(1 for r in rosters if self._latest_total(r.id) is not None),
        }

    def summary(self, group_id: str) -> dict[str, Any]:
        group = self.get_group(group_id)
        rosters = self._stores.rosters.list_by_group(group_id)
        rows = []
        for r in rosters:
            total = self._latest_total(r.id)
            rows.append({
                "roster_id": r.id,
                "roster_name": r.name,
                "member_count": r.member_count,
                "is_complete": r.is_complete,
                "has_assignment": total is not None,
                "assignment_score": total,
            })
        scored = [row["assignment_score"] for row in rows if row["assignment_score"] is not None]
        complete = sum(1 for row in rows if row["is_complete"])
        return {
            "group_id": group.id,
            "group_name": group.name,
            "status": group.status.value,
            "rosters": rows,
            "overall_stats": {
                "total_participants": sum(row["member_count"] for row in rows),
                "average_roster_score": sum(scored) / len(scored) if scored else None,
                "completion_rate": (complete / len(rows)) * 100 if rows else 0.0,
            },
        }
