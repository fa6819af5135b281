"""
Roster service: membership changes behind group guards, plus bulk submission.

A roster only changes while its group is active. Members are immutable once
submitted; removal is the only way to change who is on a roster. Completeness is
derived from the member count, so every add/remove keeps it correct.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from teamroles.config import Settings, get_settings
from teamroles.errors import (
    ConflictError,
    DuplicateMemberError,
    NotFoundError,
    RosterFullError,
    TeamRolesError,
    ValidationError,
    error_message_of,
)
from teamroles.models import Member, Roster
from teamroles.persistence import Stores
from teamroles.services.group_service import GroupService

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 100
MAX_TAG_LENGTH = 50


@dataclass
class MemberSubmission:
    """One (roster, member profile) pair of a bulk submission."""
    roster_id: str
    name: str
    occupation: str
    skills: list[str] = field(default_factory=list)
    traits: list[str] = field(default_factory=list)


def _clean_text(value: str, label: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{label} is required")
    if len(text) > MAX_FIELD_LENGTH:
        raise ValidationError(f"{label} too long")
    return text


def _clean_tags(values: list[str], label: str, max_tags: int) -> list[str]:
    tags = [(v or "").strip() for v in values]
    if not tags:
        raise ValidationError(f"At least one {label} is required")
    if len(tags) > max_tags:
        raise ValidationError(f"Too many {label}s (max {max_tags})")
    for t in tags:
        if not t or len(t) > MAX_TAG_LENGTH:
            raise ValidationError(f"Each {label} must be 1-{MAX_TAG_LENGTH} characters")
    return tags


def validate_member_fields(
    name: str,
    occupation: str,
    skills: list[str],
    traits: list[str],
    max_tags: int = 10,
) -> tuple[str, str, list[str], list[str]]:
    """Trimmed, checked member fields. Raises ValidationError on the first problem."""
    return (
        _clean_text(name, "Name"),
        _clean_text(occupation, "Occupation"),
        _clean_tags(skills, "skill", max_tags),
        _clean_tags(traits, "trait", max_tags),
    )


class RosterService:
    def __init__(self, stores: Stores, groups: GroupService, settings: Settings | None = None) -> None:
        self._stores = stores
        self._groups = groups
        self._settings = settings or get_settings()

    # ---------- Lookup ----------

    def get_roster(self, roster_id: str) -> Roster:
        roster = self._stores.rosters.get(roster_id)
        if roster is None:
            raise NotFoundError(f"Roster not found: {roster_id}")
        return roster

    def list_rosters(self, group_id: str) -> list[Roster]:
        self._groups.get_group(group_id)
        return self._stores.rosters.list_by_group(group_id)

    # ---------- Mutations (active groups only) ----------

    def create_roster(self, group_id: str, name: str, self_registered: bool = False) -> Roster:
        """Add a roster to an active group. Participant-created rosters need allow_self_registration."""
        group = self._groups.validate_active(group_id)
        if self_registered and not group.settings.allow_self_registration:
            raise ConflictError("This group does not allow self-registered rosters")
        return self._stores.rosters.create(group_id, _clean_text(name, "Roster name"), group.settings.roster_size)

    def add_member(
        self,
        roster_id: str,
        name: str,
        occupation: str,
        skills: list[str],
        traits: list[str],
    ) -> Member:
        roster = self.get_roster(roster_id)
        self._groups.validate_active(roster.group_id)
        name, occupation, skills, traits = validate_member_fields(
            name, occupation, skills, traits, self._settings.max_tags
        )
        if roster.member_count >= roster.size:
            raise RosterFullError(f"Roster is already full ({roster.size} members maximum)")
        if any(m.name.lower() == name.lower() for m in roster.members):
            raise DuplicateMemberError("A member with this name already exists in the roster")
        member = self._stores.rosters.add_member(roster_id, name, occupation, skills, traits)
        logger.debug(
            "Member added (%d/%d)", roster.member_count, roster.size, extra={"roster_id": roster_id}
        )
        return member

    def remove_member(self, roster_id: str, member_id: str) -> None:
        roster = self.get_roster(roster_id)
        self._groups.validate_active(roster.group_id)
        if not self._stores.rosters.remove_member(roster_id, member_id):
            raise NotFoundError(f"Member not found in roster: {member_id}")

    def reset_roster(self, roster_id: str) -> int:
        """Remove every member and every session of the roster. Returns sessions removed."""
        roster = self.get_roster(roster_id)
        self._groups.validate_active(roster.group_id)
        self._stores.rosters.clear_members(roster_id)
        removed = self._stores.sessions.delete_for_roster(roster_id)
        logger.info("Roster reset (%d sessions removed)", removed, extra={"roster_id": roster_id})
        return removed

    def delete_roster(self, roster_id: str) -> None:
        roster = self.get_roster(roster_id)
        self._groups.validate_active(roster.group_id)
        self._stores.sessions.delete_for_roster(roster_id)
        self._stores.rosters.delete(roster_id)

    def roster_stats(self, roster_id: str) -> dict[str, Any]:
        roster = self.get_roster(roster_id)
        skills: list[str] = []
        occupations: list[str] = []
        for m in roster.members:
            skills.extend(s for s in m.skills if s not in skills)
            if m.occupation not in occupations:
                occupations.append(m.occupation)
        return {
            "member_count": roster.member_count,
            "is_complete": roster.is_complete,
            "skills": skills,
            "occupations": occupations,
        }

    # ---------- Bulk submission ----------

    def bulk_submit(
        self,
        submissions: list[MemberSubmission],
        continue_on_error: bool = True,
        validate_limits: bool = True,
    ) -> dict[str, Any]:
        """
        Add many members at once. Each submission reports independently.
        Without continue_on_error, any field or capacity problem found up front
        rejects the whole batch before anything is added.
        """
        if not submissions:
            raise ValidationError("Submissions must not be empty")
        limit = self._settings.max_bulk_submissions
        if len(submissions) > limit:
            raise ValidationError(f"Maximum {limit} submissions can be processed in a single batch")

        results: list[dict[str, Any] | None] = [None] * len(submissions)
        accepted: list[int] = []
        problems: list[str] = []
        for i, sub in enumerate(submissions):
            try:
                validate_member_fields(sub.name, sub.occupation, sub.skills, sub.traits, self._settings.max_tags)
            except ValidationError as e:
                problems.append(f"Submission {i + 1}: {e.message}")
                results[i] = _bulk_row(sub, error=e)
                continue
            accepted.append(i)

        if validate_limits:
            incoming = Counter(submissions[i].roster_id for i in accepted)
            for roster_id, adding in incoming.items():
                roster = self._stores.rosters.get(roster_id)
                current = roster.member_count if roster else 0
                size = roster.size if roster else self._settings.roster_size
                if current + adding > size:
                    problems.append(
                        f"Roster {roster_id} would exceed {size}-member limit "
                        f"(current: {current}, adding: {adding})"
                    )

        if problems and not continue_on_error:
            raise ValidationError("; ".join(problems))

        for i in accepted:
            sub = submissions[i]
            try:
                member = self.add_member(sub.roster_id, sub.name, sub.occupation, sub.skills, sub.traits)
            except TeamRolesError as e:
                results[i] = _bulk_row(sub, error=e)
            else:
                results[i] = _bulk_row(sub, member=member)

        rows = [r for r in results if r is not None]
        affected = list(dict.fromkeys(sub.roster_id for sub in submissions))
        status = []
        for roster_id in affected:
            roster = self._stores.rosters.get(roster_id)
            status.append({
                "roster_id": roster_id,
                "roster_name": roster.name if roster else None,
                "member_count": roster.member_count if roster else 0,
                "is_complete": roster.is_complete if roster else False,
            })
        successful = sum(1 for r in rows if r["success"])
        summary = {
            "total": len(rows),
            "successful": successful,
            "failed": len(rows) - successful,
            "rosters_affected": len(affected),
            "complete_rosters": sum(1 for s in status if s["is_complete"]),
        }
        logger.info(
            "Bulk submission completed: %d/%d successful, %d rosters affected",
            successful, len(rows), len(affected),
        )
        return {"results": rows, "summary": summary, "rosters_status": status, "problems": problems}


def _bulk_row(sub: MemberSubmission, member: Member | None = None, error: Exception | None = None) -> dict[str, Any]:
    row: dict[str, Any] = {
        "roster_id": sub.roster_id,
        "member_name": sub.name,
        "success": error is None,
    }
    if member is not None:
        row["member"] = member.to_dict()
    if error is not None:
        row["error"] = error_message_of(error)
    return row
