"""
Service layer: group lifecycle and roster membership.
Guards and derived stats live here; persistence is delegated to repositories.
"""
from .group_service import GroupService
from .roster_service import MemberSubmission, RosterService, validate_member_fields

__all__ = [
    "GroupService",
    "RosterService",
    "MemberSubmission",
    "validate_member_fields",
]
