"""
Role lists for assignment sessions.

Primary phase uses the canonical list below. Secondary phase uses N names
supplied by the caller; blank names fall back to "Role #i". Role ids are minted
per session so two sessions never share role identities.
"""
from __future__ import annotations

import uuid

from teamroles.errors import ConflictError, ValidationError
from teamroles.models import Phase, Role

# ---------- Canonical roles (shown to users) ----------
# Descriptions are prompt context for the oracle as well as display text.

DEFAULT_ROLE_DEFINITIONS: list[tuple[str, str]] = [
    ("Team Leader", "Sets direction, keeps the team aligned and makes final calls."),
    ("Technical Specialist", "Owns the hardest technical problems and quality of the build."),
    ("Creative Director", "Shapes the concept, visuals and overall user experience."),
    ("Strategy Advisor", "Frames the problem, weighs options and plans ahead."),
    ("Data Analyst", "Finds, cleans and interprets the data behind decisions."),
    ("Project Coordinator", "Tracks tasks, deadlines and hand-offs between people."),
    ("Quality Assurance", "Tests assumptions and deliverables, catches mistakes early."),
    ("Communications Lead", "Presents the work and handles communication with outsiders."),
    ("Resource Manager", "Manages budget, tools and the team's time."),
    ("Innovation Driver", "Pushes unconventional ideas and challenges the default plan."),
]

DEFAULT_ROLE_NAMES: list[str] = [name for name, _ in DEFAULT_ROLE_DEFINITIONS]


def _new_role_id() -> str:
    return str(uuid.uuid4())


def default_roles(size: int) -> list[Role]:
    """Canonical roles for a roster of `size` members."""
    if size > len(DEFAULT_ROLE_DEFINITIONS):
        raise ValidationError(
            f"Only {len(DEFAULT_ROLE_DEFINITIONS)} default roles exist; supply custom roles for size {size}"
        )
    return [
        Role(id=_new_role_id(), name=name, description=description)
        for name, description in DEFAULT_ROLE_DEFINITIONS[:size]
    ]


def custom_roles(names: list[str], size: int) -> list[Role]:
    """Caller-supplied roles. Exactly `size` names are required."""
    if len(names) != size:
        raise ValidationError(f"Must supply exactly {size} roles (got {len(names)})")
    return [
        Role(id=_new_role_id(), name=(name or "").strip() or f"Role #{i + 1}")
        for i, name in enumerate(names)
    ]


def build_roles(
    phase: Phase,
    size: int,
    names: list[str] | None = None,
    secondary_enabled: bool = True,
) -> list[Role]:
    """
    Resolve the role list for a session.
    Secondary phase needs custom names and a group that allows it; primary ignores names.
    """
    if phase == Phase.SECONDARY:
        if not secondary_enabled:
            raise ConflictError("Secondary phase is disabled for this group")
        if names is None:
            raise ValidationError(f"Secondary phase requires exactly {size} custom roles")
        return custom_roles(names, size)
    return default_roles(size)
