"""
Prompt template for compatibility scoring.

The oracle sees numbered member profiles (occupation, skills, traits) and
numbered roles, and must answer with a bare N×N JSON array. Numbering is the
only link between matrix indices and roster/role order, so both lists are
rendered in their stored order.
"""
from __future__ import annotations

from teamroles.models import Role, Roster

SCORING_TEMPERATURE = 0.3
SCORING_MAX_TOKENS = 2000

SYSTEM_INSTRUCTION = (
    "You are an expert team formation analyst. You will analyze member profiles and "
    "score how well each person fits different team roles. Always respond with valid JSON only."
)


def _format_members(roster: Roster) -> str:
    blocks = []
    for i, m in enumerate(roster.members, start=1):
        blocks.append(
            f"Member {i}: {m.name}\n"
            f"  Occupation: {m.occupation}\n"
            f"  Skills: {', '.join(m.skills)}\n"
            f"  Personality traits: {', '.join(m.traits)}"
        )
    return "\n\n".join(blocks)


def _format_roles(roles: list[Role]) -> str:
    lines = []
    for i, r in enumerate(roles, start=1):
        line = f"Role {i}: {r.name}"
        if r.description:
            line += f" - {r.description}"
        lines.append(line)
    return "\n".join(lines)


def build_scoring_messages(roster: Roster, roles: list[Role]) -> list[dict[str, str]]:
    """
    Build the message list for one scoring call: system + user.
    Returns a list of message dicts with "role" and "content".
    """
    n = len(roles)
    user_content = f"""Analyze the following team members and score how well each person would fit each of the {n} roles.

MEMBERS:
{_format_members(roster)}

ROLES TO FILL:
{_format_roles(roles)}

INSTRUCTIONS:
1. Score every member (1-{n}) against every role (1-{n}) on a scale of 0-100.
2. Consider occupation, skills and personality traits.
3. Higher scores mean a better fit for that role.
4. Think about complementary skills and team dynamics.
5. Keep scoring fair and consider diverse strengths.

Respond with ONLY a {n}x{n} JSON array where:
- each row is a member (Member 1 ... Member {n}),
- each column is a role (Role 1 ... Role {n}),
- each cell is a number from 0 to 100.

Example format:
[
  [85, 70, 92, 60, 75, 80, 65, 90, 55, 78],
  [75, 85, 60, 95, 70, 65, 88, 55, 80, 72],
  ...
]

Your response must contain ONLY the JSON array, no other text."""
    return [
        {"role": "system", "content": SYSTEM_INSTRUCTION},
        {"role": "user", "content": user_content},
    ]
