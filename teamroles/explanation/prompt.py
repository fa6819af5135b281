"""
Prompt templates for assignment explanations.

Batch prompt: every pairing of one assignment, highest score first, with the
member id the oracle must echo back. Single prompt: one member/role pair,
plain-text answer. Explanations are advisory text only; they never change the
assignment itself.
"""
from __future__ import annotations

from teamroles.models import AssignmentResult, Member, Role, Roster

EXPLANATION_TEMPERATURE = 0.4
BATCH_MAX_TOKENS = 3000
SINGLE_MAX_TOKENS = 200

SYSTEM_INSTRUCTION = (
    "You are an expert team formation analyst. You provide brief, insightful explanations "
    "of why people were given their team roles, based on their profiles and team dynamics."
)
JSON_ONLY = " Always respond with valid JSON only."


def _profile(member: Member) -> str:
    return (
        f"{member.occupation} | Skills: {', '.join(member.skills)} | "
        f"Traits: {', '.join(member.traits)}"
    )


def build_explanation_messages(
    roster: Roster,
    roles: list[Role],
    result: AssignmentResult,
) -> list[dict[str, str]]:
    """
    Build the message list for one batch explanation call.
    Assumes every pairing references a roster member and a listed role.
    """
    roles_by_id = {r.id: r for r in roles}
    pairings = sorted(result.pairings, key=lambda p: p.score, reverse=True)
    blocks = []
    for p in pairings:
        member = roster.member(p.member_id)
        role = roles_by_id[p.role_id]
        blocks.append(
            f"memberId: {member.id}\n"
            f"{member.name} -> {role.name} (Score: {p.score:g})\n"
            f"Profile: {_profile(member)}"
        )
    n = len(pairings)
    assignments_text = "\n\n".join(blocks)
    user_content = f"""Write a brief explanation (1-2 sentences each) for each of the following {n} role assignments. Focus on why each person suits their assigned role given their skills, occupation and personality traits.

ASSIGNMENTS:
{assignments_text}

INSTRUCTIONS:
1. Write 1-2 sentences explaining why each assignment makes sense.
2. Focus on the specific match between the person's profile and the role.
3. Mention complementary skills and team dynamics where relevant.
4. Keep each explanation under 200 characters.
5. Be positive and constructive.

Respond with ONLY a JSON array of exactly {n} objects, each with "memberId" (copied exactly from above) and "text":

[
  {{"memberId": "<id>", "text": "Strong analytical skills and a finance background suit data-driven planning."}},
  ...
]

Your response must contain ONLY the JSON array, no other text."""
    return [
        {"role": "system", "content": SYSTEM_INSTRUCTION + JSON_ONLY},
        {"role": "user", "content": user_content},
    ]


def build_single_explanation_messages(member: Member, role: Role, score: float) -> list[dict[str, str]]:
    """Message list for explaining a single member/role pairing."""
    role_line = role.name if not role.description else f"{role.name} ({role.description})"
    user_content = f"""Write a brief explanation (1-2 sentences) of why this person suits this role.

PERSON: {member.name}
Occupation: {member.occupation}
Skills: {', '.join(member.skills)}
Personality traits: {', '.join(member.traits)}

ASSIGNED ROLE: {role_line}
Match score: {score:g}/100

Keep it under 200 characters, positive and constructive.
Respond with just the explanation text, no JSON or formatting."""
    return [
        {"role": "system", "content": SYSTEM_INSTRUCTION},
        {"role": "user", "content": user_content},
    ]
