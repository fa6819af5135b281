"""
Explanation generator: natural-language reasons for each pairing.

Batch flow (one oracle call per assignment):
  1. Check the result has exactly N pairings that resolve to roster members and roles.
  2. build_explanation_messages -> oracle.complete (temperature 0.4, 3000 tokens).
  3. parse_explanations: JSON array of N {"memberId", "text"} objects covering
     every member. Any gap fails the whole batch; results are never partially patched.
  4. Return a new AssignmentResult with every explanation set.

Single flow: explain_pairing returns one plain-text explanation.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from teamroles.errors import OracleResponseError, ValidationError
from teamroles.explanation.prompt import (
    BATCH_MAX_TOKENS,
    EXPLANATION_TEMPERATURE,
    SINGLE_MAX_TOKENS,
    build_explanation_messages,
    build_single_explanation_messages,
)
from teamroles.models import MAX_EXPLANATION_CHARS, AssignmentResult, Member, Role, Roster
from teamroles.oracle import OracleClient, extract_json_array

logger = logging.getLogger(__name__)

_QUOTES = "\"'“”‘’"


def _check_result(roster: Roster, roles: list[Role], result: AssignmentResult) -> None:
    if len(result.pairings) != roster.size:
        raise ValidationError(
            f"Assignment must have exactly {roster.size} pairings (got {len(result.pairings)})"
        )
    role_ids = {r.id for r in roles}
    for p in result.pairings:
        if roster.member(p.member_id) is None:
            raise ValidationError(f"Member {p.member_id} not found in roster")
        if p.role_id not in role_ids:
            raise ValidationError(f"Role {p.role_id} not found in roles list")


def parse_explanations(text: str, member_ids: list[str]) -> dict[str, str]:
    """
    Parse a batch reply into {member_id: explanation}.
    Raises OracleResponseError unless every member id gets exactly one valid text.
    """
    data: list[Any] = extract_json_array(text)
    expected = set(member_ids)
    if len(data) != len(member_ids):
        raise OracleResponseError(
            f"Must have exactly {len(member_ids)} explanations (got {len(data)})"
        )
    out: dict[str, str] = {}
    for item in data:
        if not isinstance(item, dict):
            raise OracleResponseError("Invalid explanation format: expected an object")
        member_id = item.get("memberId")
        body = item.get("text")
        if not isinstance(member_id, str) or not isinstance(body, str):
            raise OracleResponseError("Invalid explanation format: missing memberId or text")
        body = body.strip()
        if not body:
            raise OracleResponseError(f"Empty explanation for member {member_id}")
        if len(body) > MAX_EXPLANATION_CHARS:
            raise OracleResponseError(
                f"Explanation for member {member_id} exceeds {MAX_EXPLANATION_CHARS} characters"
            )
        if member_id not in expected:
            raise OracleResponseError(f"Explanation for unknown member {member_id}")
        if member_id in out:
            raise OracleResponseError(f"Duplicate explanation for member {member_id}")
        out[member_id] = body
    missing = expected - out.keys()
    if missing:
        raise OracleResponseError(f"No explanation found for member {sorted(missing)[0]}")
    return out


async def explain_assignment(
    oracle: OracleClient,
    roster: Roster,
    roles: list[Role],
    result: AssignmentResult,
) -> AssignmentResult:
    """One explanation call for a whole assignment. Returns an explained copy of `result`."""
    _check_result(roster, roles, result)
    messages = build_explanation_messages(roster, roles, result)
    text = await oracle.complete(
        messages,
        temperature=EXPLANATION_TEMPERATURE,
        max_tokens=BATCH_MAX_TOKENS,
    )
    explanations = parse_explanations(text, [p.member_id for p in result.pairings])
    pairings = tuple(replace(p, explanation=explanations[p.member_id]) for p in result.pairings)
    return replace(
        result,
        pairings=pairings,
        explanations_generated=True,
        explanation_failed=False,
    )


def clean_single_explanation(text: str) -> str:
    """Trim whitespace and surrounding quotes; reject empty or over-long text."""
    body = text.strip().strip(_QUOTES).strip()
    if not body:
        raise OracleResponseError("Empty explanation")
    if len(body) > MAX_EXPLANATION_CHARS:
        raise OracleResponseError(f"Explanation exceeds {MAX_EXPLANATION_CHARS} characters")
    return body


async def explain_pairing(oracle: OracleClient, member: Member, role: Role, score: float) -> str:
    """Explanation for a single member/role pairing (plain-text reply)."""
    messages = build_single_explanation_messages(member, role, score)
    text = await oracle.complete(
        messages,
        temperature=EXPLANATION_TEMPERATURE,
        max_tokens=SINGLE_MAX_TOKENS,
    )
    return clean_single_explanation(text)
