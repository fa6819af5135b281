"""
Optimal member → role assignment.

Maximizing total compatibility is solved as a minimum-cost perfect bipartite
matching on cost = 100 - score with scipy's linear_sum_assignment. The solver is
deterministic, so the same (roster, roles, matrix) always gives the same result,
including on ties.

Also: display details, summary stats and an integrity validator for results.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import numpy as np
from scipy.optimize import linear_sum_assignment

from teamroles.errors import AssignmentError
from teamroles.models import AssignmentResult, CompatibilityMatrix, Pairing, Role, Roster

MAX_SCORE = 100.0

# (label, lower bound); a score lands in the first bucket whose lower bound it reaches.
SCORE_BUCKETS: list[tuple[str, float]] = [
    ("90-100", 90.0),
    ("80-89", 80.0),
    ("70-79", 70.0),
    ("60-69", 60.0),
    ("50-59", 50.0),
    ("0-49", 0.0),
]


def assign_roles(roster: Roster, roles: list[Role], matrix: CompatibilityMatrix) -> AssignmentResult:
    """
    Pick the bijection of members to roles with the highest total score.
    Raises AssignmentError on size mismatch or a degenerate solver result.
    """
    n = roster.member_count
    if n == 0:
        raise AssignmentError("Roster has no members")
    if len(roles) != n:
        raise AssignmentError(f"Expected {n} roles, got {len(roles)}")
    if matrix.size != n or any(len(row) != n for row in matrix.scores):
        raise AssignmentError(f"Score matrix must be {n}x{n}")

    scores = np.asarray(matrix.scores, dtype=float)
    cost = MAX_SCORE - scores
    row_ind, col_ind = linear_sum_assignment(cost)

    if len(row_ind) != n or len(col_ind) != n:
        raise AssignmentError("Solver failed to find a complete assignment")
    if len(set(row_ind.tolist())) != n or len(set(col_ind.tolist())) != n:
        raise AssignmentError("Solver returned duplicate member or role indices")

    pairings: list[Pairing] = []
    total = 0.0
    for i, j in zip(row_ind.tolist(), col_ind.tolist()):
        if not (0 <= i < n and 0 <= j < n):
            raise AssignmentError(f"Invalid assignment indices: [{i}, {j}]")
        score = float(scores[i, j])
        pairings.append(Pairing(member_id=roster.members[i].id, role_id=roles[j].id, score=score))
        total += score

    return AssignmentResult(
        roster_id=roster.id,
        pairings=tuple(pairings),
        total_score=total,
        generated_at=datetime.now(timezone.utc),
    )


def get_assignment_details(
    roster: Roster,
    roles: list[Role],
    result: AssignmentResult,
) -> list[dict[str, Any]]:
    """Pairings joined with member and role display data, highest score first."""
    roles_by_id = {r.id: r for r in roles}
    details: list[dict[str, Any]] = []
    for p in result.pairings:
        member = roster.member(p.member_id)
        if member is None:
            raise AssignmentError(f"Member {p.member_id} not found in roster")
        role = roles_by_id.get(p.role_id)
        if role is None:
            raise AssignmentError(f"Role {p.role_id} not found in roles list")
        details.append({
            "member": member.to_dict(),
            "role": role.to_dict(),
            "score": p.score,
            "explanation": p.explanation,
        })
    details.sort(key=lambda d: d["score"], reverse=True)
    return details


def _bucket_for(score: float) -> str:
    for label, lower in SCORE_BUCKETS:
        if score >= lower:
            return label
    return SCORE_BUCKETS[-1][0]


def get_assignment_stats(result: AssignmentResult) -> dict[str, Any]:
    """Total, mean, min, max and a fixed-bucket histogram of pairing scores."""
    scores = [p.score for p in result.pairings]
    counts = {label: 0 for label, _ in SCORE_BUCKETS}
    for s in scores:
        counts[_bucket_for(s)] += 1
    return {
        "total_score": result.total_score,
        "average_score": result.total_score / len(scores) if scores else 0.0,
        "min_score": min(scores) if scores else 0.0,
        "max_score": max(scores) if scores else 0.0,
        "score_distribution": [{"range": label, "count": counts[label]} for label, _ in SCORE_BUCKETS],
    }


def validate_assignment(
    roster: Roster,
    roles: list[Role],
    result: AssignmentResult,
) -> tuple[bool, list[str]]:
    """Integrity check of a result against its roster and roles. Returns (valid, errors)."""
    errors: list[str] = []
    if result.roster_id != roster.id:
        errors.append("Assignment roster id does not match the provided roster")
    if len(result.pairings) != roster.size:
        errors.append(f"Expected {roster.size} pairings, got {len(result.pairings)}")

    member_ids = [p.member_id for p in result.pairings]
    role_ids = [p.role_id for p in result.pairings]
    if len(set(member_ids)) != len(member_ids):
        errors.append("Duplicate member assignments found")
    if len(set(role_ids)) != len(role_ids):
        errors.append("Duplicate role assignments found")

    known_members = {m.id for m in roster.members}
    known_roles = {r.id for r in roles}
    for p in result.pairings:
        if p.member_id not in known_members:
            errors.append(f"Member {p.member_id} not found in roster")
        if p.role_id not in known_roles:
            errors.append(f"Role {p.role_id} not found in roles list")
        if p.score < 0 or p.score > MAX_SCORE:
            errors.append(f"Invalid score {p.score} for {p.member_id} -> {p.role_id}")

    if abs(sum(p.score for p in result.pairings) - result.total_score) > 1e-6:
        errors.append("Total score does not equal the sum of pairing scores")
    return (not errors, errors)
