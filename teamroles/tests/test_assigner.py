"""
Tests for optimal assignment: bijection, optimality, determinism, ties,
details/stats/validation helpers.
"""
from __future__ import annotations

import itertools
import random
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from teamroles.assigner import (
    assign_roles,
    get_assignment_details,
    get_assignment_stats,
    validate_assignment,
)
from teamroles.errors import AssignmentError
from teamroles.models import AssignmentResult, CompatibilityMatrix, Member, Pairing, Role, Roster


def _roster(n: int) -> Roster:
    now = datetime.now(timezone.utc)
    members = [
        Member(id=f"m{i}", name=f"Member {i}", occupation="Engineer", skills=("a",), traits=("b",), submitted_at=now)
        for i in range(n)
    ]
    return Roster(id="r1", name="Team 1", group_id="g1", size=n, created_at=now, members=members)


def _roles(n: int) -> list[Role]:
    return [Role(id=f"role{j}", name=f"Role {j}") for j in range(n)]


def _matrix(scores: list[list[float]]) -> CompatibilityMatrix:
    return CompatibilityMatrix(
        roster_id="r1",
        scores=tuple(tuple(float(v) for v in row) for row in scores),
        generated_at=datetime.now(timezone.utc),
    )


def _assert_bijection(result, roster, roles) -> None:
    assert len(result.pairings) == len(roster.members)
    assert {p.member_id for p in result.pairings} == {m.id for m in roster.members}
    assert {p.role_id for p in result.pairings} == {r.id for r in roles}


def test_identity_matrix_pairs_member_i_with_role_i():
    n = 10
    roster, roles = _roster(n), _roles(n)
    scores = [[100 if i == j else 0 for j in range(n)] for i in range(n)]
    result = assign_roles(roster, roles, _matrix(scores))
    _assert_bijection(result, roster, roles)
    assert result.total_score == 100 * n
    for p in result.pairings:
        assert p.member_id[1:] == p.role_id[4:]


def test_random_matrices_give_bijection_with_total_equal_to_sum():
    rng = random.Random(7)
    for n in (1, 3, 6, 10):
        roster, roles = _roster(n), _roles(n)
        scores = [[rng.randint(0, 100) for _ in range(n)] for _ in range(n)]
        result = assign_roles(roster, roles, _matrix(scores))
        _assert_bijection(result, roster, roles)
        idx = {m.id: i for i, m in enumerate(roster.members)}
        jdx = {r.id: j for j, r in enumerate(roles)}
        assert result.total_score == pytest.approx(
            sum(scores[idx[p.member_id]][jdx[p.role_id]] for p in result.pairings)
        )
        assert result.total_score == pytest.approx(sum(p.score for p in result.pairings))


def test_assignment_is_optimal_against_brute_force():
    rng = random.Random(11)
    n = 6
    roster, roles = _roster(n), _roles(n)
    scores = [[rng.randint(0, 100) for _ in range(n)] for _ in range(n)]
    best = max(sum(scores[i][perm[i]] for i in range(n)) for perm in itertools.permutations(range(n)))
    assert assign_roles(roster, roles, _matrix(scores)).total_score == best


def test_assignment_is_deterministic():
    rng = random.Random(3)
    n = 10
    roster, roles = _roster(n), _roles(n)
    matrix = _matrix([[rng.choice([50, 60, 70]) for _ in range(n)] for _ in range(n)])
    first = assign_roles(roster, roles, matrix)
    second = assign_roles(roster, roles, matrix)
    assert [(p.member_id, p.role_id) for p in first.pairings] == [(p.member_id, p.role_id) for p in second.pairings]


def test_tied_members_still_produce_a_bijection():
    n = 4
    roster, roles = _roster(n), _roles(n)
    # Members 0 and 1 have identical rows.
    scores = [[90, 80, 10, 10], [90, 80, 10, 10], [10, 10, 70, 60], [10, 10, 60, 70]]
    result = assign_roles(roster, roles, _matrix(scores))
    _assert_bijection(result, roster, roles)
    assert result.total_score == 90 + 80 + 70 + 70


def test_uniform_matrix_still_produces_a_bijection():
    n = 5
    roster, roles = _roster(n), _roles(n)
    result = assign_roles(roster, roles, _matrix([[50] * n for _ in range(n)]))
    _assert_bijection(result, roster, roles)
    assert result.total_score == 250


def test_size_mismatches_are_rejected():
    roster = _roster(3)
    with pytest.raises(AssignmentError):
        assign_roles(roster, _roles(2), _matrix([[1, 2, 3]] * 3))
    with pytest.raises(AssignmentError):
        assign_roles(roster, _roles(3), _matrix([[1, 2, 3]] * 2))
    with pytest.raises(AssignmentError):
        assign_roles(roster, _roles(3), _matrix([[1, 2], [1, 2], [1, 2]]))


def test_details_are_sorted_by_descending_score():
    n = 3
    roster, roles = _roster(n), _roles(n)
    scores = [[30, 0, 0], [0, 90, 0], [0, 0, 60]]
    result = assign_roles(roster, roles, _matrix(scores))
    details = get_assignment_details(roster, roles, result)
    assert [d["score"] for d in details] == [90, 60, 30]
    assert details[0]["member"]["name"] == "Member 1"
    assert details[0]["role"]["name"] == "Role 1"


def test_stats_buckets_use_greatest_lower_bound():
    now = datetime.now(timezone.utc)
    scores = [100, 90, 89.5, 80, 75, 60, 59.9, 50, 49.99, 0]
    pairings = tuple(Pairing(member_id=f"m{i}", role_id=f"role{i}", score=s) for i, s in enumerate(scores))
    result = AssignmentResult(roster_id="r1", pairings=pairings, total_score=sum(scores), generated_at=now)
    stats = get_assignment_stats(result)
    buckets = {b["range"]: b["count"] for b in stats["score_distribution"]}
    assert buckets == {"90-100": 2, "80-89": 2, "70-79": 1, "60-69": 1, "50-59": 2, "0-49": 2}
    assert stats["min_score"] == 0
    assert stats["max_score"] == 100
    assert stats["average_score"] == pytest.approx(sum(scores) / 10)


def test_validate_assignment_accepts_solver_output():
    n = 4
    roster, roles = _roster(n), _roles(n)
    result = assign_roles(roster, roles, _matrix([[10 * (i + j) for j in range(n)] for i in range(n)]))
    assert validate_assignment(roster, roles, result) == (True, [])


def test_validate_assignment_reports_every_problem():
    n = 3
    roster, roles = _roster(n), _roles(n)
    result = assign_roles(roster, roles, _matrix([[50] * n for _ in range(n)]))
    broken = replace(
        result,
        roster_id="other",
        pairings=(
            Pairing(member_id="m0", role_id="role0", score=50),
            Pairing(member_id="m0", role_id="role0", score=150),
            Pairing(member_id="ghost", role_id="nope", score=50),
        ),
    )
    valid, errors = validate_assignment(roster, roles, broken)
    assert not valid
    text = " | ".join(errors)
    assert "roster id" in text
    assert "Duplicate member" in text
    assert "Duplicate role" in text
    assert "ghost" in text
    assert "nope" in text
    assert "Invalid score 150" in text
    assert "Total score" in text
