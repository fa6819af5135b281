"""
Tests for scoring: prompt shape, strict matrix parsing and preconditions.
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from teamroles.errors import ConflictError, OracleResponseError, RosterIncompleteError, ValidationError
from teamroles.models import Member, Phase, Roster
from teamroles.roles import build_roles, default_roles
from teamroles.scoring import build_scoring_messages, parse_score_matrix, score_roster
from teamroles.scoring.prompt import SCORING_MAX_TOKENS, SCORING_TEMPERATURE

from conftest import ScriptedOracle, banded_matrix


def _roster(n: int, size: int | None = None) -> Roster:
    now = datetime.now(timezone.utc)
    members = [
        Member(
            id=f"m{i}",
            name=f"Member {i + 1}",
            occupation="Designer" if i % 2 else "Engineer",
            skills=("python", "sql"),
            traits=("curious",),
            submitted_at=now,
        )
        for i in range(n)
    ]
    return Roster(id="r1", name="Team 1", group_id="g1", size=size or n, created_at=now, members=members)


# ---------- Prompt ----------


def test_prompt_numbers_members_and_roles_in_order():
    roster, roles = _roster(3), default_roles(3)
    system, user = build_scoring_messages(roster, roles)
    assert system["role"] == "system"
    assert user["role"] == "user"
    content = user["content"]
    assert content.index("Member 1: Member 1") < content.index("Member 3: Member 3")
    assert "Role 1: Team Leader" in content
    assert "Role 3: Creative Director" in content
    assert "3x3 JSON array" in content
    assert "Skills: python, sql" in content


# ---------- Parsing ----------


def test_parse_accepts_a_bare_matrix():
    scores = parse_score_matrix(json.dumps(banded_matrix(4)), 4)
    assert len(scores) == 4
    assert scores[0] == (100.0, 95.0, 90.0, 85.0)
    assert all(isinstance(v, float) for row in scores for v in row)


def test_parse_finds_matrix_inside_prose_and_fences():
    text = "Here are the scores:\n```json\n[[10, 20], [30, 40.5]]\n```\nLet me know!"
    assert parse_score_matrix(text, 2) == ((10.0, 20.0), (30.0, 40.5))


def test_parse_rejects_missing_row():
    text = json.dumps(banded_matrix(10)[:9])
    with pytest.raises(OracleResponseError, match=r"10x10 \(got 9 rows\)"):
        parse_score_matrix(text, 10)


def test_parse_rejects_short_row():
    rows = banded_matrix(3)
    rows[1] = rows[1][:2]
    with pytest.raises(OracleResponseError, match="Row 1 must have exactly 3"):
        parse_score_matrix(json.dumps(rows), 3)


@pytest.mark.parametrize("bad", ["true", "101", "-1", "NaN", "\"80\"", "null"])
def test_parse_rejects_bad_cells(bad):
    text = f"[[50, {bad}], [50, 50]]"
    with pytest.raises(OracleResponseError, match=r"\[0\]\[1\]"):
        parse_score_matrix(text, 2)


def test_parse_accepts_boundaries():
    assert parse_score_matrix("[[0, 100], [100, 0]]", 2) == ((0.0, 100.0), (100.0, 0.0))


def test_parse_rejects_text_without_array():
    with pytest.raises(OracleResponseError, match="No JSON array"):
        parse_score_matrix("I cannot score these people.", 2)


def test_oracle_response_errors_are_validation_errors():
    # Malformed replies must never be retried by the executor.
    with pytest.raises(ValidationError):
        parse_score_matrix("[[1]]", 2)


# ---------- score_roster ----------


def test_score_roster_calls_oracle_once_with_scoring_settings():
    oracle = ScriptedOracle(size=4)
    roster = _roster(4)
    matrix = asyncio.run(score_roster(oracle, roster, default_roles(4)))
    assert matrix.roster_id == "r1"
    assert matrix.size == 4
    assert matrix.generated_at.tzinfo is not None
    [call] = oracle.calls
    assert call["temperature"] == SCORING_TEMPERATURE
    assert call["max_tokens"] == SCORING_MAX_TOKENS


def test_incomplete_roster_is_rejected_before_calling_oracle():
    oracle = ScriptedOracle(size=10)
    roster = _roster(9, size=10)
    with pytest.raises(RosterIncompleteError, match="exactly 10 members"):
        asyncio.run(score_roster(oracle, roster, default_roles(10)))
    assert oracle.calls == []


def test_wrong_role_count_is_rejected_before_calling_oracle():
    oracle = ScriptedOracle(size=3)
    with pytest.raises(ValidationError, match="exactly 3 roles"):
        asyncio.run(score_roster(oracle, _roster(3), default_roles(2)))
    assert oracle.calls == []


def test_malformed_reply_surfaces_as_validation_error():
    oracle = ScriptedOracle(size=3, scoring="[[1, 2, 3], [4, 5, 6]]")
    with pytest.raises(OracleResponseError):
        asyncio.run(score_roster(oracle, _roster(3), default_roles(3)))


# ---------- Roles ----------


def test_custom_roles_fill_blank_names():
    roles = build_roles(Phase.SECONDARY, 3, ["Captain", "  ", ""])
    assert [r.name for r in roles] == ["Captain", "Role #2", "Role #3"]
    assert len({r.id for r in roles}) == 3


def test_secondary_phase_needs_roles_and_permission():
    with pytest.raises(ValidationError):
        build_roles(Phase.SECONDARY, 3, None)
    with pytest.raises(ValidationError):
        build_roles(Phase.SECONDARY, 3, ["a", "b"])
    with pytest.raises(ConflictError):
        build_roles(Phase.SECONDARY, 3, ["a", "b", "c"], secondary_enabled=False)


def test_primary_phase_ignores_custom_names():
    roles = build_roles(Phase.PRIMARY, 2, ["x", "y"])
    assert [r.name for r in roles] == ["Team Leader", "Technical Specialist"]
