"""
Tests for explanation generation: batch reply parsing, all-or-nothing
patching and single-pair cleanup.
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from conftest import ScriptedOracle
from teamroles.errors import OracleResponseError, ValidationError
from teamroles.explanation import explain_assignment, explain_pairing, parse_explanations
from teamroles.explanation.generator import clean_single_explanation
from teamroles.explanation.prompt import (
    BATCH_MAX_TOKENS,
    EXPLANATION_TEMPERATURE,
    SINGLE_MAX_TOKENS,
    build_explanation_messages,
)
from teamroles.models import AssignmentResult, Member, Pairing, Roster
from teamroles.roles import default_roles

IDS = ["a1", "b2", "c3"]


def _reply(items) -> str:
    return json.dumps(items)


def _setup():
    now = datetime.now(timezone.utc)
    members = [
        Member(id=mid, name=f"Person {k}", occupation="Analyst", skills=("excel",), traits=("calm",), submitted_at=now)
        for k, mid in enumerate(IDS)
    ]
    roster = Roster(id="r1", name="Team 1", group_id="g1", size=3, created_at=now, members=members)
    roles = default_roles(3)
    result = AssignmentResult(
        roster_id="r1",
        pairings=(
            Pairing(member_id="a1", role_id=roles[0].id, score=60),
            Pairing(member_id="b2", role_id=roles[1].id, score=95),
            Pairing(member_id="c3", role_id=roles[2].id, score=80),
        ),
        total_score=235,
        generated_at=now,
    )
    return roster, roles, result


# ---------- parse_explanations ----------


def test_parse_maps_every_member():
    text = "Sure!\n" + _reply([{"memberId": mid, "text": f"  Reason {mid}  "} for mid in IDS])
    assert parse_explanations(text, IDS) == {mid: f"Reason {mid}" for mid in IDS}


def test_parse_rejects_wrong_count():
    with pytest.raises(OracleResponseError, match="exactly 3 explanations"):
        parse_explanations(_reply([{"memberId": "a1", "text": "x"}]), IDS)


@pytest.mark.parametrize(
    "items, message",
    [
        (["a1", "b2", "c3"], "expected an object"),
        ([{"memberId": "a1"}, {"memberId": "b2", "text": "x"}, {"memberId": "c3", "text": "x"}], "missing memberId or text"),
        ([{"memberId": "a1", "text": "   "}, {"memberId": "b2", "text": "x"}, {"memberId": "c3", "text": "x"}], "Empty explanation"),
        ([{"memberId": "zz", "text": "x"}, {"memberId": "b2", "text": "x"}, {"memberId": "c3", "text": "x"}], "unknown member zz"),
        ([{"memberId": "a1", "text": "x"}, {"memberId": "a1", "text": "y"}, {"memberId": "c3", "text": "x"}], "Duplicate explanation"),
        ([{"memberId": "a1", "text": "x" * 501}, {"memberId": "b2", "text": "x"}, {"memberId": "c3", "text": "x"}], "exceeds 500"),
    ],
)
def test_parse_rejects_malformed_items(items, message):
    with pytest.raises(OracleResponseError, match=message):
        parse_explanations(_reply(items), IDS)


# ---------- explain_assignment ----------


def test_prompt_lists_pairings_highest_score_first():
    roster, roles, result = _setup()
    _, user = build_explanation_messages(roster, roles, result)
    content = user["content"]
    assert content.index("memberId: b2") < content.index("memberId: c3") < content.index("memberId: a1")
    assert "Person 1 -> Technical Specialist (Score: 95)" in content


def test_explain_assignment_patches_every_pairing():
    roster, roles, result = _setup()
    oracle = ScriptedOracle(size=3)
    explained = asyncio.run(explain_assignment(oracle, roster, roles, result))
    assert explained.explanations_generated
    assert not explained.explanation_failed
    assert all(p.explanation for p in explained.pairings)
    # Scores and pairings are untouched; the input result is not mutated.
    assert [(p.member_id, p.role_id, p.score) for p in explained.pairings] == [
        (p.member_id, p.role_id, p.score) for p in result.pairings
    ]
    assert all(p.explanation is None for p in result.pairings)
    [call] = oracle.calls
    assert call["max_tokens"] == BATCH_MAX_TOKENS
    assert call["temperature"] == EXPLANATION_TEMPERATURE


def test_explain_assignment_is_all_or_nothing():
    roster, roles, result = _setup()
    partial = _reply([{"memberId": "a1", "text": "x"}, {"memberId": "b2", "text": "y"}])
    oracle = ScriptedOracle(size=3, explain=partial)
    with pytest.raises(OracleResponseError):
        asyncio.run(explain_assignment(oracle, roster, roles, result))


def test_explain_assignment_checks_result_before_calling_oracle():
    roster, roles, result = _setup()
    oracle = ScriptedOracle(size=3)
    bad = AssignmentResult(
        roster_id="r1",
        pairings=result.pairings[:2],
        total_score=155,
        generated_at=result.generated_at,
    )
    with pytest.raises(ValidationError, match="exactly 3 pairings"):
        asyncio.run(explain_assignment(oracle, roster, roles, bad))
    assert oracle.calls == []


# ---------- Single pairing ----------


@pytest.mark.parametrize(
    "raw, cleaned",
    [
        ("  Great fit.  ", "Great fit."),
        ('"Great fit."', "Great fit."),
        ("“Great fit.”\n", "Great fit."),
    ],
)
def test_single_explanation_is_trimmed(raw, cleaned):
    assert clean_single_explanation(raw) == cleaned


def test_single_explanation_rejects_empty_and_long_text():
    with pytest.raises(OracleResponseError):
        clean_single_explanation('  ""  ')
    with pytest.raises(OracleResponseError):
        clean_single_explanation("x" * 501)


def test_explain_pairing_uses_single_settings():
    roster, roles, _ = _setup()
    oracle = ScriptedOracle(size=3, single="'Calm under pressure.'")
    text = asyncio.run(explain_pairing(oracle, roster.members[0], roles[0], 88))
    assert text == "Calm under pressure."
    [call] = oracle.calls
    assert call["max_tokens"] == SINGLE_MAX_TOKENS
    assert "Match score: 88/100" in call["messages"][-1]["content"]
