"""
Score matrix builder: validate inputs, call the oracle once, validate the reply.

Pipeline:
  1. Preconditions (roster has exactly N members, exactly N roles). Failures are
     local ValidationErrors; nothing is sent to the oracle.
  2. build_scoring_messages -> oracle.complete (temperature 0.3, 2000 tokens).
  3. parse_score_matrix: first JSON array in the reply, strict N×N numeric check.

No retries here; BatchExecutor wraps score_roster when it needs them.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any

from teamroles.errors import OracleResponseError, RosterIncompleteError, ValidationError
from teamroles.models import CompatibilityMatrix, Role, Roster
from teamroles.oracle import OracleClient, extract_json_array
from teamroles.scoring.prompt import (
    SCORING_MAX_TOKENS,
    SCORING_TEMPERATURE,
    build_scoring_messages,
)

logger = logging.getLogger(__name__)


def _check_score(value: Any, i: int, j: int) -> float:
    # bool is an int subclass; "true" is not a score.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise OracleResponseError(f"Invalid score at [{i}][{j}]: must be a number between 0 and 100")
    if not math.isfinite(value) or value < 0 or value > 100:
        raise OracleResponseError(f"Invalid score at [{i}][{j}]: {value} is outside 0-100")
    return float(value)


def parse_score_matrix(text: str, size: int) -> tuple[tuple[float, ...], ...]:
    """
    Parse an oracle reply into a size×size tuple of float rows.
    Any shape, type or range violation raises OracleResponseError.
    """
    data = extract_json_array(text)
    if len(data) != size:
        raise OracleResponseError(f"Score matrix must be {size}x{size} (got {len(data)} rows)")
    rows: list[tuple[float, ...]] = []
    for i, row in enumerate(data):
        if not isinstance(row, list) or len(row) != size:
            got = len(row) if isinstance(row, list) else type(row).__name__
            raise OracleResponseError(f"Row {i} must have exactly {size} scores (got {got})")
        rows.append(tuple(_check_score(v, i, j) for j, v in enumerate(row)))
    return tuple(rows)


def check_scoring_inputs(roster: Roster, roles: list[Role]) -> None:
    """Raise ValidationError unless the roster is complete and roles match its size."""
    if not roster.is_complete:
        raise RosterIncompleteError(
            f"Roster must have exactly {roster.size} members (has {roster.member_count})"
        )
    if len(roles) != roster.size:
        raise ValidationError(f"Must supply exactly {roster.size} roles (got {len(roles)})")


async def score_roster(oracle: OracleClient, roster: Roster, roles: list[Role]) -> CompatibilityMatrix:
    """One scoring call for one roster. Returns the validated compatibility matrix."""
    check_scoring_inputs(roster, roles)
    messages = build_scoring_messages(roster, roles)
    logger.debug("Scoring roster %s (%d members)", roster.id, roster.size, extra={"roster_id": roster.id})
    text = await oracle.complete(
        messages,
        temperature=SCORING_TEMPERATURE,
        max_tokens=SCORING_MAX_TOKENS,
    )
    scores = parse_score_matrix(text, roster.size)
    return CompatibilityMatrix(
        roster_id=roster.id,
        scores=scores,
        generated_at=datetime.now(timezone.utc),
    )
