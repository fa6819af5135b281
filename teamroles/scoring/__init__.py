"""
Compatibility scoring: one oracle call turns a complete roster and its roles
into an N×N score matrix (row = member, column = role, values in [0, 100]).
"""
from __future__ import annotations

from teamroles.scoring.builder import parse_score_matrix, score_roster
from teamroles.scoring.prompt import build_scoring_messages

__all__ = ["build_scoring_messages", "parse_score_matrix", "score_roster"]
