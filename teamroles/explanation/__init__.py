"""
Best-effort explanation pass: short natural-language reasons for each pairing
of a finished assignment. Output is advisory; the assignment itself never changes.
"""
from __future__ import annotations

from teamroles.explanation.generator import (
    explain_assignment,
    explain_pairing,
    parse_explanations,
)

__all__ = ["explain_assignment", "explain_pairing", "parse_explanations"]
