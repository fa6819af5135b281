"""
Shared fixtures: a scripted oracle, instant sleeps and a fully wired container.
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable

import pytest

from teamroles.api import AppContainer
from teamroles.config import Settings
from teamroles.executor import BatchExecutor
from teamroles.explanation.prompt import BATCH_MAX_TOKENS, SINGLE_MAX_TOKENS
from teamroles.scoring.prompt import SCORING_MAX_TOKENS

_MEMBER_ID_RE = re.compile(r"^memberId: (\S+)$", re.MULTILINE)


def banded_matrix(n: int) -> list[list[int]]:
    """score[i][j] = 100 - 5*|i-j|, so member i <-> role i is the unique optimum."""
    return [[max(0, min(100, 100 - 5 * abs(i - j))) for j in range(n)] for i in range(n)]


def explanations_for(messages: list[dict[str, str]]) -> str:
    ids = _MEMBER_ID_RE.findall(messages[-1]["content"])
    return json.dumps([{"memberId": mid, "text": f"Good fit for member {mid[:8]}."} for mid in ids])


class ScriptedOracle:
    """
    Oracle stand-in. Each kind of call (scoring, batch explanation, single
    explanation) has a script: a string, an exception to raise, or a callable
    taking the messages. A list is consumed one item per call, last item repeating.
    """

    configured = True

    def __init__(self, size: int = 10, scoring: Any = None, explain: Any = None, single: Any = None) -> None:
        self.scripts: dict[int, Any] = {
            SCORING_MAX_TOKENS: scoring if scoring is not None else json.dumps(banded_matrix(size)),
            BATCH_MAX_TOKENS: explain if explain is not None else explanations_for,
            SINGLE_MAX_TOKENS: single if single is not None else "A natural fit for this role.",
        }
        self.calls: list[dict[str, Any]] = []

    def count(self, max_tokens: int) -> int:
        return sum(1 for c in self.calls if c["max_tokens"] == max_tokens)

    async def complete(self, messages: list[dict[str, str]], temperature: float, max_tokens: int) -> str:
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        script = self.scripts[max_tokens]
        if isinstance(script, list):
            n = self.count(max_tokens) - 1
            script = script[min(n, len(script) - 1)]
        if isinstance(script, BaseException):
            raise script
        if callable(script):
            return script(messages)
        return script


class SleepRecorder:
    """Instant replacement for asyncio.sleep that remembers the requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def oracle() -> ScriptedOracle:
    return ScriptedOracle()


@pytest.fixture
def settings() -> Settings:
    return Settings(oracle_api_key="test-key")


@pytest.fixture
def make_container(settings, sleeper) -> Callable[..., AppContainer]:
    def _make(oracle: Any, **executor_kw: Any) -> AppContainer:
        executor = BatchExecutor(sleep=sleeper, **executor_kw)
        return AppContainer.build(settings=settings, oracle=oracle, executor=executor)
    return _make


@pytest.fixture
def container(make_container, oracle) -> AppContainer:
    return make_container(oracle)


def fill_roster(container: AppContainer, roster_id: str, count: int | None = None) -> None:
    """Add `count` members (default: up to the roster size)."""
    roster = container.rosters.get_roster(roster_id)
    start = roster.member_count
    for i in range(start, count if count is not None else roster.size):
        container.rosters.add_member(
            roster_id,
            name=f"Member {i + 1}",
            occupation=f"Occupation {i + 1}",
            skills=[f"skill-{i}", "teamwork"],
            traits=[f"trait-{i}"],
        )


@pytest.fixture
def group(container):
    return container.groups.create_group("Workshop", max_rosters=3)


@pytest.fixture
def full_roster(container, group):
    roster = container.rosters.list_rosters(group.id)[0]
    fill_roster(container, roster.id)
    return roster


@pytest.fixture
def fill(container) -> Callable[..., None]:
    return lambda roster_id, count=None: fill_roster(container, roster_id, count)


@pytest.fixture
def make_oracle() -> type[ScriptedOracle]:
    return ScriptedOracle
