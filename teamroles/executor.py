"""
Bounded-concurrency batch runner with retry, backoff and a final re-pass.

Units are zero-argument coroutine factories keyed by an id (roster id in
practice). Execution model:

  1. Partition units into groups of max_concurrency. Groups run one after the
     other, separated by group_pause; units inside a group run concurrently and
     settle independently.
  2. Each unit retries retryable failures (errors.is_retryable) up to
     max_retries times, sleeping base_delay * 2**attempt between tries.
     Terminal failures are returned after the first attempt.
  3. Optional re-pass: units whose final failure was retryable get one more
     full retry cycle, all concurrently, each after a random jitter.

Nothing here raises for a unit failure; every unit yields a UnitOutcome.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from teamroles.errors import error_message_of, error_type_of, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")

UnitFactory = Callable[[], Awaitable[Any]]
SleepFn = Callable[[float], Awaitable[Any]]


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    """Fixed-size partition; the last group may be shorter."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


@dataclass
class UnitOutcome:
    """Result of one unit. attempts counts every call; retries only the last cycle's."""
    key: str
    ok: bool
    value: Any = None
    error: BaseException | None = None
    attempts: int = 0
    retries: int = 0
    repassed: bool = False

    @property
    def error_message(self) -> str | None:
        return error_message_of(self.error) if self.error is not None else None

    @property
    def error_type(self) -> str | None:
        return error_type_of(self.error) if self.error is not None else None

    @property
    def retryable(self) -> bool:
        return self.error is not None and is_retryable(self.error)


class BatchExecutor:
    def __init__(
        self,
        max_concurrency: int = 10,
        max_retries: int = 3,
        base_delay: float = 1.0,
        group_pause: float = 0.5,
        repass_jitter: float = 2.0,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.group_pause = group_pause
        self.repass_jitter = repass_jitter
        self._sleep = sleep
        self._rng = rng or random.Random()

    def with_concurrency(self, max_concurrency: int) -> BatchExecutor:
        """Same policy, different group size."""
        return BatchExecutor(
            max_concurrency=max_concurrency,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            group_pause=self.group_pause,
            repass_jitter=self.repass_jitter,
            sleep=self._sleep,
            rng=self._rng,
        )

    # ---------- Single unit ----------

    async def _attempt_cycle(self, key: str, factory: UnitFactory) -> UnitOutcome:
        attempts = 0
        retries = 0
        while True:
            attempts += 1
            try:
                value = await factory()
            except Exception as e:
                if is_retryable(e) and retries < self.max_retries:
                    delay = self.base_delay * (2 ** retries)
                    retries += 1
                    logger.warning(
                        "Unit %s failed (%s); retry %d/%d in %.2fs",
                        key, error_message_of(e), retries, self.max_retries, delay,
                    )
                    await self._sleep(delay)
                    continue
                if is_retryable(e):
                    logger.warning("Unit %s gave up after %d retries: %s", key, retries, error_message_of(e))
                return UnitOutcome(key=key, ok=False, error=e, attempts=attempts, retries=retries)
            return UnitOutcome(key=key, ok=True, value=value, attempts=attempts, retries=retries)

    async def run_one(self, key: str, factory: UnitFactory) -> UnitOutcome:
        """Run one unit under the retry policy (no grouping, no re-pass)."""
        return await self._attempt_cycle(key, factory)

    # ---------- Batch ----------

    async def _repass(self, previous: UnitOutcome, factory: UnitFactory) -> UnitOutcome:
        await self._sleep(self._rng.uniform(0, self.repass_jitter))
        outcome = await self._attempt_cycle(previous.key, factory)
        outcome.attempts += previous.attempts
        outcome.repassed = True
        return outcome

    async def run_all(
        self,
        units: Sequence[tuple[str, UnitFactory]],
        repass_failed: bool = True,
    ) -> list[UnitOutcome]:
        """Run every unit; outcomes come back in input order."""
        outcomes: list[UnitOutcome] = []
        groups = chunk(units, self.max_concurrency)
        for idx, group in enumerate(groups):
            if idx > 0 and self.group_pause > 0:
                await self._sleep(self.group_pause)
            logger.info("Processing group %d/%d with %d units", idx + 1, len(groups), len(group))
            settled = await asyncio.gather(
                *(self._attempt_cycle(key, factory) for key, factory in group),
                return_exceptions=True,
            )
            for (key, _), res in zip(group, settled):
                if isinstance(res, BaseException):
                    outcomes.append(UnitOutcome(key=key, ok=False, error=res, attempts=1))
                else:
                    outcomes.append(res)

        if repass_failed:
            pending = [i for i, o in enumerate(outcomes) if not o.ok and o.retryable]
            if pending:
                logger.info("Re-passing %d failed units", len(pending))
                settled = await asyncio.gather(
                    *(self._repass(outcomes[i], units[i][1]) for i in pending),
                    return_exceptions=True,
                )
                for i, res in zip(pending, settled):
                    if isinstance(res, BaseException):
                        logger.error("Re-pass of unit %s aborted: %r", outcomes[i].key, res)
                        continue
                    outcomes[i] = res
        return outcomes
