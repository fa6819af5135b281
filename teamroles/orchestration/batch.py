"""
Batch orchestration: many rosters through the same pipeline in one call.

  1. Preflight every request (same checks as a single run). A failure is
     recorded for that roster and never aborts the batch.
  2. Score every preflight-passing roster in one executor run: groups of
     max_concurrency, retries with backoff, optional re-pass of transient failures.
  3. Match each scored roster. Scoring or matching failures revert that session
     to pending and are reported with their error.
  4. Explanations for all matched rosters run as one tracked background batch
     (or are skipped, and the sessions complete immediately).

batch_status reports the current state of rosters / sessions without touching them.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from teamroles.assigner import get_assignment_details, get_assignment_stats
from teamroles.config import Settings, get_settings
from teamroles.errors import TeamRolesError, ValidationError, error_message_of, error_type_of
from teamroles.executor import BatchExecutor, UnitOutcome
from teamroles.explanation import explain_assignment
from teamroles.models import AssignmentResult, Phase, Session, SessionStatus
from teamroles.oracle import OracleClient
from teamroles.orchestration.assignment import AssignmentOrchestrator, PreparedRun
from teamroles.persistence import Stores
from teamroles.scoring import score_roster

logger = logging.getLogger(__name__)

MIN_BATCH_CONCURRENCY = 1
MAX_BATCH_CONCURRENCY = 50


@dataclass
class BatchRequest:
    roster_id: str
    phase: Phase | str = Phase.PRIMARY
    custom_roles: list[str] | None = None


@dataclass
class BatchOptions:
    max_concurrency: int = 10
    retry_failed: bool = True
    include_explanations: bool = True
    include_details: bool = False
    include_stats: bool = False

    def validate(self) -> None:
        if not MIN_BATCH_CONCURRENCY <= self.max_concurrency <= MAX_BATCH_CONCURRENCY:
            raise ValidationError(
                f"max_concurrency must be between {MIN_BATCH_CONCURRENCY} and {MAX_BATCH_CONCURRENCY}"
            )


@dataclass
class RosterReport:
    roster_id: str
    success: bool = False
    session_id: str | None = None
    error: str | None = None
    error_type: str | None = None
    result: AssignmentResult | None = None
    details: list[dict[str, Any]] | None = None
    stats: dict[str, Any] | None = None
    explanations_pending: bool = False

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "roster_id": self.roster_id,
            "session_id": self.session_id,
            "success": self.success,
            "result": self.result.to_dict() if self.result else None,
            "explanations_pending": self.explanations_pending,
        }
        if self.error is not None:
            d["error"] = self.error
            d["error_type"] = self.error_type
        if self.details is not None:
            d["details"] = self.details
        if self.stats is not None:
            d["stats"] = self.stats
        return d


@dataclass
class BatchAssignReport:
    results: list[RosterReport]
    summary: dict[str, int]
    processing_time_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": dict(self.summary),
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class StatusEntry:
    roster_id: str | None
    roster_name: str | None = None
    session: Session | None = None
    error: str | None = None
    details: list[dict[str, Any]] | None = None
    stats: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "roster_id": self.roster_id,
            "roster_name": self.roster_name,
            "session": self.session.to_dict() if self.session else None,
        }
        if self.error is not None:
            d["error"] = self.error
        if self.details is not None:
            d["details"] = self.details
        if self.stats is not None:
            d["stats"] = self.stats
        return d


@dataclass
class BatchStatusReport:
    results: list[StatusEntry] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"results": [r.to_dict() for r in self.results], "summary": dict(self.summary)}


# ---------- BatchOrchestrator ----------


class BatchOrchestrator:
    def __init__(
        self,
        stores: Stores,
        pipeline: AssignmentOrchestrator,
        settings: Settings | None = None,
    ) -> None:
        self._stores = stores
        self._pipeline = pipeline
        self._settings = settings or get_settings()

    def _check_requests(self, requests: list[BatchRequest]) -> None:
        if not requests:
            raise ValidationError("At least one roster is required")
        limit = self._settings.max_batch_rosters
        if len(requests) > limit:
            raise ValidationError(f"Too many rosters (max {limit})")
        seen: set[str] = set()
        for r in requests:
            if r.roster_id in seen:
                raise ValidationError(f"Duplicate roster id in batch: {r.roster_id}")
            seen.add(r.roster_id)

    async def assign_batch(
        self,
        requests: list[BatchRequest],
        options: BatchOptions | None = None,
    ) -> BatchAssignReport:
        """
        Assign every requested roster. Malformed batches raise ValidationError;
        per-roster failures are reported, not raised.
        """
        options = options or BatchOptions()
        options.validate()
        self._check_requests(requests)
        started = time.monotonic()
        logger.info("Starting batch assignment for %d rosters", len(requests))

        reports = {r.roster_id: RosterReport(roster_id=r.roster_id) for r in requests}
        prepared: list[tuple[Session, PreparedRun]] = []
        for req in requests:
            try:
                run = self._pipeline.preflight(req.roster_id, req.phase, req.custom_roles)
            except TeamRolesError as e:
                reports[req.roster_id].error = e.message
                reports[req.roster_id].error_type = e.error_type
                continue
            session = self._pipeline.open_session(run, req.phase)
            reports[req.roster_id].session_id = session.id
            prepared.append((session, run))

        for session, _ in prepared:
            self._pipeline.transition(session.id, SessionStatus.SCORING)

        oracle = self._pipeline.oracle
        executor = self._pipeline.executor.with_concurrency(options.max_concurrency)
        units = [
            (run.roster.id, _scoring_unit(oracle, run))
            for _, run in prepared
        ]
        try:
            outcomes = await executor.run_all(units, repass_failed=options.retry_failed)
        except Exception as e:
            logger.exception("Batch scoring aborted")
            outcomes = [UnitOutcome(key=key, ok=False, error=e, attempts=1) for key, _ in units]

        matched: list[tuple[Session, PreparedRun]] = []
        for (session, run), outcome in zip(prepared, outcomes):
            report = reports[run.roster.id]
            try:
                self._pipeline.match(session, run, outcome)
            except Exception as e:
                self._pipeline.revert(session, e)
                report.error = error_message_of(e)
                report.error_type = error_type_of(e)
                continue
            report.success = True
            report.result = session.result
            if options.include_details:
                report.details = get_assignment_details(run.roster, run.roles, session.result)
            if options.include_stats:
                report.stats = get_assignment_stats(session.result)
            matched.append((session, run))

        if matched and options.include_explanations:
            task = asyncio.create_task(
                self._explain_batch(matched, executor, options.retry_failed),
                name=f"explain-batch-{len(matched)}",
            )
            for session, run in matched:
                self._pipeline.track_background(session.id, task)
                reports[run.roster.id].explanations_pending = True
        else:
            for session, run in matched:
                self._pipeline.finish(session.id, run.roster.id)

        results = [reports[r.roster_id] for r in requests]
        successful = sum(1 for r in results if r.success)
        summary = {
            "total": len(results),
            "successful": successful,
            "failed": len(results) - successful,
            "with_explanations": len(matched) if options.include_explanations else 0,
        }
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Batch assignment completed: %d/%d successful in %dms",
            successful, len(results), elapsed_ms,
        )
        return BatchAssignReport(results=results, summary=summary, processing_time_ms=elapsed_ms)

    async def _explain_batch(
        self,
        matched: list[tuple[Session, PreparedRun]],
        executor: BatchExecutor,
        repass_failed: bool,
    ) -> None:
        oracle = self._pipeline.oracle
        units = []
        for session, run in matched:
            result = session.result
            units.append((session.id, _explanation_unit(oracle, run, result)))
        try:
            outcomes = await executor.run_all(units, repass_failed=repass_failed)
        except Exception as e:
            logger.exception("Background batch explanation error")
            outcomes = [UnitOutcome(key=sid, ok=False, error=e, attempts=1) for sid, _ in units]
        try:
            for (session, _), outcome in zip(matched, outcomes):
                self._pipeline.apply_explanations(session.id, outcome)
            ok = sum(1 for o in outcomes if o.ok)
            logger.info("Background explanations completed: %d/%d successful", ok, len(outcomes))
        finally:
            for session, run in matched:
                self._pipeline.finish(session.id, run.roster.id)

    # ---------- Status ----------

    def _status_entry(self, session: Session, include_details: bool, include_stats: bool) -> StatusEntry:
        roster = self._stores.rosters.get(session.roster_id)
        if roster is None:
            return StatusEntry(roster_id=session.roster_id, session=session, error="Associated roster not found")
        entry = StatusEntry(roster_id=roster.id, roster_name=roster.name, session=session)
        result = session.result
        if include_details and result is not None and session.status != SessionStatus.PENDING:
            try:
                entry.details = get_assignment_details(roster, session.roles, result)
            except TeamRolesError as e:
                # Members removed after the run no longer resolve; report the rest.
                entry.error = e.message
        if include_stats and result is not None:
            entry.stats = get_assignment_stats(result)
        return entry

    def batch_status(
        self,
        roster_ids: list[str] | None = None,
        session_ids: list[str] | None = None,
        include_details: bool = False,
        include_stats: bool = False,
    ) -> BatchStatusReport:
        """Latest session per roster and/or sessions by id, with per-status counts."""
        if not roster_ids and not session_ids:
            raise ValidationError("Either roster_ids or session_ids must be provided")
        report = BatchStatusReport()
        counts = {s.value: 0 for s in SessionStatus}
        counts["errors"] = 0

        def add(entry: StatusEntry) -> None:
            report.results.append(entry)
            if entry.session is None or entry.error is not None:
                counts["errors"] += 1
            if entry.session is not None:
                counts[entry.session.status.value] += 1

        for roster_id in roster_ids or []:
            roster = self._stores.rosters.get(roster_id)
            if roster is None:
                add(StatusEntry(roster_id=roster_id, error="Roster not found"))
                continue
            session = self._stores.sessions.get_latest_for_roster(roster_id)
            if session is None:
                add(StatusEntry(roster_id=roster_id, roster_name=roster.name, error="No assignment sessions found"))
                continue
            add(self._status_entry(session, include_details, include_stats))

        for session_id in session_ids or []:
            session = self._stores.sessions.get(session_id)
            if session is None:
                add(StatusEntry(roster_id=None, error=f"Session not found: {session_id}"))
                continue
            add(self._status_entry(session, include_details, include_stats))

        report.summary = {"total": len(report.results), **counts}
        return report


def _scoring_unit(oracle: OracleClient, run: PreparedRun):
    return lambda: score_roster(oracle, run.roster, run.roles)


def _explanation_unit(oracle: OracleClient, run: PreparedRun, result: AssignmentResult):
    return lambda: explain_assignment(oracle, run.roster, run.roles, result)
