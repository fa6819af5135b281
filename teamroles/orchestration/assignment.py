"""
Assignment orchestration: drives one roster through the pipeline.

Session lifecycle:
  pending -> scoring -> assigning -> justifying -> complete

  1. Preflight: roster exists, its group is active, roster is complete, roles
     resolve for the phase, no other run is in flight for the roster.
  2. scoring: one oracle call (under the executor's retry policy) -> matrix.
  3. assigning: optimal matching -> AssignmentResult.
  4. justifying: the caller gets the result now; explanations run in a tracked
     background task.
  5. complete: reached whether or not explanations succeeded.

A failure in steps 2-3 reverts the session to pending, records the error and is
returned to the caller as a failed AssignmentOutcome. Nothing here raises for a
pipeline failure.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, replace
from typing import Any

from teamroles.assigner import assign_roles
from teamroles.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PipelineBusyError,
    RosterIncompleteError,
    TeamRolesError,
    ValidationError,
    error_message_of,
    error_type_of,
)
from teamroles.executor import BatchExecutor, UnitOutcome
from teamroles.explanation import explain_assignment, explain_pairing
from teamroles.models import Group, Phase, Role, Roster, Session, SessionStatus
from teamroles.oracle import OracleClient
from teamroles.persistence import Stores
from teamroles.roles import build_roles
from teamroles.scoring import score_roster
from teamroles.services import GroupService

logger = logging.getLogger(__name__)

# ---------- Valid transitions ----------

_VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.PENDING: {SessionStatus.SCORING},
    SessionStatus.SCORING: {SessionStatus.ASSIGNING, SessionStatus.PENDING},
    SessionStatus.ASSIGNING: {SessionStatus.JUSTIFYING, SessionStatus.PENDING},
    SessionStatus.JUSTIFYING: {SessionStatus.COMPLETE},
    SessionStatus.COMPLETE: set(),
}


def can_transition(current: SessionStatus, new_status: SessionStatus) -> bool:
    return new_status in _VALID_TRANSITIONS.get(current, set())


# ---------- In-flight claims ----------


class PipelineClaims:
    """
    Roster ids with a pipeline run in flight. Shared by the single and batch
    orchestrators; a claim is held until the session completes or reverts.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()
        self._lock = threading.Lock()

    def claim(self, roster_id: str) -> None:
        with self._lock:
            if roster_id in self._held:
                raise PipelineBusyError(f"An assignment is already in progress for roster {roster_id}")
            self._held.add(roster_id)

    def release(self, roster_id: str) -> None:
        with self._lock:
            self._held.discard(roster_id)

    def is_held(self, roster_id: str) -> bool:
        return roster_id in self._held


# ---------- Outcome ----------


@dataclass
class AssignmentOutcome:
    """What start_assignment / regenerate_explanation hand back to callers."""
    success: bool
    session_id: str | None = None
    session: Session | None = None
    error: str | None = None
    error_type: str | None = None
    explanations_pending: bool = False

    @classmethod
    def failure(cls, exc: BaseException, session: Session | None = None) -> AssignmentOutcome:
        return cls(
            success=False,
            session_id=session.id if session else None,
            session=session,
            error=error_message_of(exc),
            error_type=error_type_of(exc),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "success": self.success,
            "session_id": self.session_id,
            "explanations_pending": self.explanations_pending,
        }
        if self.session is not None:
            d["session"] = self.session.to_dict()
            d["result"] = self.session.result.to_dict() if self.session.result else None
        if self.error is not None:
            d["error"] = self.error
            d["error_type"] = self.error_type
        return d


@dataclass
class PreparedRun:
    """A roster that passed preflight: snapshot of its members, its group and roles."""
    roster: Roster
    group: Group
    roles: list[Role]


def parse_phase(phase: Phase | str) -> Phase:
    try:
        return Phase(phase)
    except ValueError:
        raise ValidationError(f"Unknown phase: {phase!r}") from None


# ---------- AssignmentOrchestrator ----------


class AssignmentOrchestrator:
    """
    Single-roster pipeline plus the session mutation points the batch
    orchestrator reuses (transition, revert, finish, background tracking).
    """

    def __init__(
        self,
        stores: Stores,
        groups: GroupService,
        oracle: OracleClient,
        executor: BatchExecutor,
        claims: PipelineClaims | None = None,
    ) -> None:
        self._stores = stores
        self._groups = groups
        self._oracle = oracle
        self._executor = executor
        self.claims = claims or PipelineClaims()
        self._background: dict[str, asyncio.Task] = {}

    @property
    def oracle(self) -> OracleClient:
        return self._oracle

    @property
    def executor(self) -> BatchExecutor:
        return self._executor

    # ---------- Lookup ----------

    def get_session(self, session_id: str) -> Session | None:
        return self._stores.sessions.get(session_id)

    def get_latest_session_for_roster(self, roster_id: str) -> Session | None:
        return self._stores.sessions.get_latest_for_roster(roster_id)

    # ---------- Preflight / state machine ----------

    def preflight(
        self,
        roster_id: str,
        phase: Phase | str = Phase.PRIMARY,
        custom_roles: list[str] | None = None,
    ) -> PreparedRun:
        """Check every precondition for entering scoring and claim the roster."""
        phase = parse_phase(phase)
        roster = self._stores.rosters.get(roster_id)
        if roster is None:
            raise NotFoundError(f"Roster not found: {roster_id}")
        group = self._groups.validate_active(roster.group_id)
        if not roster.is_complete:
            raise RosterIncompleteError(
                f"Roster must have exactly {roster.size} members before assignment (has {roster.member_count})"
            )
        roles = build_roles(
            phase,
            roster.size,
            custom_roles,
            secondary_enabled=group.settings.enable_secondary_phase,
        )
        self.claims.claim(roster_id)
        # Members may still be removed while the run is in flight; the run works on this snapshot.
        snapshot = replace(roster, members=list(roster.members))
        return PreparedRun(roster=snapshot, group=group, roles=roles)

    def open_session(self, run: PreparedRun, phase: Phase | str) -> Session:
        return self._stores.sessions.create(
            run.roster.id, parse_phase(phase), run.roles, members=run.roster.members
        )

    def transition(self, session_id: str, new_status: SessionStatus) -> Session:
        session = self._stores.sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        if not can_transition(session.status, new_status):
            raise InvalidTransitionError(
                f"Invalid transition: {session.status.value} -> {new_status.value}"
            )
        self._stores.sessions.update_status(session_id, new_status)
        logger.debug(
            "Session %s -> %s", session_id, new_status.value,
            extra={"session_id": session_id, "roster_id": session.roster_id},
        )
        return session

    def revert(self, session: Session, exc: BaseException) -> None:
        """
        Scoring or matching failed: back to pending, keep the error, free the roster.
        The session may already be gone (roster reset or deleted mid-run).
        """
        try:
            current = self._stores.sessions.get(session.id)
            if current is not None:
                self._stores.sessions.set_error(session.id, error_message_of(exc))
                if current.status in (SessionStatus.SCORING, SessionStatus.ASSIGNING):
                    self.transition(session.id, SessionStatus.PENDING)
        finally:
            self.claims.release(session.roster_id)
        extra = {"session_id": session.id, "roster_id": session.roster_id}
        if isinstance(exc, TeamRolesError):
            logger.warning("Assignment failed: %s", error_message_of(exc), extra=extra)
        else:
            logger.error("Assignment failed unexpectedly", exc_info=exc, extra=extra)

    def match(self, session: Session, run: PreparedRun, outcome: UnitOutcome) -> Session:
        """Attach a scoring outcome and compute the assignment; leaves the session justifying."""
        if not outcome.ok:
            raise outcome.error
        self._stores.sessions.attach_matrix(session.id, outcome.value)
        self.transition(session.id, SessionStatus.ASSIGNING)
        result = assign_roles(run.roster, run.roles, outcome.value)
        self._stores.sessions.attach_result(session.id, result)
        self._stores.sessions.set_error(session.id, None)
        return self.transition(session.id, SessionStatus.JUSTIFYING)

    def apply_explanations(self, session_id: str, outcome: UnitOutcome) -> None:
        """Store explained pairings, or flag the result when the explanation pass gave up."""
        session = self._stores.sessions.get(session_id)
        if session is None or session.result is None:
            return
        if outcome.ok:
            self._stores.sessions.attach_result(session_id, outcome.value)
            logger.info("Explanations completed", extra={"session_id": session_id})
            return
        self._stores.sessions.attach_result(session_id, replace(session.result, explanation_failed=True))
        self._stores.sessions.set_error(session_id, f"Explanations failed: {outcome.error_message}")
        logger.warning(
            "Explanation failed after %d attempts: %s", outcome.attempts, outcome.error_message,
            extra={"session_id": session_id},
        )

    def finish(self, session_id: str, roster_id: str) -> None:
        """Close the run: justifying -> complete, release the roster, check group auto-end."""
        try:
            if self._stores.sessions.get(session_id) is not None:
                self.transition(session_id, SessionStatus.COMPLETE)
            group_id = None
            roster = self._stores.rosters.get(roster_id)
            if roster is not None:
                group_id = roster.group_id
            if group_id is not None:
                self._groups.maybe_auto_end(group_id)
        except Exception:
            logger.exception("Failed to finish session", extra={"session_id": session_id})
        finally:
            self.claims.release(roster_id)

    # ---------- Background tracking ----------

    def track_background(self, session_id: str, task: asyncio.Task) -> None:
        """Remember the task until it finishes; finished tasks drop out on their own."""
        self._background[session_id] = task
        task.add_done_callback(lambda t, sid=session_id: self._forget(sid, t))

    def _forget(self, session_id: str, task: asyncio.Task) -> None:
        if self._background.get(session_id) is task:
            del self._background[session_id]

    def background_task(self, session_id: str) -> asyncio.Task | None:
        """The explanation task for a session, if one was started and not yet reaped."""
        return self._background.get(session_id)

    async def wait_for_background(self) -> None:
        """Await every tracked explanation task. Does not cancel anything."""
        while self._background:
            tasks = list(dict.fromkeys(self._background.values()))
            await asyncio.gather(*tasks, return_exceptions=True)
            done = [sid for sid, t in self._background.items() if t.done()]
            for sid in done:
                del self._background[sid]

    # ---------- Single-roster pipeline ----------

    async def start_assignment(
        self,
        roster_id: str,
        phase: Phase | str = Phase.PRIMARY,
        custom_roles: list[str] | None = None,
    ) -> AssignmentOutcome:
        """
        Score and assign one roster. Returns once the assignment exists; the
        explanation pass keeps running in the background.
        """
        try:
            run = self.preflight(roster_id, phase, custom_roles)
        except TeamRolesError as e:
            logger.info("Assignment rejected: %s", e.message, extra={"roster_id": roster_id})
            return AssignmentOutcome.failure(e)

        session = self.open_session(run, phase)
        extra = {"session_id": session.id, "roster_id": roster_id}
        try:
            self.transition(session.id, SessionStatus.SCORING)
            logger.info("Scoring roster", extra=extra)
            outcome = await self._executor.run_one(
                roster_id, lambda: score_roster(self._oracle, run.roster, run.roles)
            )
            logger.info("Assigning roles", extra=extra)
            self.match(session, run, outcome)
        except Exception as e:
            self.revert(session, e)
            return AssignmentOutcome.failure(e, session)

        task = asyncio.create_task(
            self._explain(session.id, run),
            name=f"explain-{session.id}",
        )
        self.track_background(session.id, task)
        return AssignmentOutcome(
            success=True,
            session_id=session.id,
            session=session,
            explanations_pending=True,
        )

    async def _explain(self, session_id: str, run: PreparedRun) -> None:
        try:
            session = self._stores.sessions.get(session_id)
            if session is None or session.result is None:
                return
            result = session.result
            outcome = await self._executor.run_one(
                session_id, lambda: explain_assignment(self._oracle, run.roster, run.roles, result)
            )
            self.apply_explanations(session_id, outcome)
        except Exception as e:
            logger.exception("Background explanation error", extra={"session_id": session_id})
            self.apply_explanations(session_id, UnitOutcome(key=session_id, ok=False, error=e, attempts=1))
        finally:
            self.finish(session_id, run.roster.id)

    # ---------- Single-pair regeneration ----------

    async def regenerate_explanation(self, session_id: str, member_id: str) -> AssignmentOutcome:
        """Re-explain one pairing of a completed session."""
        session = self._stores.sessions.get(session_id)
        try:
            if session is None:
                raise NotFoundError(f"Session not found: {session_id}")
            if session.result is None:
                raise ConflictError("Session has no assignment yet")
            if session.status != SessionStatus.COMPLETE:
                raise ConflictError("Explanations are still being generated for this session")
            pairing = session.result.pairing_for(member_id)
            if pairing is None:
                raise NotFoundError(f"Member {member_id} is not part of this assignment")
            # Members removed since the run are still explained from the session snapshot.
            member = next((m for m in session.members if m.id == member_id), None)
            if member is None:
                raise NotFoundError(f"Member not found: {member_id}")
            role = next((r for r in session.roles if r.id == pairing.role_id), None)
            if role is None:
                raise NotFoundError(f"Role not found: {pairing.role_id}")

            outcome = await self._executor.run_one(
                f"{session_id}:{member_id}",
                lambda: explain_pairing(self._oracle, member, role, pairing.score),
            )
            if not outcome.ok:
                raise outcome.error
        except Exception as e:
            if not isinstance(e, TeamRolesError):
                logger.exception("Explanation regeneration failed", extra={"session_id": session_id})
            return AssignmentOutcome.failure(e, session)

        # Re-read: the result may have been replaced while the oracle call was in flight.
        current = self._stores.sessions.get(session_id)
        if current is None or current.result is None:
            return AssignmentOutcome.failure(NotFoundError(f"Session not found: {session_id}"))
        pairings = tuple(
            replace(p, explanation=outcome.value) if p.member_id == member_id else p
            for p in current.result.pairings
        )
        all_explained = all(p.explanation for p in pairings)
        updated = replace(
            current.result,
            pairings=pairings,
            explanations_generated=all_explained,
            explanation_failed=current.result.explanation_failed and not all_explained,
        )
        self._stores.sessions.attach_result(session_id, updated)
        if all_explained:
            self._stores.sessions.set_error(session_id, None)
        return AssignmentOutcome(success=True, session_id=session_id, session=current)
