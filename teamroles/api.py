"""
REST API for the team role assignment backend.
Thin wrappers around the services and orchestrators; no pipeline logic here.

Run with: uvicorn teamroles.api:app
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Annotated, Any, AsyncGenerator

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator

from teamroles.assigner import get_assignment_details, get_assignment_stats
from teamroles.config import Settings, get_settings
from teamroles.errors import TeamRolesError
from teamroles.executor import BatchExecutor
from teamroles.logging_config import configure_logging
from teamroles.models import GroupStatus, Phase, Session
from teamroles.oracle import OracleClient
from teamroles.orchestration import (
    AssignmentOrchestrator,
    AssignmentOutcome,
    BatchOptions,
    BatchOrchestrator,
    BatchRequest,
    PipelineClaims,
)
from teamroles.persistence import Stores
from teamroles.services import GroupService, MemberSubmission, RosterService

# error_type -> HTTP status
_STATUS_BY_ERROR_TYPE: dict[str, int] = {
    "validation": 400,
    "not_found": 404,
    "conflict": 409,
    "oracle": 502,
    "transient": 503,
    "internal": 500,
}


# ---------- Container ----------


@dataclass
class AppContainer:
    """Everything the routes need, built once at startup."""
    settings: Settings
    stores: Stores
    groups: GroupService
    rosters: RosterService
    oracle: OracleClient
    executor: BatchExecutor
    assignments: AssignmentOrchestrator
    batches: BatchOrchestrator

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        oracle: OracleClient | None = None,
        executor: BatchExecutor | None = None,
    ) -> AppContainer:
        settings = settings or get_settings()
        stores = Stores()
        groups = GroupService(stores, settings)
        rosters = RosterService(stores, groups, settings)
        oracle = oracle or OracleClient.from_settings(settings)
        executor = executor or BatchExecutor(
            max_concurrency=settings.max_concurrency,
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            group_pause=settings.group_pause,
            repass_jitter=settings.repass_jitter,
        )
        assignments = AssignmentOrchestrator(stores, groups, oracle, executor, PipelineClaims())
        batches = BatchOrchestrator(stores, assignments, settings)
        return cls(
            settings=settings,
            stores=stores,
            groups=groups,
            rosters=rosters,
            oracle=oracle,
            executor=executor,
            assignments=assignments,
            batches=batches,
        )


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


Container = Annotated[AppContainer, Depends(get_container)]


def _raise_for_outcome(outcome: AssignmentOutcome) -> None:
    if not outcome.success:
        raise HTTPException(
            status_code=_STATUS_BY_ERROR_TYPE.get(outcome.error_type or "internal", 500),
            detail={"error": outcome.error, "error_type": outcome.error_type, "session_id": outcome.session_id},
        )


def _session_payload(c: AppContainer, session: Session, include_details: bool = True) -> dict[str, Any]:
    out = session.to_dict()
    roster = c.stores.rosters.get(session.roster_id)
    if include_details and session.result is not None and roster is not None:
        try:
            out["details"] = get_assignment_details(roster, session.roles, session.result)
        except TeamRolesError:
            out["details"] = None
        out["stats"] = get_assignment_stats(session.result)
    return out


# ---------- Request models ----------


Tag = Annotated[str, Field(min_length=1, max_length=50)]


class CreateGroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=1000)
    created_by: str = Field("admin", min_length=1, max_length=100)
    max_rosters: int | None = Field(None, ge=1, le=1000)
    roster_size: int | None = Field(None, ge=1, le=10)
    join_code: str | None = Field(None, pattern=r"^[A-Z0-9]{6}$")
    allow_self_registration: bool = True
    enable_secondary_phase: bool = True
    auto_end_after_all_complete: bool = False


class UpdateGroupSettings(BaseModel):
    allow_self_registration: bool | None = None
    enable_secondary_phase: bool | None = None
    auto_end_after_all_complete: bool | None = None


class UpdateGroupRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=1000)
    join_code: str | None = Field(None, pattern=r"^[A-Z0-9]{6}$")
    settings: UpdateGroupSettings | None = None


class JoinGroupRequest(BaseModel):
    join_code: str | None = Field(None, pattern=r"^[A-Za-z0-9]{6}$")
    group_id: str | None = None

    @model_validator(mode="after")
    def _one_of(self) -> JoinGroupRequest:
        if not self.join_code and not self.group_id:
            raise ValueError("Either join_code or group_id must be provided")
        return self


class EndGroupRequest(BaseModel):
    clear_data: bool = False


class CreateRosterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class MemberRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    occupation: str = Field(..., min_length=1, max_length=100)
    skills: list[Tag] = Field(..., min_length=1, max_length=10)
    traits: list[Tag] = Field(..., min_length=1, max_length=10)


class BulkMember(BaseModel):
    # Field checks happen per submission in the service so one bad row does not reject the batch.
    name: str = ""
    occupation: str = ""
    skills: list[str] = Field(default_factory=list)
    traits: list[str] = Field(default_factory=list)


class BulkSubmission(BaseModel):
    roster_id: str
    member: BulkMember


class BulkSubmitRequest(BaseModel):
    submissions: list[BulkSubmission] = Field(..., min_length=1, max_length=500)
    continue_on_error: bool = True
    validate_limits: bool = True


class AssignRequest(BaseModel):
    roster_id: str
    phase: Phase = Phase.PRIMARY
    custom_roles: list[Annotated[str, Field(max_length=100)]] | None = None


class BatchOptionsModel(BaseModel):
    max_concurrency: int = Field(10, ge=1, le=50)
    retry_failed: bool = True
    include_explanations: bool = True
    include_details: bool = False
    include_stats: bool = False


class BatchAssignRequest(BaseModel):
    requests: list[AssignRequest] = Field(..., min_length=1, max_length=100)
    options: BatchOptionsModel = Field(default_factory=BatchOptionsModel)


class BatchStatusRequest(BaseModel):
    roster_ids: list[str] | None = None
    session_ids: list[str] | None = None
    include_details: bool = False
    include_stats: bool = False

    @model_validator(mode="after")
    def _one_of(self) -> BatchStatusRequest:
        if not self.roster_ids and not self.session_ids:
            raise ValueError("Either roster_ids or session_ids must be provided")
        return self


router = APIRouter()


# ---------- Health ----------


@router.get("/health")
def health(c: Container) -> dict[str, Any]:
    return {"status": "ok", "oracle_configured": c.oracle.configured}


# ---------- Groups ----------


@router.post("/groups")
def create_group(req: CreateGroupRequest, c: Container) -> dict[str, Any]:
    group = c.groups.create_group(**req.model_dump())
    return {"group": group.to_dict(), "rosters": [r.to_dict() for r in c.rosters.list_rosters(group.id)]}


@router.get("/groups")
def list_groups(c: Container, status: GroupStatus | None = None) -> dict[str, Any]:
    return {"groups": [g.to_dict() for g in c.groups.list_groups(status)]}


@router.post("/groups/join")
def join_group(req: JoinGroupRequest, c: Container) -> dict[str, Any]:
    group = c.groups.get_by_code(req.join_code) if req.join_code else c.groups.get_group(req.group_id)
    if not group.is_active:
        raise HTTPException(status_code=409, detail=f"Group is {group.status.value}")
    return {"group": group.to_dict(), "rosters": [r.to_dict() for r in c.rosters.list_rosters(group.id)]}


@router.get("/groups/{group_id}")
def get_group(group_id: str, c: Container) -> dict[str, Any]:
    group = c.groups.get_group(group_id)
    return {"group": group.to_dict(), "stats": c.groups.stats(group_id)}


@router.patch("/groups/{group_id}")
def update_group(group_id: str, req: UpdateGroupRequest, c: Container) -> dict[str, Any]:
    settings = req.settings.model_dump(exclude_none=True) if req.settings else None
    group = c.groups.update_group(
        group_id,
        name=req.name,
        description=req.description,
        join_code=req.join_code,
        settings=settings,
    )
    return {"group": group.to_dict()}


@router.post("/groups/{group_id}/end")
def end_group(group_id: str, c: Container, req: EndGroupRequest | None = None) -> dict[str, Any]:
    summary = c.groups.end_group(group_id, clear_data=req.clear_data if req else False)
    return {"group": c.groups.get_group(group_id).to_dict(), "summary": summary}


@router.post("/groups/{group_id}/archive")
def archive_group(group_id: str, c: Container) -> dict[str, Any]:
    return {"group": c.groups.archive_group(group_id).to_dict()}


@router.delete("/groups/{group_id}")
def delete_group(group_id: str, c: Container) -> dict[str, Any]:
    return {"deleted": c.groups.delete_group(group_id)}


@router.get("/groups/{group_id}/summary")
def group_summary(group_id: str, c: Container) -> dict[str, Any]:
    return c.groups.summary(group_id)


# ---------- Rosters ----------


@router.get("/groups/{group_id}/rosters")
def list_rosters(group_id: str, c: Container) -> dict[str, Any]:
    return {"rosters": [r.to_dict() for r in c.rosters.list_rosters(group_id)]}


@router.post("/groups/{group_id}/rosters")
def create_roster(group_id: str, req: CreateRosterRequest, c: Container) -> dict[str, Any]:
    roster = c.rosters.create_roster(group_id, req.name, self_registered=True)
    return {"roster": roster.to_dict()}


@router.get("/rosters/{roster_id}")
def get_roster(roster_id: str, c: Container) -> dict[str, Any]:
    roster = c.rosters.get_roster(roster_id)
    return {"roster": roster.to_dict(), "stats": c.rosters.roster_stats(roster_id)}


@router.post("/rosters/{roster_id}/members")
def add_member(roster_id: str, req: MemberRequest, c: Container) -> dict[str, Any]:
    member = c.rosters.add_member(roster_id, req.name, req.occupation, req.skills, req.traits)
    roster = c.rosters.get_roster(roster_id)
    return {
        "member": member.to_dict(),
        "member_count": roster.member_count,
        "is_complete": roster.is_complete,
    }


@router.delete("/rosters/{roster_id}/members/{member_id}")
def remove_member(roster_id: str, member_id: str, c: Container) -> dict[str, Any]:
    c.rosters.remove_member(roster_id, member_id)
    return {"roster": c.rosters.get_roster(roster_id).to_dict()}


@router.post("/rosters/{roster_id}/reset")
def reset_roster(roster_id: str, c: Container) -> dict[str, Any]:
    removed = c.rosters.reset_roster(roster_id)
    return {"roster": c.rosters.get_roster(roster_id).to_dict(), "sessions_removed": removed}


@router.delete("/rosters/{roster_id}")
def delete_roster(roster_id: str, c: Container) -> dict[str, Any]:
    c.rosters.delete_roster(roster_id)
    return {"deleted": roster_id}


@router.post("/members/bulk")
def bulk_submit(req: BulkSubmitRequest, c: Container) -> dict[str, Any]:
    submissions = [
        MemberSubmission(roster_id=s.roster_id, **s.member.model_dump())
        for s in req.submissions
    ]
    return c.rosters.bulk_submit(
        submissions,
        continue_on_error=req.continue_on_error,
        validate_limits=req.validate_limits,
    )


# ---------- Assignment ----------


@router.post("/assign")
async def assign(req: AssignRequest, c: Container) -> dict[str, Any]:
    outcome = await c.assignments.start_assignment(req.roster_id, req.phase, req.custom_roles)
    _raise_for_outcome(outcome)
    return outcome.to_dict()


@router.post("/assign/batch")
async def assign_batch(req: BatchAssignRequest, c: Container) -> dict[str, Any]:
    requests = [BatchRequest(r.roster_id, r.phase, r.custom_roles) for r in req.requests]
    report = await c.batches.assign_batch(requests, BatchOptions(**req.options.model_dump()))
    return report.to_dict()


@router.post("/batch/status")
def batch_status(req: BatchStatusRequest, c: Container) -> dict[str, Any]:
    return c.batches.batch_status(
        roster_ids=req.roster_ids,
        session_ids=req.session_ids,
        include_details=req.include_details,
        include_stats=req.include_stats,
    ).to_dict()


@router.get("/sessions/{session_id}")
def get_session(session_id: str, c: Container) -> dict[str, Any]:
    session = c.assignments.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return _session_payload(c, session)


@router.get("/rosters/{roster_id}/session")
def get_latest_session(roster_id: str, c: Container) -> dict[str, Any]:
    c.rosters.get_roster(roster_id)
    session = c.assignments.get_latest_session_for_roster(roster_id)
    if session is None:
        raise HTTPException(status_code=404, detail="No assignment sessions found for roster")
    return _session_payload(c, session)


@router.post("/sessions/{session_id}/explanations/{member_id}")
async def regenerate_explanation(session_id: str, member_id: str, c: Container) -> dict[str, Any]:
    outcome = await c.assignments.regenerate_explanation(session_id, member_id)
    _raise_for_outcome(outcome)
    pairing = outcome.session.result.pairing_for(member_id)
    return {"session_id": session_id, "member_id": member_id, "explanation": pairing.explanation}


# ---------- App factory ----------


async def _handle_domain_error(request: Request, exc: TeamRolesError) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_BY_ERROR_TYPE.get(exc.error_type, 500),
        content={"detail": exc.message, "error_type": exc.error_type},
    )


def create_app(container: AppContainer | None = None) -> FastAPI:
    """Build the FastAPI app. Tests pass their own container (fake oracle, instant sleeps)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if getattr(app.state, "container", None) is None:
            app.state.container = AppContainer.build()
        configure_logging(app.state.container.settings.log_level)
        yield
        # Background explanation passes are never cancelled; let them finish.
        await app.state.container.assignments.wait_for_background()

    app = FastAPI(
        title="Team Role Assignment API",
        description="Optimal member-to-role assignment with oracle-scored compatibility",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container
    origins = container.settings.cors_origins if container else get_settings().cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TeamRolesError, _handle_domain_error)
    app.include_router(router)
    return app


app = create_app()
