"""REST API routes for sync, analysis, reports and deletion."""

from __future__ import annotations

from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from mailtidy import store
from mailtidy.errors import (
    CandidateNotFoundError,
    ReportNotFoundError,
    SyncInProgressError,
)
from mailtidy.log import get_logger
from mailtidy.models import (
    AnalysisMode,
    AnalysisRequest,
    AnalysisType,
    CleanupReport,
    Recommendation,
    SyncOptions,
    TimeRange,
)

logger = get_logger(__name__)

router = APIRouter(tags=["api"])


def get_context(request: Request):
    ctx = request.app.state.context
    if ctx is None:
        from mailtidy.context import AppContext
        ctx = request.app.state.context = AppContext()
    return ctx


async def get_user_email(ctx=Depends(get_context)) -> str:
    return await ctx.user_email()


class SyncBody(BaseModel):
    time_range: TimeRange = Field(TimeRange.MONTH, alias="timeRange")
    exclude_spam: bool = Field(True, alias="excludeSpam")
    exclude_trash: bool = Field(True, alias="excludeTrash")
    max_email_size_mb: int = Field(0, alias="maxEmailSize", ge=0)

    model_config = {"populate_by_name": True}


class AnalyzeBody(BaseModel):
    query: str = ""
    description: str = ""
    limit: int = Field(100, ge=1, le=5000)
    mode: AnalysisMode = AnalysisMode.AUTO
    analysis_type: AnalysisType = Field(AnalysisType.CLEANUP, alias="analysisType")

    model_config = {"populate_by_name": True}


class MoveBody(BaseModel):
    email_id: str = Field(alias="emailId")
    new_type: Literal["keep", "delete"] = Field(alias="newType")

    model_config = {"populate_by_name": True}


class DeleteBody(BaseModel):
    email_ids: list[str] = Field(alias="emailIds", min_length=1)

    model_config = {"populate_by_name": True}


# --- Sync ---

@router.post("/sync")
async def start_sync(body: SyncBody, ctx=Depends(get_context), user=Depends(get_user_email)):
    """Run a sync to completion and return its totals."""
    options = SyncOptions(
        time_range=body.time_range,
        exclude_spam=body.exclude_spam,
        exclude_trash=body.exclude_trash,
        max_email_size_mb=body.max_email_size_mb,
    )
    try:
        result = await ctx.sync_engine().sync(user, options)
    except SyncInProgressError as e:
        raise HTTPException(409, str(e))
    return {"success": True, **asdict(result)}


@router.get("/sync/status")
async def sync_status(ctx=Depends(get_context), user=Depends(get_user_email)):
    from mailtidy.gmail.sync import get_sync_status

    status = get_sync_status(ctx.db, user, ctx.config.sync.stuck_after_minutes)
    session = store.latest_session(ctx.db, user)
    return {
        **asdict(status),
        "session": asdict(session) if session else None,
        "rate_limit": ctx.rate_limiter.get_status(),
    }


@router.post("/sync/reset")
async def sync_reset(ctx=Depends(get_context), user=Depends(get_user_email)):
    from mailtidy.gmail.sync import reset_sync_status

    return {"success": True, **asdict(reset_sync_status(ctx.db, user))}


# --- Analysis ---

@router.post("/analyze")
async def analyze(body: AnalyzeBody, ctx=Depends(get_context), user=Depends(get_user_email)):
    """Analyze emails and return the saved report."""
    request = AnalysisRequest(
        query=body.query,
        description=body.description,
        limit=body.limit,
        mode=body.mode,
        analysis_type=body.analysis_type,
    )
    report = await ctx.analysis_engine().analyze(user, request)
    data = asdict(report)
    if isinstance(report, CleanupReport):
        data["token_usage"]["total_tokens"] = report.token_usage.total_tokens
    else:
        data["summary"] = report.summary
    return data


# --- Reports ---

@router.get("/reports")
async def list_reports(ctx=Depends(get_context), user=Depends(get_user_email)):
    return store.list_reports(ctx.db, user)


@router.get("/reports/{report_id}")
async def get_report(report_id: str, ctx=Depends(get_context), user=Depends(get_user_email)):
    try:
        return store.get_report(ctx.db, user, report_id)
    except ReportNotFoundError as e:
        raise HTTPException(404, str(e))


@router.delete("/reports/{report_id}")
async def delete_report(report_id: str, ctx=Depends(get_context), user=Depends(get_user_email)):
    try:
        store.delete_report(ctx.db, user, report_id)
    except ReportNotFoundError as e:
        raise HTTPException(404, str(e))
    return {"success": True}


@router.post("/reports/{report_id}/move-email")
async def move_email(
    report_id: str, body: MoveBody, ctx=Depends(get_context), user=Depends(get_user_email)
):
    try:
        counts = store.move_candidate(
            ctx.db, user, report_id, body.email_id, Recommendation(body.new_type)
        )
    except (ReportNotFoundError, CandidateNotFoundError) as e:
        raise HTTPException(404, str(e))
    return {"success": True, **counts}


# --- Deletion ---

@router.post("/delete-emails")
async def delete_emails(body: DeleteBody, ctx=Depends(get_context), user=Depends(get_user_email)):
    result = await ctx.cleaner().delete_messages(user, body.email_ids)
    return {
        "success": not result.failed,
        "message": result.summary,
        "successful": len(result.successful),
        "failed": len(result.failed),
        "details": {"successful": result.successful, "failed": result.failed},
        "requires_reauth": result.requires_reauth,
    }
