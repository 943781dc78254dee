"""FastAPI service exposing the dashboard session to the browser."""

from __future__ import annotations

import os
from typing import Any, Dict, Literal, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import MissingCredential, PublishStateError, RecordNotFound
from .export import image_artifact, report_artifact
from .models import GeneratedReport, NewsRecord, PublishConfig
from .publish import PublishBatchResult
from .session import DashboardSession, DiscoveryOutcome, TaskOutcome
from .tasks import TaskKind

app = FastAPI(title="News Desk")


def _add_cors(app: FastAPI) -> None:
    """Allow the dashboard front end to call the API during local development."""
    allow_all = os.getenv("CORS_ALLOW_ALL", "true").lower() == "true"
    origins_env = os.getenv("CORS_ALLOW_ORIGINS", "")
    origins = [o.strip() for o in origins_env.split(",") if o.strip()]
    allow_credentials = (
        os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() == "true"
    )
    if allow_all or not origins:
        origins = ["*"]
    if origins == ["*"] and allow_credentials:
        # Starlette/FastAPI disallow wildcard origins when credentials are enabled.
        allow_credentials = False
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )


_add_cors(app)

_session: DashboardSession | None = None


def get_session() -> DashboardSession:
    """Process-wide session; created on first use so the API key is read lazily."""
    global _session
    if _session is None:
        _session = DashboardSession()
    return _session


# --- Request bodies --------------------------------------------------------


class DiscoverRequest(BaseModel):
    query: Optional[str] = None
    category: Optional[str] = None
    days: Optional[int] = Field(None, ge=1)


class RecordPatch(BaseModel):
    user_url: Optional[str] = None


class UrlRequest(BaseModel):
    url: str = Field(..., min_length=1)
    action: Literal["report", "research"] = "report"


class ReportPatch(BaseModel):
    file_name: Optional[str] = None
    content: Optional[str] = None


class ApproveRequest(BaseModel):
    credential: str = ""
    owner: str = ""
    repository: str = ""
    base_path: Optional[str] = None


# --- Serialization ---------------------------------------------------------


def _record_view(session: DashboardSession, record: NewsRecord) -> Dict[str, Any]:
    data = record.model_dump()
    data["display_url"] = record.display_url
    data["busy"] = [kind.value for kind in session.registry.busy_kinds(record.id)]
    return data


def _report_view(index: int, report: GeneratedReport) -> Dict[str, Any]:
    return {"index": index, **report.model_dump(mode="json")}


def _session_view(session: DashboardSession) -> Dict[str, Any]:
    return {
        "cost_total": round(session.ledger.total, 6),
        "currency": session.settings.currency,
        "billable_calls": session.ledger.calls,
        "records": len(session.store),
        "processing_url": session.is_processing_url,
        "publish_open": session.workflow.is_open,
        "error": session.last_error,
    }


def _outcome_view(session: DashboardSession, outcome: TaskOutcome) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "record_id": outcome.record_id,
        "kind": outcome.kind.value,
        "status": outcome.status,
        "cost": outcome.cost,
        "cost_total": session.ledger.total,
        "error": outcome.error,
    }
    if outcome.record_id and outcome.record_id in session.store:
        body["record"] = _record_view(session, session.store.get(outcome.record_id))
    if outcome.report is not None:
        body["report"] = outcome.report.model_dump(mode="json")
    return body


def _discovery_view(session: DashboardSession, outcome: DiscoveryOutcome) -> Dict[str, Any]:
    return {
        "status": outcome.status,
        "items": [_record_view(session, record) for record in outcome.records],
        "sources": [source.model_dump() for source in outcome.sources],
        "raw_text": outcome.raw_text,
        "cost": outcome.cost,
        "cost_total": session.ledger.total,
        "error": outcome.error,
    }


def _batch_view(session: DashboardSession, batch: PublishBatchResult) -> Dict[str, Any]:
    return {
        "counts": {"success": len(batch.successes), "error": len(batch.failures)},
        "reports": [
            _report_view(idx, report) for idx, report in enumerate(session.workflow.reports)
        ],
    }


def _attachment_headers(file_name: str) -> Dict[str, str]:
    """Content-Disposition with an ASCII fallback plus the RFC 5987 UTF-8 name."""
    fallback = "".join(
        ch if ch.isascii() and ch.isprintable() and ch not in "\"\\" else "_" for ch in file_name
    )
    return {
        "Content-Disposition": (
            f"attachment; filename=\"{fallback or 'download'}\"; "
            f"filename*=UTF-8''{quote(file_name, safe='')}"
        )
    }


def _not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


# --- Endpoints -------------------------------------------------------------


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/session")
def session_state(session: DashboardSession = Depends(get_session)) -> Dict[str, Any]:
    return _session_view(session)


@app.post("/session/reset")
def reset_session(session: DashboardSession = Depends(get_session)) -> Dict[str, Any]:
    try:
        session.reset()
    except PublishStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _session_view(session)


@app.post("/news/discover")
async def discover(
    payload: DiscoverRequest, session: DashboardSession = Depends(get_session)
) -> Dict[str, Any]:
    try:
        outcome = await session.discover(
            payload.query, category=payload.category, days=payload.days
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    return _discovery_view(session, outcome)


@app.get("/news")
def list_news(session: DashboardSession = Depends(get_session)) -> Dict[str, Any]:
    return {
        "items": [_record_view(session, record) for record in session.store.all()],
        "sources": [source.model_dump() for source in session.sources],
        "raw_text": session.raw_response,
        "cost_total": session.ledger.total,
        "error": session.last_error,
    }


@app.patch("/news/{record_id}")
def update_news(
    record_id: str, payload: RecordPatch, session: DashboardSession = Depends(get_session)
) -> Dict[str, Any]:
    try:
        record = session.set_user_url(record_id, payload.user_url)
    except RecordNotFound as exc:
        raise _not_found(exc) from exc
    return _record_view(session, record)


@app.post("/news/from-url")
async def news_from_url(
    payload: UrlRequest, session: DashboardSession = Depends(get_session)
) -> Dict[str, Any]:
    outcome = await session.ingest_url(payload.url, payload.action)
    if outcome.record_id is None and outcome.status == "error":
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=outcome.error)
    return _outcome_view(session, outcome)


@app.post("/news/{record_id}/{kind}")
async def enrich_news(
    record_id: str, kind: TaskKind, session: DashboardSession = Depends(get_session)
) -> Dict[str, Any]:
    try:
        outcome = await session.enrich(record_id, kind)
    except RecordNotFound as exc:
        raise _not_found(exc) from exc
    if outcome.status == "busy":
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{kind.value} is already running for this record.",
        )
    return _outcome_view(session, outcome)


@app.get("/news/{record_id}/image")
def download_image(record_id: str, session: DashboardSession = Depends(get_session)) -> Response:
    try:
        artifact = image_artifact(session.store.get(record_id))
    except RecordNotFound as exc:
        raise _not_found(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return Response(
        content=artifact.body,
        media_type=artifact.media_type,
        headers=_attachment_headers(artifact.file_name),
    )


@app.get("/reports")
def list_reports(session: DashboardSession = Depends(get_session)) -> Dict[str, Any]:
    workflow = session.workflow
    settings = session.settings
    return {
        "open": workflow.is_open,
        "has_saved_credential": workflow.saved_credential() is not None,
        "defaults": {
            "owner": settings.github_owner,
            "repository": settings.github_repository,
            "base_path": settings.github_base_path,
        },
        "reports": [_report_view(idx, report) for idx, report in enumerate(workflow.reports)],
    }


def _report_at(session: DashboardSession, index: int) -> GeneratedReport:
    reports = session.workflow.reports
    if not 0 <= index < len(reports):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No such report.")
    return reports[index]


@app.patch("/reports/{index}")
def edit_report(
    index: int, payload: ReportPatch, session: DashboardSession = Depends(get_session)
) -> Dict[str, Any]:
    _report_at(session, index)
    changes = payload.model_dump(exclude_none=True)
    try:
        for field_name, value in changes.items():
            session.workflow.edit(index, field_name, value)
    except PublishStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _report_view(index, session.workflow.reports[index])


@app.delete("/reports/{index}")
def discard_report(index: int, session: DashboardSession = Depends(get_session)) -> Dict[str, Any]:
    _report_at(session, index)
    try:
        session.workflow.discard(index)
    except PublishStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return list_reports(session)


@app.get("/reports/{index}/download")
def download_report(index: int, session: DashboardSession = Depends(get_session)) -> Response:
    report = _report_at(session, index)
    artifact = report_artifact(report.content, file_name=report.file_name)
    return Response(
        content=artifact.body,
        media_type=artifact.media_type,
        headers=_attachment_headers(artifact.file_name),
    )


@app.post("/reports/approve")
async def approve_reports(
    payload: ApproveRequest, session: DashboardSession = Depends(get_session)
) -> JSONResponse:
    settings = session.settings
    try:
        config = PublishConfig(
            credential=payload.credential,
            owner=payload.owner or settings.github_owner,
            repository=payload.repository or settings.github_repository,
            base_path=(
                payload.base_path if payload.base_path is not None else settings.github_base_path
            ),
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="owner and repository are required."
        ) from exc
    try:
        batch = await session.approve(config)
    except MissingCredential as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PublishStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    body = _batch_view(session, batch)
    status_code = status.HTTP_207_MULTI_STATUS if batch.failures else status.HTTP_200_OK
    return JSONResponse(status_code=status_code, content=body)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "news_desk.server:app",
        host=os.getenv("NEWS_DESK_HOST", "0.0.0.0"),
        port=int(os.getenv("NEWS_DESK_PORT", "8000")),
        reload=os.getenv("NEWS_DESK_RELOAD", "false").lower() == "true",
    )
