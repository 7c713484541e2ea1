from fastapi import APIRouter, HTTPException, Query, Request
from typing import Any, Dict, List, Optional

from jobflare.core.models import JobSource

router = APIRouter()


def _parse_sources(raw: Optional[str]) -> Optional[List[JobSource]]:
    if not raw or not raw.strip():
        return None
    return [JobSource.parse(s) for s in raw.split(",") if s.strip()]


@router.get("/jobs")
def jobs(
    request: Request,
    title: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    sources: Optional[str] = Query(None),
    starred_only: int = Query(0),
    applied_only: int = Query(0),
):
    """Filtered view. Missing title/location fall back to the saved filters."""
    orch = request.app.state.orchestrator
    view = request.app.state.view

    settings = orch.settings()
    if title is None:
        title = settings.get("title_filter") or ""
    if location is None:
        location = settings.get("location_filter") or ""

    items = view.filtered(
        title,
        location,
        _parse_sources(sources),
        starred_ids=set(orch.starred_ids) if starred_only else None,
        applied_ids=set(orch.applied_ids) if applied_only else None,
    )

    out: List[Dict[str, Any]] = []
    for job in items:
        d = job.to_dict()
        d["starred"] = job.id in orch.starred_ids
        d["applied"] = job.id in orch.applied_ids
        out.append(d)

    return {"total": len(out), "title": title, "location": location, "items": out}


def _flag(request: Request, job_id: str, flag: str, value: bool) -> Dict[str, Any]:
    orch = request.app.state.orchestrator
    if value and not orch.has_job(job_id):
        raise HTTPException(status_code=404, detail="job not found")

    if flag == "starred":
        orch.set_starred(job_id, value)
    else:
        orch.set_applied(job_id, value)
    return {"ok": True, "id": job_id, flag: value}


@router.post("/jobs/{job_id}/star")
def star_job(job_id: str, request: Request):
    return _flag(request, job_id, "starred", True)


@router.delete("/jobs/{job_id}/star")
def unstar_job(job_id: str, request: Request):
    return _flag(request, job_id, "starred", False)


@router.post("/jobs/{job_id}/applied")
def mark_applied(job_id: str, request: Request):
    return _flag(request, job_id, "applied", True)


@router.delete("/jobs/{job_id}/applied")
def unmark_applied(job_id: str, request: Request):
    return _flag(request, job_id, "applied", False)
