from fastapi import APIRouter, Request
from pydantic import BaseModel
from typing import List, Optional

router = APIRouter()


class SettingsModel(BaseModel):
    title_filter: Optional[str] = None
    location_filter: Optional[str] = None

    enabled_sources: Optional[List[str]] = None
    include_boards: Optional[bool] = None

    notifications_enabled: Optional[bool] = None
    max_pages: Optional[int] = None


@router.get("/settings")
def api_get_settings(request: Request):
    return request.app.state.persistence.get_settings()


@router.put("/settings")
async def api_put_settings(payload: SettingsModel, request: Request):
    changes = payload.model_dump(exclude_none=True)
    if "enabled_sources" in changes:
        changes["enabled_sources"] = [s.strip().lower() for s in changes["enabled_sources"] if s.strip()]
    if "max_pages" in changes:
        changes["max_pages"] = max(1, min(int(changes["max_pages"]), 20))

    updated = request.app.state.persistence.update_settings(changes)

    sched = getattr(request.app.state, "scheduler", None)
    if sched:
        sched.sync_timers()
    return updated
