from typing import Any, Dict, Optional
from fastapi import APIRouter, Request, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from jobflare.core.errors import FetchError
from jobflare.fetchers.base import FilterParams
from jobflare.services.board_monitor import BoardError

router = APIRouter()


class BoardModel(BaseModel):
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    is_enabled: bool = True


class BoardPatchModel(BaseModel):
    name: Optional[str] = None
    is_enabled: Optional[bool] = None


class ImportRequest(BaseModel):
    text: str = ""


class DetectRequest(BaseModel):
    """Run the detection cascade for a URL without adding it as a board."""

    url: str = Field(min_length=1)
    company_name: Optional[str] = None
    title: str = ""
    location: str = ""
    include_jobs: bool = False


def _sync_timers(request: Request) -> None:
    sched = getattr(request.app.state, "scheduler", None)
    if sched:
        sched.sync_timers()


@router.get("/boards")
def api_list_boards(request: Request):
    return [b.to_dict() for b in request.app.state.board_monitor.boards]


@router.post("/boards")
async def api_add_board(payload: BoardModel, request: Request):
    monitor = request.app.state.board_monitor
    try:
        board = monitor.add_board(payload.name, payload.url, is_enabled=payload.is_enabled)
    except BoardError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _sync_timers(request)
    return board.to_dict()


@router.patch("/boards/{board_id}")
async def api_update_board(board_id: str, payload: BoardPatchModel, request: Request):
    board = request.app.state.board_monitor.update_board(
        board_id, name=payload.name, is_enabled=payload.is_enabled
    )
    if not board:
        raise HTTPException(status_code=404, detail="Board not found")
    _sync_timers(request)
    return board.to_dict()


@router.delete("/boards/{board_id}")
async def api_delete_board(board_id: str, request: Request):
    if not request.app.state.board_monitor.remove_board(board_id):
        raise HTTPException(status_code=404, detail="Board not found")
    _sync_timers(request)
    return {"ok": True, "id": board_id}


@router.get("/boards/export", response_class=PlainTextResponse)
def api_export_boards(request: Request):
    return request.app.state.board_monitor.export_boards()


@router.post("/boards/import")
async def api_import_boards(payload: ImportRequest, request: Request) -> Dict[str, Any]:
    result = request.app.state.board_monitor.import_boards(payload.text)
    if result.added:
        _sync_timers(request)
    return result.to_dict()


@router.post("/boards/detect")
def api_detect_board(payload: DetectRequest, request: Request) -> Dict[str, Any]:
    cascade = request.app.state.cascade
    params = FilterParams(title=payload.title, location=payload.location)
    try:
        result = cascade.detect_and_fetch(payload.url, params, company_name=payload.company_name)
    except FetchError as e:
        raise HTTPException(status_code=502, detail=str(e))

    out = result.to_dict()
    if payload.include_jobs:
        out["jobs"] = [j.to_dict() for j in result.jobs]
    return out
