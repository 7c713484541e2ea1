from fastapi import APIRouter, HTTPException, Request

router = APIRouter()


@router.post("/run")
async def run_now(request: Request):
    result = await request.app.state.scheduler.run_once(trigger="manual")
    sched = request.app.state.scheduler
    if result is None:
        raise HTTPException(status_code=500, detail=sched.last_error or "cycle failed")
    return {"ok": True, **result}


@router.post("/run/{source}")
async def run_source(source: str, request: Request):
    orch = request.app.state.orchestrator
    try:
        result = await orch.fetch_source(source.strip().lower())
    except KeyError:
        raise HTTPException(status_code=404, detail=f"unknown source: {source}")
    return {"ok": True, **result}


@router.post("/wake")
async def wake(request: Request):
    result = await request.app.state.scheduler.wake()
    return {"ok": result is not None, "result": result}


@router.post("/cleanup")
async def cleanup(request: Request):
    removed = await request.app.state.orchestrator.cleanup()
    return {"ok": True, "removed": removed}
