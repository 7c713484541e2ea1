from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/status")
def status(request: Request):
    orch = request.app.state.orchestrator
    sched = getattr(request.app.state, "scheduler", None)

    return {
        "scheduler": sched.status() if sched else {"enabled": False, "reason": "scheduler not configured"},
        **orch.status(),
        "boards": len(request.app.state.board_monitor.boards),
        "detection_cache": len(request.app.state.detection_cache),
        "schema_cache": len(request.app.state.schema_cache),
    }
