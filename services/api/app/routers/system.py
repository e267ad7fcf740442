from fastapi import APIRouter, Request

router = APIRouter(tags=["system"], prefix="/system")


@router.get("/health")
async def healthcheck() -> dict:
    return {"status": "ok"}


@router.get("/ready")
async def readiness(request: Request) -> dict:
    pipeline = getattr(request.app.state, "pipeline", None)
    return {"status": "ready" if pipeline is not None else "starting"}
