import uuid
from functools import lru_cache

from fastapi import HTTPException, Request, Response, status

from tenant_rag import RagPipeline, Settings, configure_logging, get_settings


@lru_cache(maxsize=1)
def init_logging() -> None:
    settings = get_settings()
    configure_logging(f"api::{settings.env}")


async def get_settings_dep() -> Settings:
    init_logging()
    return get_settings()


def get_pipeline(request: Request) -> RagPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Pipeline is not initialised")
    return pipeline


def get_trace_id(response: Response) -> str:
    """New trace id for the request, echoed in ``X-Trace-Id`` on success responses."""

    trace_id = uuid.uuid4().hex
    response.headers["X-Trace-Id"] = trace_id
    return trace_id
