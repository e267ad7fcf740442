import json
import logging
import uuid
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse

from tenant_rag import RagPipeline
from tenant_rag.logging import truncate_for_log
from tenant_rag.schemas import AnswerChunk
from tenant_rag.streaming import AnswerStream

from ..dependencies import get_pipeline
from ..errors import error_body, raise_pipeline_error
from ..models import AskRequest, AskResponse

router = APIRouter(prefix="/v1/qa", tags=["qa"])
logger = logging.getLogger(__name__)


def format_sse(event: AnswerChunk) -> str:
    if event.event == "start":
        payload = {"trace_id": event.trace_id}
    elif event.event == "chunk":
        payload = {"content": event.content or ""}
    elif event.event == "citations":
        payload = {"citations": [citation.model_dump() for citation in event.citations]}
    elif event.event == "complete" and event.answer is not None:
        payload = {
            "answer": event.answer.answer,
            "confidence": event.answer.confidence,
            "confidence_label": event.answer.confidence_label,
            "fallback": event.answer.fallback,
            "cached": event.answer.cached,
        }
    elif event.error is not None:
        payload = error_body(event.error, event.trace_id)
    else:
        payload = {}
    return f"event: {event.event}\ndata: {json.dumps(payload)}\n\n"


async def _event_source(stream: AnswerStream, request: Request) -> AsyncIterator[str]:
    try:
        async for event in stream:
            if await request.is_disconnected():
                logger.info("client disconnected, cancelling answer", extra={"trace_id": stream.trace_id})
                break
            yield format_sse(event)
    finally:
        await stream.cancel()


@router.post("", response_model=AskResponse)
async def ask(
    payload: AskRequest,
    request: Request,
    response: Response,
    pipeline: RagPipeline = Depends(get_pipeline),
):
    trace_id = uuid.uuid4().hex
    logger.info(
        "question received",
        extra={"tenant_slug": payload.tenant_slug, "trace_id": trace_id, "question": truncate_for_log(payload.question)},
    )

    if payload.stream:
        stream = pipeline.ask_stream(payload.tenant_slug, payload.question, trace_id=trace_id)
        return StreamingResponse(
            _event_source(stream, request),
            media_type="text/event-stream",
            headers={"X-Trace-Id": trace_id, "Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    result = await pipeline.ask(payload.tenant_slug, payload.question, trace_id=trace_id)
    if result.error is not None or result.answer is None:
        raise_pipeline_error(result.error, trace_id)

    response.headers["X-Trace-Id"] = trace_id
    answer = result.answer
    return AskResponse(
        trace_id=trace_id,
        answer=answer.answer,
        citations=answer.citations,
        confidence=answer.confidence,
        confidence_label=answer.confidence_label,
        fallback=answer.fallback,
        cached=answer.cached,
    )
