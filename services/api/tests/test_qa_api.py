from __future__ import annotations

import asyncio
import json

from fastapi.testclient import TestClient

from app.main import create_app
from tenant_rag.schemas import Answer, AnswerChunk, AskResult, Citation, PipelineError
from tenant_rag.streaming import AnswerChannel, AnswerStream, CancellationToken

CITATION = Citation(
    index=1, chunk_id="c1", doc_id="d1", doc_title="Q3 Report", snippet="Q3 revenue was $5M", confidence=0.95
)
ANSWER = Answer(answer="Revenue was $5M [1]", citations=[CITATION], confidence=0.95, confidence_label="high")


class StubPipeline:
    def __init__(self, error: PipelineError | None = None):
        self.error = error
        self.questions = []

    async def ask(self, tenant_slug, question, *, trace_id=None):
        self.questions.append((tenant_slug, question))
        if self.error is not None:
            return AskResult(trace_id=trace_id, error=self.error)
        return AskResult(trace_id=trace_id, answer=ANSWER)

    def ask_stream(self, tenant_slug, question, *, trace_id=None):
        channel = AnswerChannel()
        stream = AnswerStream(trace_id, channel, CancellationToken())

        async def produce():
            await channel.send(AnswerChunk(event="start", trace_id=trace_id))
            if self.error is not None:
                await channel.send(AnswerChunk(event="error", trace_id=trace_id, error=self.error))
            else:
                for piece in ("Revenue was ", "$5M [1]"):
                    await channel.send(AnswerChunk(event="chunk", trace_id=trace_id, content=piece))
                await channel.send(AnswerChunk(event="citations", trace_id=trace_id, citations=[CITATION]))
                await channel.send(AnswerChunk(event="complete", trace_id=trace_id, answer=ANSWER))
            await channel.close()

        stream.attach(asyncio.create_task(produce()))
        return stream


async def _noop_init_db(settings):  # pragma: no cover
    return None


async def _noop_close_db():  # pragma: no cover
    return None


async def _noop_close_pipeline(pipeline):  # pragma: no cover
    return None


def _build_client(monkeypatch, pipeline: StubPipeline) -> TestClient:
    monkeypatch.setattr("app.main.init_db", _noop_init_db)
    monkeypatch.setattr("app.main.close_db", _noop_close_db)
    monkeypatch.setattr("app.main.ensure_vector_schema", lambda settings: None)
    monkeypatch.setattr("app.main.build_pipeline", lambda settings: pipeline)
    monkeypatch.setattr("app.main.close_pipeline", _noop_close_pipeline)
    return TestClient(create_app())


def _parse_sse(body: str):
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_ask_returns_answer(monkeypatch):
    pipeline = StubPipeline()
    with _build_client(monkeypatch, pipeline) as client:
        response = client.post("/v1/qa", json={"tenant_slug": "acme", "question": "What was Q3 revenue?"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["answer"] == "Revenue was $5M [1]"
    assert payload["citations"][0]["doc_title"] == "Q3 Report"
    assert payload["confidence_label"] == "high"
    assert payload["trace_id"] == response.headers["X-Trace-Id"]
    assert pipeline.questions == [("acme", "What was Q3 revenue?")]


def test_unknown_tenant_maps_to_404(monkeypatch):
    pipeline = StubPipeline(error=PipelineError(code="TENANT_NOT_FOUND", message="Tenant 'nobody' not found"))
    with _build_client(monkeypatch, pipeline) as client:
        response = client.post("/v1/qa", json={"tenant_slug": "nobody", "question": "What was Q3 revenue?"})

    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["code"] == "TENANT_NOT_FOUND"
    assert detail["trace_id"] == response.headers["X-Trace-Id"]


def test_blocked_question_maps_to_400(monkeypatch):
    pipeline = StubPipeline(error=PipelineError(code="INVALID_INPUT", message="Question must not be empty"))
    with _build_client(monkeypatch, pipeline) as client:
        response = client.post("/v1/qa", json={"tenant_slug": "acme", "question": " "})

    assert response.status_code == 400


def test_provider_timeout_maps_to_504(monkeypatch):
    error = PipelineError(code="GENERATION_PROVIDER_ERROR", message="Generation stream timed out", retryable=True, timeout=True)
    with _build_client(monkeypatch, StubPipeline(error=error)) as client:
        response = client.post("/v1/qa", json={"tenant_slug": "acme", "question": "What was Q3 revenue?"})

    assert response.status_code == 504


def test_provider_failure_maps_to_502(monkeypatch):
    error = PipelineError(code="EMBEDDING_PROVIDER_ERROR", message="Embedding provider failed", retryable=True)
    with _build_client(monkeypatch, StubPipeline(error=error)) as client:
        response = client.post("/v1/qa", json={"tenant_slug": "acme", "question": "What was Q3 revenue?"})

    assert response.status_code == 502


def test_streamed_answer_uses_server_sent_events(monkeypatch):
    with _build_client(monkeypatch, StubPipeline()) as client:
        response = client.post(
            "/v1/qa", json={"tenant_slug": "acme", "question": "What was Q3 revenue?", "stream": True}
        )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _parse_sse(response.text)
    assert [name for name, _ in events] == ["start", "chunk", "chunk", "citations", "complete"]
    assert events[0][1]["trace_id"] == response.headers["X-Trace-Id"]
    assert "".join(data["content"] for name, data in events if name == "chunk") == "Revenue was $5M [1]"
    assert events[-1][1]["confidence"] == 0.95


def test_streamed_error_event(monkeypatch):
    error = PipelineError(code="TENANT_NOT_FOUND", message="Tenant 'nobody' not found")
    with _build_client(monkeypatch, StubPipeline(error=error)) as client:
        response = client.post(
            "/v1/qa", json={"tenant_slug": "nobody", "question": "What was Q3 revenue?", "stream": True}
        )

    events = _parse_sse(response.text)
    assert [name for name, _ in events] == ["start", "error"]
    assert events[-1][1]["code"] == "TENANT_NOT_FOUND"
