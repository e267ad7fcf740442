"""Audit events, stage timings and tracing spans."""
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from opentelemetry import trace

logger = logging.getLogger("tenant_rag.audit")
tracer = trace.get_tracer("tenant_rag")

SECURITY_EVENTS = frozenset(
    {
        "injection_patterns_detected",
        "input_blocked",
        "suspicious_input",
        "cross_tenant_row_dropped",
        "secrets_decryption_failed",
    }
)


class AuditSink(ABC):
    """Receives structured pipeline events."""

    @abstractmethod
    def emit(self, event: str, **fields: Any) -> None:
        raise NotImplementedError


class LoggingAuditSink(AuditSink):
    """Writes audit events to the standard logging tree."""

    def emit(self, event: str, **fields: Any) -> None:
        level = logging.WARNING if event in SECURITY_EVENTS else logging.INFO
        try:
            logger.log(level, event, extra={"audit_event": event, **fields})
        except Exception as exc:  # pragma: no cover - a broken handler must not fail a request
            logger.debug("audit emit failed", extra={"audit_event": event, "error": str(exc)})


class NullAuditSink(AuditSink):
    def emit(self, event: str, **fields: Any) -> None:
        return None


class StageTimer:
    """Collects per-stage durations in milliseconds."""

    def __init__(self) -> None:
        self._started = time.perf_counter()
        self.timings: Dict[str, int] = {}

    @contextmanager
    def stage(self, name: str, **attributes: Any) -> Iterator[None]:
        start = time.perf_counter()
        with tracer.start_as_current_span(f"rag.{name}", attributes=attributes):
            try:
                yield
            finally:
                self.timings[f"{name}_ms"] = int((time.perf_counter() - start) * 1000)

    def total_ms(self) -> int:
        return int((time.perf_counter() - self._started) * 1000)

    def as_dict(self) -> Dict[str, int]:
        return {**self.timings, "total_ms": self.total_ms()}
