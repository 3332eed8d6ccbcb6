from __future__ import annotations

import logging
import time
from typing import Any, Protocol

import httpx

from report_validation.config import settings
from report_validation.services.repository import log_audit_event
from report_validation.utils.time import now_utc

logger = logging.getLogger("report_validation.audit")


class AuditSink(Protocol):
    def record(self, action: str, resource_type: str, resource_id: str, details: dict[str, Any]) -> None: ...


class DatabaseAuditSink:
    def __init__(self, session) -> None:
        self.session = session

    def record(self, action: str, resource_type: str, resource_id: str, details: dict[str, Any]) -> None:
        log_audit_event(self.session, action, resource_type, resource_id, details)


class HttpAuditSink:
    def __init__(
        self,
        url: str,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.BaseTransport | None = None,
        backoff_seconds: float = 1.5,
    ) -> None:
        self.url = url
        self.timeout = settings.audit_timeout_seconds if timeout is None else timeout
        self.max_retries = settings.audit_max_retries if max_retries is None else max_retries
        self.transport = transport
        self.backoff_seconds = backoff_seconds

    def record(self, action: str, resource_type: str, resource_id: str, details: dict[str, Any]) -> None:
        payload = {
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": details,
            "recorded_at": now_utc().isoformat(),
        }
        attempts = max(1, self.max_retries + 1)
        last_error = ""

        for i in range(1, attempts + 1):
            try:
                with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                    response = client.post(self.url, json=payload)
                if 200 <= response.status_code < 300:
                    return
                last_error = f"status={response.status_code} body={response.text[:200]}"
            except httpx.HTTPError as exc:
                last_error = str(exc)

            if i < attempts:
                time.sleep(min(self.backoff_seconds * i, 3.0))

        raise RuntimeError(f"audit forward to {self.url} failed: {last_error}")


class FanOutAuditSink:
    def __init__(self, sinks: list[AuditSink]) -> None:
        self.sinks = sinks

    def record(self, action: str, resource_type: str, resource_id: str, details: dict[str, Any]) -> None:
        for sink in self.sinks:
            emit_audit(sink, action, resource_type, resource_id, details)


def emit_audit(sink: AuditSink | None, action: str, resource_type: str, resource_id: str, details: dict[str, Any]) -> None:
    if sink is None:
        return
    try:
        sink.record(action, resource_type, resource_id, details)
    except Exception as exc:
        # Audit emission never fails the operation that triggered it.
        logger.warning(
            "audit sink failed action=%s resource=%s/%s error=%s",
            action,
            resource_type,
            resource_id,
            exc,
        )


def build_audit_sink(session) -> AuditSink:
    sinks: list[AuditSink] = [DatabaseAuditSink(session)]
    if settings.audit_forward_url:
        sinks.append(HttpAuditSink(settings.audit_forward_url))
    if len(sinks) == 1:
        return sinks[0]
    return FanOutAuditSink(sinks)
