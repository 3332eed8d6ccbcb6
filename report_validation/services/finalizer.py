from __future__ import annotations

import logging

from report_validation.core.enums import ReportStatus
from report_validation.services.audit import AuditSink, emit_audit
from report_validation.services.collaborators import ReportStore
from report_validation.utils.time import now_utc

logger = logging.getLogger("report_validation.finalizer")


class Finalizer:
    def __init__(self, report_store: ReportStore, audit_sink: AuditSink | None = None) -> None:
        self.report_store = report_store
        self.audit_sink = audit_sink

    def finalize(self, report_id: str) -> bool:
        """Commit the report to `final`; returns False when it already was (retry is a no-op)."""
        report = self.report_store.read_report(report_id)
        if report.get("status") == ReportStatus.final.value:
            logger.info("report already final report_id=%s", report_id)
            return False

        self.report_store.update_report_status(report_id, ReportStatus.final.value)
        emit_audit(
            self.audit_sink,
            "finalize",
            "DiagnosticReport",
            report_id,
            {"finalized_at": now_utc().isoformat(), "previous_status": report.get("status")},
        )
        return True
