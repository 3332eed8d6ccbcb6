from __future__ import annotations

import copy
import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from report_validation.core.errors import CollaboratorError, NotFoundError
from report_validation.core.schemas import ActorContext
from report_validation.services.repository import get_report_record, save_report

logger = logging.getLogger("report_validation.collaborators")


class ReportStore(Protocol):
    def read_report(self, report_id: str) -> dict[str, Any]: ...

    def update_report_status(self, report_id: str, status: str) -> None: ...

    def save_report(self, report_id: str, report: dict[str, Any]) -> None: ...


class CredentialValidator(Protocol):
    def verify(self, actor: ActorContext, method: str, credentials: dict[str, Any]) -> bool: ...


class SqlReportStore:
    def __init__(self, session) -> None:
        self.session = session

    def read_report(self, report_id: str) -> dict[str, Any]:
        try:
            record = get_report_record(self.session, report_id)
        except SQLAlchemyError as exc:
            raise CollaboratorError(f"report store read failed for {report_id}: {exc}") from exc
        if record is None:
            raise NotFoundError(f"report {report_id} not found")
        # Callers may mutate the snapshot (auto-fix); keep the stored JSON untouched.
        report = copy.deepcopy(record.resource or {})
        report.setdefault("id", record.id)
        report.setdefault("status", record.status)
        return report

    def update_report_status(self, report_id: str, status: str) -> None:
        try:
            record = get_report_record(self.session, report_id)
            if record is None:
                raise NotFoundError(f"report {report_id} not found")
            resource = dict(record.resource or {})
            resource["status"] = status
            save_report(self.session, report_id, resource)
        except SQLAlchemyError as exc:
            raise CollaboratorError(f"report store update failed for {report_id}: {exc}") from exc

    def save_report(self, report_id: str, report: dict[str, Any]) -> None:
        try:
            save_report(self.session, report_id, report)
        except SQLAlchemyError as exc:
            raise CollaboratorError(f"report store save failed for {report_id}: {exc}") from exc


class PresenceOnlyCredentialValidator:
    """Accepts any credential material; presence is checked by the signature service."""

    def verify(self, actor: ActorContext, method: str, credentials: dict[str, Any]) -> bool:
        logger.debug("credential verification delegated actor=%s method=%s", actor.actor_id, method)
        return True
