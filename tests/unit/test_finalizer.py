import pytest

from report_validation.core.errors import NotFoundError
from report_validation.services.collaborators import SqlReportStore
from report_validation.services.finalizer import Finalizer


class RecordingSink:
    def __init__(self):
        self.events = []

    def record(self, action, resource_type, resource_id, details):
        self.events.append((action, resource_id, details))


def test_finalize_is_idempotent(session, store_report, make_report):
    store_report(make_report())
    sink = RecordingSink()
    finalizer = Finalizer(SqlReportStore(session), sink)

    assert finalizer.finalize("R1") is True
    assert finalizer.finalize("R1") is False

    assert SqlReportStore(session).read_report("R1")["status"] == "final"
    assert [event[0] for event in sink.events] == ["finalize"]
    assert sink.events[0][2]["previous_status"] == "preliminary"


def test_finalize_missing_report(session):
    with pytest.raises(NotFoundError):
        Finalizer(SqlReportStore(session)).finalize("missing")


def test_store_snapshot_is_isolated(session, store_report, make_report):
    store_report(make_report())
    store = SqlReportStore(session)

    snapshot = store.read_report("R1")
    snapshot["subject"]["reference"] = "Patient/other"

    assert store.read_report("R1")["subject"]["reference"] == "Patient/p-001"
