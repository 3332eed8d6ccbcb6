from report_validation.core.enums import Severity
from report_validation.core.schemas import ValidationBot, ValidationRule
from report_validation.services import bots
from report_validation.services.bots import BotValidationEngine
from report_validation.services.rules import RuleRegistry


class RecordingSink:
    def __init__(self):
        self.events = []

    def record(self, action, resource_type, resource_id, details):
        self.events.append((action, resource_type, resource_id, details))


class BrokenSink:
    def record(self, action, resource_type, resource_id, details):
        raise ConnectionError("audit backend down")


def _unresolved(results):
    return [row for row in results if not row.passed]


def test_trigger_conditions_are_disjunctive(make_report):
    bot = ValidationBot(id="b", name="b", trigger_conditions=["status:final", "has-observations"])
    assert bots.should_trigger(bot, make_report(status="preliminary"))
    assert not bots.should_trigger(bot, make_report(status="preliminary", result=[]))


def test_pathology_and_unknown_conditions(make_report):
    report = make_report(category=[{"coding": [{"code": "PAT"}]}])
    assert bots.condition_matches("category:pathology", report)
    assert bots.condition_matches("category:PAT", report)
    assert not bots.condition_matches("moon-phase:full", report)


def test_report_missing_issued_is_auto_fixed_once(make_report):
    report = make_report()
    del report["issued"]
    engine = BotValidationEngine()

    first = engine.execute(report)
    fixed = [row for row in first if row.auto_fixed]
    assert len(fixed) == 1
    assert fixed[0].rule_id == "issued-date-check"
    assert fixed[0].passed
    assert "issued" in report
    assert _unresolved(first) == []

    second = engine.execute(report)
    assert _unresolved(second) == []
    assert not any(row.auto_fixed for row in second)


def test_missing_code_and_effective_date_is_a_single_failure(make_report):
    report = make_report()
    del report["code"]
    del report["effectiveDateTime"]
    del report["issued"]

    results = BotValidationEngine().execute(report)

    failed = _unresolved(results)
    assert len(failed) == 1
    assert failed[0].rule_id == "completeness-check"
    assert "code" in failed[0].message and "effectiveDateTime" in failed[0].message


def test_auto_fix_that_does_not_resolve_the_rule_leaves_it_failed(make_report):
    report = make_report(subject={"reference": "Patient/p-001"}, issued="not-a-date")
    results = BotValidationEngine().execute(report)

    format_result = next(row for row in results if row.rule_id == "format-validation")
    assert not format_result.passed
    assert not format_result.auto_fixed


def test_result_count_matches_rules_of_triggered_bots(make_report):
    # status:preliminary triggers completeness (2 rules) and format (1), observations trigger terminology (1)
    results = BotValidationEngine().execute(make_report())
    assert len(results) == 4
    assert [row.bot_id for row in results] == ["completeness-bot", "completeness-bot", "terminology-bot", "format-bot"]


def test_inactive_and_untriggered_bots_do_not_run(make_report):
    engine = BotValidationEngine()
    for bot in engine.bots:
        if bot.id == "format-bot":
            bot.is_active = False

    results = engine.execute(make_report(status="final"))

    assert [row.rule_id for row in results] == ["terminology-validation"]


def test_disabled_bots_setting_deactivates_defaults(monkeypatch):
    class _TestSettings:
        def disabled_bots(self):
            return {"terminology-bot"}

    monkeypatch.setattr(bots, "settings", _TestSettings())
    active = {bot.id for bot in bots.default_bots() if bot.is_active}
    assert active == {"completeness-bot", "format-bot"}


def test_throwing_rule_becomes_error_result_and_execution_continues(make_report):
    def explode(rule, report):
        raise KeyError("coding")

    registry = RuleRegistry()
    registry.register("exploding-rule", explode)
    bot = ValidationBot(
        id="fragile-bot",
        name="Fragile",
        trigger_conditions=["status:preliminary"],
        validation_rules=[
            ValidationRule(id="exploding-rule", name="Explodes", severity=Severity.info),
            ValidationRule(id="completeness-check", name="Required Fields", severity=Severity.error),
        ],
    )

    results = BotValidationEngine(bots=[bot], registry=registry).execute(make_report())

    assert len(results) == 2
    assert not results[0].passed
    assert results[0].severity == Severity.error
    assert results[0].message.startswith("Rule evaluation failed")
    assert results[0].details["error_type"] == "KeyError"
    assert results[1].passed


def test_execution_order_follows_priority_not_declaration(make_report):
    rule = ValidationRule(id="unimplemented", name="noop", severity=Severity.info)
    late = ValidationBot(id="late", name="late", trigger_conditions=["has-observations"], validation_rules=[rule], priority=9)
    early = ValidationBot(id="early", name="early", trigger_conditions=["has-observations"], validation_rules=[rule], priority=1)

    results = BotValidationEngine(bots=[late, early]).execute(make_report())

    assert [row.bot_id for row in results] == ["early", "late"]


def test_repeated_execution_is_deterministic(make_report):
    report = make_report(conclusionCode=[{"coding": [{"system": "http://snomed.info/sct"}]}])
    engine = BotValidationEngine()
    first = [row.model_dump() for row in engine.execute(report)]
    second = [row.model_dump() for row in engine.execute(report)]
    assert first == second


def test_audit_summary_emitted_per_execution(make_report):
    sink = RecordingSink()
    report = make_report(code={"coding": [{"code": "x"}]})

    BotValidationEngine(audit_sink=sink).execute(report)

    assert len(sink.events) == 1
    action, resource_type, resource_id, details = sink.events[0]
    assert (action, resource_type, resource_id) == ("validate", "DiagnosticReport", "R1")
    assert details["bots_executed"] == 3
    assert details["results_count"] == 4
    assert details["errors"] == 0
    assert details["warnings"] == 1


def test_audit_sink_failure_does_not_abort_execution(make_report):
    results = BotValidationEngine(audit_sink=BrokenSink()).execute(make_report())
    assert len(results) == 4


def test_malformed_conclusion_codes_fail_terminology_without_aborting(make_report):
    report = make_report(conclusionCode={"coding": [{"code": "x"}]})

    results = BotValidationEngine().execute(report)

    terminology = next(row for row in results if row.rule_id == "terminology-validation")
    assert not terminology.passed
    assert terminology.severity == Severity.error
    assert terminology.message == "Rule evaluation failed: conclusionCode must be a list, got dict"
    assert terminology.details["error_type"] == "RuleEvaluationError"
    assert len(results) == 4
