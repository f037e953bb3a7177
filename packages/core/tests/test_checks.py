"""Tests for check de-duplication and counting."""

from prgate_core.models import CheckResult, CheckStatus
from prgate_core.rules.checks import deduplicate_by_suite, failing_checks, overall_status, suite_name_for, summarize_checks


def _check(name, status, required=False, suite=None):
    return CheckResult(name=name, status=CheckStatus(status), required=required, suite_name=suite)


class TestSuiteName:
    def test_prefix_before_separator(self):
        assert suite_name_for("Code Checks / Lint") == "Code Checks"

    def test_plain_name_is_its_own_suite(self):
        assert suite_name_for("danger") == "danger"

    def test_empty(self):
        assert suite_name_for(None) is None
        assert suite_name_for("") is None


class TestDeduplicateBySuite:
    def test_required_beats_failure(self):
        checks = [
            _check("Lint", "failure", suite="CI"),
            _check("Tests", "success", required=True, suite="CI"),
        ]
        (kept,) = deduplicate_by_suite(checks)
        assert kept.name == "Tests"

    def test_failure_beats_success(self):
        checks = [_check("Lint", "success", suite="CI"), _check("Tests", "error", suite="CI")]
        (kept,) = deduplicate_by_suite(checks)
        assert kept.name == "Tests"

    def test_cancelled_beats_success(self):
        checks = [_check("CI / build", "success", suite="CI"), _check("CI / test", "cancelled", suite="CI")]
        deduped, summary = summarize_checks(checks)
        assert [(c.name, c.status) for c in deduped] == [("CI / test", CheckStatus.CANCELLED)]
        assert summary.failed == 1
        assert summary.successful == 0

    def test_success_beats_pending(self):
        checks = [_check("Lint", "pending", suite="CI"), _check("Tests", "success", suite="CI")]
        (kept,) = deduplicate_by_suite(checks)
        assert kept.name == "Tests"

    def test_tie_keeps_first_seen(self):
        checks = [_check("A", "success", suite="CI"), _check("B", "success", suite="CI")]
        (kept,) = deduplicate_by_suite(checks)
        assert kept.name == "A"

    def test_checks_without_suite_are_kept_separately(self):
        checks = [_check("A", "success"), _check("B", "failure")]
        assert [c.name for c in deduplicate_by_suite(checks)] == ["A", "B"]

    def test_unnamed_suite_does_not_collide_with_named_suite(self):
        checks = [_check("CI", "success"), _check("Lint", "failure", suite="CI")]
        assert len(deduplicate_by_suite(checks)) == 2


class TestOverallStatus:
    def test_empty_is_unknown(self):
        assert overall_status([]) == "unknown"

    def test_required_checks_decide(self):
        checks = [_check("req", "success", required=True), _check("opt", "failure")]
        assert overall_status(checks) == "success"

    def test_required_pending(self):
        checks = [_check("req", "pending", required=True), _check("opt", "success")]
        assert overall_status(checks) == "pending"

    def test_any_failure_without_required(self):
        assert overall_status([_check("a", "success"), _check("b", "cancelled")]) == "failure"

    def test_only_pending(self):
        assert overall_status([_check("a", "pending")]) == "pending"


def test_summarize_counts_deduplicated_checks():
    checks = [
        _check("CI / Lint", "success", suite="CI"),
        _check("CI / Tests", "failure", suite="CI"),
        _check("Docs", "pending", suite="Docs"),
        _check("Deploy", "success", suite="Deploy"),
    ]
    deduped, summary = summarize_checks(checks)
    assert [c.name for c in deduped] == ["CI / Tests", "Docs", "Deploy"]
    assert summary.total == 3
    assert summary.failed == 1
    assert summary.pending == 1
    assert summary.successful == 1
    assert summary.overall_status == "failure"


def test_failing_checks_include_error_and_cancelled():
    checks = [_check("a", "failure"), _check("b", "error"), _check("c", "cancelled"), _check("d", "skipped")]
    assert [c.name for c in failing_checks(checks)] == ["a", "b", "c"]
