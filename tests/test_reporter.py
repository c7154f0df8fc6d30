import json

from reposync.reporter import IssueReporter, NullReporter


def test_report_writes_file_and_log_line(tmp_path):
    reporter = IssueReporter(tmp_path / "issues")

    report = reporter.report_issue("git_merge_conflict", {"conflicted_files": ["a.py"]})

    path = tmp_path / "issues" / f"{report.id}.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["type"] == "git_merge_conflict"
    assert data["status"] == "reported"
    assert data["data"] == {"conflicted_files": ["a.py"]}
    assert report.id.startswith("issue_")


def test_history_filters_by_type_and_skips_bad_lines(tmp_path):
    reporter = IssueReporter(tmp_path)
    reporter.report_issue("git_sync_failure", {"error": "one"})
    reporter.report_issue("git_merge_conflict", {})
    with open(reporter.log_path, "a", encoding="utf-8") as f:
        f.write("garbage\n")

    assert len(reporter.history()) == 2
    failures = reporter.history("git_sync_failure")
    assert [r.data["error"] for r in failures] == ["one"]


def test_history_is_empty_before_any_report(tmp_path):
    assert IssueReporter(tmp_path / "none").history() == []


def test_null_reporter_accepts_anything():
    assert NullReporter().report_issue("git_sync_failure", {"error": "x"}) is None
