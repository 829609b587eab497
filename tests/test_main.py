"""Tests for the command line interface."""

import json
import logging

import pytest

import main
from database import Database
from analysis.consensus import ConsensusEngine
from models.report import AIStatus


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Run main() with isolated DB/log paths and keyword-only classification."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "civic.db"))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "log"))
    monkeypatch.setenv("USE_AI", "false")
    monkeypatch.setenv("CELERY_ALWAYS_EAGER", "true")
    monkeypatch.setenv("CELERY_BROKER_URL", "memory://")
    monkeypatch.setenv("CELERY_RESULT_BACKEND", "cache+memory://")
    root = logging.getLogger()
    saved = root.handlers[:]

    def run(*argv: str) -> int:
        monkeypatch.setattr("sys.argv", ["civic-triage", *argv])
        return main.main()

    yield run

    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in saved:
        root.addHandler(handler)


def test_submit_and_process(cli, capsys, tmp_path):
    assert cli("departments", "seed") == 0
    assert "Departments created: 5" in capsys.readouterr().out

    assert cli("submit", "--description", "overflowing garbage bin near the school", "--process") == 0
    out = capsys.readouterr().out
    report_id = out.splitlines()[0].strip()
    assert "Final category: Waste Management" in out

    with Database(tmp_path / "civic.db") as db:
        report = db.get_report(report_id)
    assert report.ai_status == AIStatus.COMPLETED
    assert report.assigned_department is not None


def test_process_pending(cli, capsys):
    cli("submit", "--description", "raw sewage in the lane")
    cli("submit", "--description", "stray dog bit a child")
    capsys.readouterr()

    assert cli("process", "--pending") == 0
    result = json.loads(capsys.readouterr().out)
    assert result["reports"] == 2
    assert result["errors"] == {}
    assert result["worker"]["processed"] == 2


def test_classify_json(cli, capsys):
    assert cli("classify", "--text", "large pothole blocking the road near my house", "--json") == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["final_category"] == "Road & Infrastructure"
    assert payload["best"]["source"] == "text"


def test_show_missing_report(cli, capsys):
    assert cli("show", "nope") == 1
    assert "Report not found" in capsys.readouterr().err


def test_submit_requires_content(cli):
    assert cli("submit") == 1


def test_process_failure_is_reported_without_traceback(cli, capsys, monkeypatch, tmp_path):
    cli("submit", "--description", "raw sewage in the lane")
    report_id = capsys.readouterr().out.splitlines()[0].strip()

    async def explode(self, **kwargs):
        raise RuntimeError("model backend down")

    monkeypatch.setattr(ConsensusEngine, "analyze", explode)

    assert cli("process", report_id) == 1
    err = capsys.readouterr().err
    assert "Analysis failed: RuntimeError: model backend down" in err
    assert "Traceback" not in err

    with Database(tmp_path / "civic.db") as db:
        report = db.get_report(report_id)
    assert report.ai_status == AIStatus.FAILED


def test_enqueue_pending_runs_jobs_inline(cli, capsys, tmp_path):
    cli("departments", "seed")
    cli("submit", "--description", "burst pipe flooding the street")
    report_id = capsys.readouterr().out.splitlines()[-1].strip()

    assert cli("enqueue", "--pending") == 0
    result = json.loads(capsys.readouterr().out)
    assert result["queued"] == 1
    assert list(result["jobs"]) == [report_id]

    with Database(tmp_path / "civic.db") as db:
        report = db.get_report(report_id)
    assert report.ai_status == AIStatus.COMPLETED
    assert report.final_category == "Water & Sewerage"


def test_enqueue_missing_report(cli, capsys):
    assert cli("enqueue", "nope") == 1
    assert "Report not found" in capsys.readouterr().err
