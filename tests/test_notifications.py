"""Tests for department notifications."""

import json

import pytest

from models.report import Report
from notifications import build_alert, notify_department_admins


@pytest.fixture
def routed(db):
    dept = db.add_department("Waste Management")
    admin = db.add_department_admin(dept.id, "Ada", "ada@example.org")
    report = Report(
        description="garbage pile " * 100,
        address="12 Market Road",
        final_category="Waste Management",
        ai_category_confidence=0.9,
        ai_raw_response={"secret": "model output"},
    )
    return dept, admin, report


def test_build_alert(routed):
    dept, admin, report = routed
    alert = build_alert(report, admin, dept)
    assert alert["type"] == "report_assigned"
    assert alert["report_id"] == report.id
    assert alert["department"] == "Waste Management"
    assert alert["admin_email"] == "ada@example.org"
    assert len(alert["description"]) == 500
    assert "secret" not in json.dumps(alert)


@pytest.mark.asyncio
async def test_notify_writes_alerts_file(config, db, routed, tmp_path):
    dept, _, report = routed
    config.alerts_file = str(tmp_path / "alerts" / "alerts.jsonl")

    sent, failed = await notify_department_admins(dept.id, report, config, db)

    assert (sent, failed) == (1, 0)
    lines = (tmp_path / "alerts" / "alerts.jsonl").read_text().splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["admin_name"] == "Ada"


@pytest.mark.asyncio
async def test_notify_without_admins(config, db):
    dept = db.add_department("Water & Sewerage")
    assert await notify_department_admins(dept.id, Report(), config, db) == (0, 0)


@pytest.mark.asyncio
async def test_notify_lookup_failure(config, db, monkeypatch):
    def broken(department_id):
        raise RuntimeError("db locked")

    monkeypatch.setattr(db, "get_admins_by_department", broken)
    assert await notify_department_admins(1, Report(), config, db) == (0, 1)
