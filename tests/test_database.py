"""Tests for report and department storage."""

import sqlite3

import pytest

from database import ReportNotFoundError
from models.report import AIStatus, Photo, Report, VoiceAttachment
from models.taxonomy import MainCategory


def test_report_round_trip(db):
    report = Report(
        description="Broken streetlight on 5th avenue",
        photos=[Photo(url="https://cdn.example.com/a.jpg", key="a.jpg")],
        voice=VoiceAttachment(url="https://cdn.example.com/a.m4a"),
        user_category="citizen",
    )
    db.create_report(report)
    loaded = db.get_report(report.id)
    assert loaded.description == report.description
    assert loaded.image_url == "https://cdn.example.com/a.jpg"
    assert loaded.voice_url == "https://cdn.example.com/a.m4a"
    assert loaded.voice_transcript is None
    assert loaded.ai_status == AIStatus.PENDING


def test_duplicate_report_id(db):
    report = Report(description="x")
    db.create_report(report)
    with pytest.raises(sqlite3.IntegrityError):
        db.create_report(report)


def test_missing_report(db):
    with pytest.raises(ReportNotFoundError) as exc_info:
        db.get_report("nope")
    assert exc_info.value.report_id == "nope"
    with pytest.raises(ReportNotFoundError):
        db.save_report(Report(id="nope"))


def test_save_updates_filter_columns(db):
    report = db.create_report(Report(description="trash"))
    report.ai_status = AIStatus.COMPLETED
    report.final_category = MainCategory.WASTE.value
    db.save_report(report)

    assert [r.id for r in db.list_reports(category="Waste Management")] == [report.id]
    assert [r.id for r in db.list_reports(ai_status="completed")] == [report.id]
    assert db.list_reports(flagged=True) == []


def test_reports_needing_analysis(db):
    first = db.create_report(Report(description="one"))
    second = db.create_report(Report(description="two"))
    done = db.create_report(Report(description="three"))
    done.ai_status = AIStatus.COMPLETED
    db.save_report(done)
    second.ai_status = AIStatus.FAILED
    db.save_report(second)

    assert db.reports_needing_analysis() == [first.id]
    assert db.reports_needing_analysis(include_failed=True) == [first.id, second.id]
    assert db.reports_needing_analysis(limit=0) == []


def test_stale_processing_reports_are_rescanned(db):
    """A report left in processing by a dead worker is picked up again"""
    stuck = db.create_report(Report(description="stuck"))
    stuck.ai_status = AIStatus.PROCESSING
    db.save_report(stuck)

    assert db.reports_needing_analysis() == []
    assert db.reports_needing_analysis(stale_after=3600) == []
    assert db.reports_needing_analysis(stale_after=0) == [stuck.id]


def test_seed_departments_is_idempotent(db):
    assert db.seed_departments() == 5
    assert db.seed_departments() == 0
    names = [d.name for d in db.list_departments()]
    assert "Other" not in names
    assert "Road & Infrastructure" in names

    dept = db.get_department_by_category("Water & Sewerage")
    assert dept is not None
    assert db.get_department(dept.id) == dept
    assert db.get_department_by_category("Other") is None
    assert db.get_department_by_category("") is None


def test_admins_by_department(db):
    dept = db.add_department("Waste Management")
    active = db.add_department_admin(dept.id, "Ada", "ada@example.org")
    inactive = db.add_department_admin(dept.id, "Bob", "bob@example.org")
    db.conn.execute("UPDATE department_admins SET is_active = 0 WHERE id = ?", (inactive.id,))
    db.conn.commit()

    admins = db.get_admins_by_department(dept.id)
    assert [a.id for a in admins] == [active.id]
    assert db.get_admins_by_department(None) == []


def test_admin_requires_department(db):
    with pytest.raises(sqlite3.IntegrityError):
        db.add_department_admin(999, "Ghost", "ghost@example.org")


def test_stats(db):
    db.seed_departments()
    routed = db.create_report(Report(description="a"))
    routed.final_category = MainCategory.ROAD.value
    routed.assigned_department = db.get_department_by_category(MainCategory.ROAD.value).id
    routed.ai_status = AIStatus.COMPLETED
    db.save_report(routed)
    flagged = db.create_report(Report(description="b"))
    flagged.flagged = True
    flagged.final_category = MainCategory.OTHER.value
    db.save_report(flagged)

    stats = db.stats()
    assert stats["total"] == 2
    assert stats["flagged"] == 1
    assert stats["routed"] == 1
    assert stats["by_status"] == {"completed": 1, "pending": 1}
    assert stats["by_category"] == {"Road & Infrastructure": 1, "Other": 1}
