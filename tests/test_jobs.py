"""Tests for the Celery job queue (eager mode, in-memory result backend)."""

import pytest
from celery import states

import jobs
from models.report import AIStatus, Report
from worker import ReportWorker


class FlakyEngine:
    """Fails the first ``failures`` analyses, then delegates."""

    def __init__(self, engine, failures: int):
        self.engine = engine
        self.failures = failures
        self.calls = 0

    async def analyze(self, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("model backend down")
        return await self.engine.analyze(**kwargs)


@pytest.fixture
def celery_config(config):
    jobs.configure_celery(config)
    yield config
    jobs.reset_worker()


@pytest.fixture
def bind(celery_config, db, make_engine):
    """Factory: bind a keyword-only ReportWorker (optionally flaky) to the tasks."""

    def factory(failures: int = 0) -> FlakyEngine:
        engine = FlakyEngine(make_engine(None), failures)
        jobs.bind_worker(ReportWorker(celery_config, db, engine))
        return engine

    return factory


def _make_stale(db, report: Report) -> None:
    report.ai_status = AIStatus.PROCESSING
    db.save_report(report)
    db.conn.execute("UPDATE reports SET updated_at = updated_at - 3600 WHERE id = ?", (report.id,))
    db.conn.commit()


def test_configure_celery(celery_config):
    conf = jobs.celery_app.conf
    assert conf.task_acks_late is True
    assert conf.task_reject_on_worker_lost is True
    assert conf.task_default_queue == jobs.QUEUE_NAME
    assert conf.task_always_eager is True
    schedule = conf.beat_schedule["enqueue-pending-reports"]
    assert schedule["task"] == jobs.RESCAN_TASK
    assert schedule["schedule"] == float(celery_config.poll_interval_seconds)


def test_retry_countdown_is_exponential_and_capped(config):
    config.job_backoff_seconds = 5.0
    config.job_max_backoff_seconds = 600
    assert [jobs.retry_countdown(config, attempt) for attempt in (1, 2, 3)] == [5.0, 10.0, 20.0]

    config.job_max_backoff_seconds = 15
    assert jobs.retry_countdown(config, 3) == 15


def test_job_classifies_report(bind, db):
    bind()
    report = db.create_report(Report(description="overflowing garbage bin near the school"))

    result = jobs.enqueue_report(report.id)

    assert result.id == report.id
    assert result.successful()
    assert result.get() == "completed"
    stored = db.get_report(report.id)
    assert stored.ai_status == AIStatus.COMPLETED
    assert stored.final_category == "Waste Management"


def test_failed_job_is_retried_until_success(bind, db, celery_config):
    celery_config.job_attempts = 3
    engine = bind(failures=2)
    report = db.create_report(Report(description="raw sewage in the lane"))

    result = jobs.enqueue_report(report.id)

    assert result.state == states.SUCCESS
    assert engine.calls == 3
    stored = db.get_report(report.id)
    assert stored.ai_status == AIStatus.COMPLETED
    assert stored.ai_attempts == 3
    assert stored.ai_error == ""


def test_exhausted_job_leaves_report_failed(bind, db, celery_config):
    celery_config.job_attempts = 2
    engine = bind(failures=10)
    report = db.create_report(Report(description="raw sewage in the lane"))

    result = jobs.enqueue_report(report.id)

    assert result.state == states.FAILURE
    assert isinstance(result.result, RuntimeError)
    assert engine.calls == 2
    stored = db.get_report(report.id)
    assert stored.ai_status == AIStatus.FAILED
    assert stored.ai_attempts == 2
    assert "model backend down" in stored.ai_error


def test_report_waiting_for_retry_is_not_queued_again(bind, db, monkeypatch):
    engine = bind()
    report = db.create_report(Report(description="garbage pile"))

    class Retrying:
        def __init__(self, task_id):
            self.id = task_id
            self.state = states.RETRY

    monkeypatch.setattr(jobs.celery_app, "AsyncResult", Retrying)

    result = jobs.enqueue_report(report.id)

    assert isinstance(result, Retrying)
    assert engine.calls == 0
    assert db.get_report(report.id).ai_status == AIStatus.PENDING


def test_stale_processing_report_is_queued_again(bind, db):
    """A report stranded in processing by a dead worker gets a new job"""
    bind()
    stuck = db.create_report(Report(description="streetlight broken on main road"))
    _make_stale(db, stuck)
    busy = db.create_report(Report(description="garbage pile"))
    busy.ai_status = AIStatus.PROCESSING
    db.save_report(busy)

    queued = jobs.enqueue_pending(db, jobs.get_worker().config)

    assert queued == [stuck.id]
    assert db.get_report(stuck.id).ai_status == AIStatus.COMPLETED
    assert db.get_report(busy.id).ai_status == AIStatus.PROCESSING


def test_failed_reports_are_queued_only_on_request(bind, db, celery_config):
    bind()
    report = db.create_report(Report(description="burst pipe flooding the street"))
    report.ai_status = AIStatus.FAILED
    db.save_report(report)

    assert jobs.enqueue_pending(db, celery_config) == []
    assert jobs.enqueue_pending(db, celery_config, include_failed=True) == [report.id]
    assert db.get_report(report.id).ai_status == AIStatus.COMPLETED


def test_rescan_task_queues_pending_reports(bind, db):
    bind()
    ids = [db.create_report(Report(description=text)).id for text in ("garbage pile", "raw sewage")]

    assert jobs.enqueue_pending_reports.apply().get() == 2
    assert all(db.get_report(i).ai_status == AIStatus.COMPLETED for i in ids)


def test_get_worker_is_built_once_per_process(celery_config):
    celery_config.use_ai = False
    worker = jobs.get_worker()
    assert worker.config is celery_config
    assert worker.engine.classifier.available is False
    assert jobs.get_worker() is worker
