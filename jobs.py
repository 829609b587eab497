"""Celery job queue for report classification.

The broker (Redis by default) owns delivery, retry scheduling and the
record of job state. This module declares the Celery app, the tasks, and
how reports are put on the queue.

Delivery:
    - At least once: ``task_acks_late`` with ``task_reject_on_worker_lost``
      hands a job back to the broker when its worker dies mid-run; the
      worker's idempotency guard absorbs the redelivery
    - Retries: JOB_ATTEMPTS attempts in total, delay
      ``JOB_BACKOFF_SECONDS * 2^(attempt - 1)`` capped at
      JOB_MAX_BACKOFF_SECONDS
    - Job id = report id: job state is looked up by report, and a report
      whose job is waiting out a retry delay is not queued a second time
    - Exhausted jobs end in FAILURE in the result backend; the report itself
      stays ``ai_status=failed`` with ``ai_error`` until re-queued
    - Recovery: beat runs ``enqueue_pending_reports`` every
      POLL_INTERVAL_SECONDS, which re-queues pending reports and reports left
      in ``processing`` for STALE_PROCESSING_SECONDS

Each worker process builds one ReportWorker (and its SQLite connection)
lazily on its first job, after the pool has forked.

Example:
    >>> from jobs import configure_celery, enqueue_report, run_worker
    >>> configure_celery(config)
    >>> enqueue_report(report.id)
    >>> run_worker(config)  # blocks; runs the Celery worker with beat
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from celery import Celery, states
from celery.result import AsyncResult
from celery.signals import worker_process_init
from celery.utils.time import get_exponential_backoff_interval

from config import Config
from database import Database
from observability.tracing import setup_tracing
from worker import ReportWorker

logger = logging.getLogger(__name__)

QUEUE_NAME = "reports"
ANALYZE_TASK = "civic_triage.analyze_report"
RESCAN_TASK = "civic_triage.enqueue_pending_reports"

# A job in this state is scheduled to run again; queuing another is a duplicate
RETRYING_STATES = frozenset({states.RETRY})

celery_app = Celery("civic_triage")

_config: Config | None = None
_worker: ReportWorker | None = None
_loop: asyncio.AbstractEventLoop | None = None


def configure_celery(config: Config) -> Celery:
    """Apply configuration to the Celery app and drop any per-process worker.

    Args:
        config: Application configuration

    Returns:
        The configured Celery app
    """
    global _config
    reset_worker()
    _config = config
    celery_app.conf.update(
        broker_url=config.broker_url,
        result_backend=config.result_backend or config.broker_url,
        task_default_queue=QUEUE_NAME,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_track_started=True,
        task_always_eager=config.jobs_eager,
        task_eager_propagates=False,
        worker_prefetch_multiplier=1,
        worker_concurrency=config.worker_concurrency,
        worker_hijack_root_logger=False,
        # Redis: honor per-message priority (0 = highest)
        broker_transport_options={"queue_order_strategy": "priority"},
        beat_schedule={
            "enqueue-pending-reports": {
                "task": RESCAN_TASK,
                "schedule": float(config.poll_interval_seconds),
            },
        },
        beat_schedule_filename=str(config.log_dir / "celerybeat-schedule"),
    )
    logger.debug(
        "Celery configured | broker=%s eager=%s attempts=%d",
        config.broker_url,
        config.jobs_eager,
        config.job_attempts,
    )
    return celery_app


def retry_countdown(config: Config, attempt: int) -> float:
    """Delay before the retry that follows a failed ``attempt`` (1-based)."""
    return get_exponential_backoff_interval(
        factor=config.job_backoff_seconds,
        retries=attempt - 1,
        maximum=config.job_max_backoff_seconds,
        full_jitter=False,
    )


# === Per-process worker ===


def get_worker() -> ReportWorker:
    """The ReportWorker for this process, built on first use."""
    global _config, _worker
    if _worker is None:
        config = _config or Config.load()
        _config = config
        setup_tracing(enabled=config.enable_logfire, token=config.logfire_token)
        _worker = ReportWorker.from_config(config, Database(config.db_path))
        logger.info("Job worker ready | db=%s", config.db_path)
    return _worker


def bind_worker(worker: ReportWorker) -> None:
    """Run this process's jobs on an existing worker."""
    global _config, _worker
    _worker = worker
    _config = worker.config


def reset_worker() -> None:
    """Close the per-process worker's database and event loop."""
    global _worker, _loop
    if _worker is not None:
        _worker.db.close()
        _worker = None
    if _loop is not None:
        _loop.close()
        _loop = None


@worker_process_init.connect
def _on_process_init(**kwargs: Any) -> None:
    # Connections and loops must not be shared with the parent after fork
    global _worker, _loop
    _worker = None
    _loop = None


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    # One loop per process so cached HTTP clients stay bound to a live loop
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop.run_until_complete(coro)


# === Tasks ===


@celery_app.task(bind=True, name=ANALYZE_TASK)
def analyze_report(self, report_id: str, force: bool = False) -> str:
    """Classify one report; retried with exponential backoff on failure."""
    worker = get_worker()
    config = worker.config
    attempt = self.request.retries + 1
    job_id = self.request.id or report_id
    try:
        return _run(worker.handle_job(report_id, job_id=job_id, attempt=attempt, force=force))
    except Exception as e:
        if attempt >= config.job_attempts:
            logger.error(
                "Job failed permanently | report_id=%s attempts=%d error=%s",
                report_id,
                attempt,
                e,
            )
            raise
        countdown = retry_countdown(config, attempt)
        logger.warning(
            "Job failed; retrying | report_id=%s attempt=%d/%d countdown=%.1fs error=%s",
            report_id,
            attempt,
            config.job_attempts,
            countdown,
            e,
        )
        raise self.retry(exc=e, countdown=countdown, max_retries=config.job_attempts - 1)


@celery_app.task(name=RESCAN_TASK)
def enqueue_pending_reports(limit: int = 100) -> int:
    """Beat task: queue pending and stale reports."""
    worker = get_worker()
    return len(enqueue_pending(worker.db, worker.config, limit=limit))


# === Producers ===


def job_state(report_id: str) -> str:
    """Celery state of a report's job (PENDING when unknown)."""
    return celery_app.AsyncResult(report_id).state


def enqueue_report(report_id: str, priority: int | None = None, force: bool = False) -> AsyncResult:
    """Queue a classification job for a report.

    Args:
        report_id: Report to classify; also used as the job id
        priority: Broker priority, lower runs first
        force: Reclassify even if the report is already completed

    Returns:
        AsyncResult for the new job, or the existing one when the report's
        job is already waiting to be retried
    """
    existing = celery_app.AsyncResult(report_id)
    if existing.state in RETRYING_STATES:
        logger.info("Job already scheduled; not queued again | report_id=%s", report_id)
        return existing
    result = analyze_report.apply_async(
        args=(report_id,),
        kwargs={"force": force},
        task_id=report_id,
        priority=priority,
        queue=QUEUE_NAME,
    )
    logger.debug("Job queued | report_id=%s priority=%s", report_id, priority)
    return result


def enqueue_pending(
    db: Database,
    config: Config,
    limit: int = 100,
    include_failed: bool = False,
) -> list[str]:
    """Queue every report still awaiting classification.

    Picks up pending reports and reports stuck in ``processing`` longer
    than STALE_PROCESSING_SECONDS; failed reports only when asked.

    Returns:
        Ids of the queued reports
    """
    report_ids = db.reports_needing_analysis(
        limit=limit,
        include_failed=include_failed,
        stale_after=config.stale_processing_seconds,
    )
    for report_id in report_ids:
        enqueue_report(report_id)
    if report_ids:
        logger.info("Reports queued | count=%d include_failed=%s", len(report_ids), include_failed)
    return report_ids


def run_worker(config: Config, beat: bool = True) -> None:
    """Run a Celery worker (with embedded beat) until interrupted."""
    configure_celery(config)
    argv = [
        "worker",
        f"--loglevel={config.log_level}",
        f"--concurrency={config.worker_concurrency}",
        f"--queues={QUEUE_NAME}",
    ]
    if beat:
        argv.append("--beat")
    logger.info(
        "Worker starting | concurrency=%d poll_interval=%ds attempts=%d broker=%s",
        config.worker_concurrency,
        config.poll_interval_seconds,
        config.job_attempts,
        config.broker_url,
    )
    celery_app.worker_main(argv)
