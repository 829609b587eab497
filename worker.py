"""Report processing worker.

This module drives classification for one report at a time. The Celery
task in ``jobs.py`` calls ``ReportWorker.handle_job`` for every delivered
job; retries, backoff and redelivery belong to the broker.

Per-report flow (``ReportWorker.process_report``):
    1. LOAD: read the report; already ``completed`` -> no-op, no writes
    2. CLAIM: ``ai_status = processing``, persisted (only intermediate write)
    3. TRANSCRIBE: voice note without transcript -> best-effort STT
    4. ANALYZE: consensus engine over photo, description and transcript.
       On exception: ``failed`` + ``ai_error``, persisted, re-raised so the
       queue retries with backoff
    5. FLAGGED: photo failed the safety gate -> ``flagged``/manual review,
       category forced to Other/0, persisted, no routing
    6. CLASSIFY: per-source, consensus and best fields + raw debug payload
    7. DECIDE: decision ladder with the user's category (placeholders cleared)
    8. COMPLETE: ``completed``, attempts + 1, safety flags cleared
    9. ROUTE: department lookup by final category (errors logged only)
   10. PERSIST once, then notify department admins (errors logged only)

Redelivered jobs are safe: a completed report short-circuits at step 1 and
each terminal branch writes the record exactly once.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass

from agents.classifier import RemoteClassifier
from agents.client import create_model_client
from agents.safety import SafetyFilter
from analysis.consensus import ConsensusEngine
from analysis.decision import decide_final_category, normalize_user_category
from config import Config
from database import Database
from models.classification import AnalysisResult, ClassificationResult
from models.report import AIStatus, Report, ReportStatus
from models.taxonomy import MainCategory
from notifications import notify_department_admins
from observability.logging import job_context
from observability.tracing import trace_operation
from tools.transcribe import Transcriber

logger = logging.getLogger(__name__)

DEFAULT_FLAGGED_REASON = "Inappropriate content detected"

Notifier = Callable[[int, Report, Config, Database], Awaitable[tuple[int, int]]]


@dataclass
class WorkerStats:
    """Counters for one worker process.

    Attributes:
        processed: Reports classified and completed normally
        skipped: Redelivered jobs for already completed reports
        flagged: Reports stopped by the safety gate
        failed: Attempts that ended in ``ai_status=failed``
        routed: Reports assigned to a department
        notified: Admin notifications sent
        transcribed: Voice notes transcribed
    """

    processed: int = 0
    skipped: int = 0
    flagged: int = 0
    failed: int = 0
    routed: int = 0
    notified: int = 0
    transcribed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def build_engine(config: Config) -> ConsensusEngine:
    """Wire up the model client, classifier and safety filter into an engine."""
    client = create_model_client(config)
    classifier = RemoteClassifier(client, config)
    safety = SafetyFilter(client, config)
    return ConsensusEngine(config, classifier, safety)


def _apply_source(report: Report, source: str, result: ClassificationResult | None) -> None:
    category = result.main_category.value if result else ""
    confidence = result.confidence if result else 0.0
    setattr(report, f"ai_category_{source}", category)
    setattr(report, f"ai_category_{source}_confidence", confidence)


class ReportWorker:
    """Classifies reports and applies the outcome to the report record.

    Components:
        - ConsensusEngine: per-modality classification and combination
        - Transcriber: optional speech-to-text for voice notes
        - Database: report record and department lookup
        - Notifier: department admin notification side effect

    Example:
        >>> worker = ReportWorker.from_config(config, db)
        >>> report = await worker.process_report(report_id)
        >>> report.final_category
        'Road & Infrastructure'
    """

    def __init__(
        self,
        config: Config,
        db: Database,
        engine: ConsensusEngine,
        transcriber: Transcriber | None = None,
        notifier: Notifier = notify_department_admins,
    ):
        self.config = config
        self.db = db
        self.engine = engine
        self.transcriber = transcriber
        self.notifier = notifier
        self.stats = WorkerStats()

    @classmethod
    def from_config(cls, config: Config, db: Database) -> "ReportWorker":
        """Build the engine and optional transcriber from configuration."""
        transcriber = Transcriber(config) if config.transcription_model else None
        return cls(config, db, build_engine(config), transcriber=transcriber)

    # === Single report ===

    async def _transcribe(self, report: Report) -> None:
        url = report.voice_url
        if not url or report.voice_transcript:
            return
        if self.transcriber is None or not self.transcriber.enabled:
            logger.debug("Voice note present but transcription disabled")
            return
        try:
            transcript = await self.transcriber.transcribe_from_url(url, language=self.config.stt_language)
        except Exception as e:
            logger.warning("Transcription failed; continuing without transcript | error=%s", e)
            return
        if transcript:
            report.voice.transcript = transcript
            self.stats.transcribed += 1

    def _apply_flagged(self, report: Report, analysis: AnalysisResult) -> None:
        reason = analysis.safety.reason if analysis.safety else ""
        report.flagged = True
        report.status = ReportStatus.FLAGGED
        report.content_safety_flag = True
        report.content_safety_reason = reason
        report.flagged_reason = reason or DEFAULT_FLAGGED_REASON
        report.needs_manual_review = True
        report.assigned_department = None
        # Blank categories break downstream filtering; use Other/0 instead
        report.final_category = MainCategory.OTHER.value
        report.ai_category = MainCategory.OTHER.value
        report.ai_category_confidence = 0.0
        report.clear_per_source_fields()
        report.ai_raw_response = analysis.debug_payload()
        report.ai_status = AIStatus.COMPLETED
        report.ai_error = ""
        report.ai_attempts += 1

    def _apply_classification(self, report: Report, analysis: AnalysisResult) -> None:
        _apply_source(report, "image", analysis.image)
        _apply_source(report, "text", analysis.text)
        _apply_source(report, "voice", analysis.voice)
        if analysis.consensus is not None:
            report.ai_category_consensus = analysis.consensus.main_category.value
            report.ai_category_consensus_confidence = analysis.consensus.confidence
        else:
            report.ai_category_consensus = ""
            report.ai_category_consensus_confidence = 0.0
        report.ai_category = analysis.best.main_category.value
        report.ai_category_confidence = analysis.best.confidence
        report.ai_raw_response = analysis.debug_payload()

        user_category = normalize_user_category(report.user_category)
        report.final_category = decide_final_category(analysis, user_category)
        if user_category is None:
            report.user_category = None

        was_safety_flagged = report.content_safety_flag
        report.ai_status = AIStatus.COMPLETED
        report.ai_error = ""
        report.ai_attempts += 1
        report.content_safety_flag = False
        report.content_safety_reason = ""
        report.needs_manual_review = False
        if was_safety_flagged:
            report.flagged = False
            report.flagged_reason = ""
        if report.status == ReportStatus.PROCESSING or was_safety_flagged:
            report.status = ReportStatus.OPEN

    def _route(self, report: Report) -> int | None:
        try:
            department = self.db.get_department_by_category(report.final_category)
        except Exception as e:
            logger.error("Department lookup failed | category=%s error=%s", report.final_category, e, exc_info=True)
            return None
        if department is None:
            logger.info("No department for category | category=%s", report.final_category)
            return None
        report.assigned_department = department.id
        self.stats.routed += 1
        return department.id

    async def process_report(self, report_id: str, force: bool = False) -> Report:
        """Classify one report and persist the outcome.

        Args:
            report_id: Report to process
            force: Reprocess even if the report is already completed

        Returns:
            The report as persisted

        Raises:
            ReportNotFoundError: No such report
            Exception: Whatever the analysis raised (report left ``failed``)
        """
        report = self.db.get_report(report_id)
        if report.ai_status == AIStatus.COMPLETED and not force:
            logger.info("Report already completed; skipping | report_id=%s", report_id)
            self.stats.skipped += 1
            return report

        report.ai_status = AIStatus.PROCESSING
        self.db.save_report(report)

        await self._transcribe(report)

        try:
            analysis = await self.engine.analyze(
                image=report.image_url,
                text=report.description,
                voice_transcript=report.voice_transcript,
            )
        except Exception as e:
            report.ai_status = AIStatus.FAILED
            report.ai_error = f"{type(e).__name__}: {e}"
            report.ai_attempts += 1
            self.db.save_report(report)
            self.stats.failed += 1
            logger.error("Analysis failed | report_id=%s attempts=%d error=%s", report_id, report.ai_attempts, e)
            raise

        if analysis.content_flagged:
            self._apply_flagged(report, analysis)
            self.db.save_report(report)
            self.stats.flagged += 1
            logger.warning("Report flagged by safety filter | report_id=%s reason=%s", report_id, report.flagged_reason)
            return report

        self._apply_classification(report, analysis)
        department_id = self._route(report)
        self.db.save_report(report)
        self.stats.processed += 1
        logger.info(
            "Report classified | report_id=%s final=%s ai=%s confidence=%.2f source=%s department=%s",
            report_id,
            report.final_category,
            report.ai_category,
            report.ai_category_confidence,
            analysis.best.source,
            department_id if department_id is not None else "-",
        )

        if department_id is not None:
            try:
                sent, _ = await self.notifier(department_id, report, self.config, self.db)
                self.stats.notified += sent
            except Exception as e:
                logger.error("Department notification failed | report_id=%s error=%s", report_id, e, exc_info=True)

        return report

    # === Job entry point ===

    async def handle_job(self, report_id: str, job_id: str = "", attempt: int = 1, force: bool = False) -> str:
        """Process the report named by a queue job inside a logging/tracing context.

        Returns:
            The report's resulting ``ai_status`` value
        """
        with job_context(job_id=job_id or report_id, report_id=report_id):
            with trace_operation("process_report", {"report_id": report_id, "attempt": attempt}) as attrs:
                report = await self.process_report(report_id, force=force)
                attrs["final_category"] = report.final_category
                attrs["flagged"] = report.flagged
        return report.ai_status.value
