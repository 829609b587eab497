#!/usr/bin/env python3
"""civic-triage: multi-modal classification worker for citizen issue reports.

This CLI tool stores citizen reports, classifies them from their photo,
description and voice note, and routes them to the matching municipal
department.

Commands:
    submit        Store a new report (optionally process it immediately)
    process       Classify one report, or every pending report, in-process
    enqueue       Queue classification jobs on the Celery broker
    worker        Run the Celery worker (with beat rescanning pending reports)
    classify      Classify ad-hoc inputs without storing anything
    show          Display one report
    list          List reports with optional filters
    status        Show configuration and database statistics
    departments   Seed, list and add departments and their admins

Examples:
    python main.py departments seed
    python main.py submit --description "Large pothole near the school" --process
    python main.py process --pending
    python main.py enqueue --pending
    python main.py worker --concurrency 4
    python main.py classify --text "Streetlight flickering all night"
    python main.py show 3f2a... --raw

Environment:
    GEMINI_API_KEY: Required for remote classification (or USE_AI=false)
    See config.py for all configuration options
"""

import argparse
import asyncio
import json
import logging
import sys

from config import Config
from database import Database, ReportNotFoundError
from models.report import AIStatus, Photo, Report, VoiceAttachment
from observability.logging import setup_logging
from observability.tracing import setup_tracing

logger = logging.getLogger(__name__)


def _build_worker(config: Config, db: Database):
    """Create a ReportWorker with tracing configured."""
    from worker import ReportWorker

    setup_tracing(enabled=config.enable_logfire, token=config.logfire_token)
    return ReportWorker.from_config(config, db)


def _print_report(report: Report, raw: bool = False) -> None:
    print(f"\n=== Report {report.id} ===")
    print(f"Status: {report.status.value} (ai: {report.ai_status.value}, attempts: {report.ai_attempts})")
    if report.description:
        description = report.description
        if len(description) > 200:
            description = description[:200] + "..."
        print(f"Description: {description}")
    if report.address:
        print(f"Address: {report.address}")
    if report.image_url:
        print(f"Photo: {report.image_url}")
    if report.voice_url:
        print(f"Voice: {report.voice_url}")
    if report.voice_transcript:
        print(f"Transcript: {report.voice_transcript}")
    print(f"User category: {report.user_category or '-'}")
    print(f"Final category: {report.final_category or '-'}")
    print(f"AI category: {report.ai_category or '-'} ({report.ai_category_confidence:.2f})")
    for source in ("image", "text", "voice", "consensus"):
        category = getattr(report, f"ai_category_{source}")
        if category:
            confidence = getattr(report, f"ai_category_{source}_confidence")
            print(f"  {source}: {category} ({confidence:.2f})")
    if report.assigned_department is not None:
        print(f"Department: {report.assigned_department}")
    if report.flagged:
        print(f"⚠️  Flagged: {report.flagged_reason}")
    if report.ai_error:
        print(f"Error: {report.ai_error}")
    if raw:
        print("\n--- Raw analysis ---")
        print(json.dumps(report.ai_raw_response, indent=2))


def cmd_submit(args: argparse.Namespace, config: Config) -> int:
    """Store a new report.

    Args:
        args: Parsed command line arguments
        config: Application configuration

    Returns:
        Exit code (0 for success)
    """
    if not (args.description or args.photo or args.voice):
        print("Error: --description, --photo or --voice is required", file=sys.stderr)
        return 1

    report = Report(
        user_id=args.user_id or "",
        user_category=args.user_category,
        photos=[Photo(url=args.photo)] if args.photo else [],
        voice=VoiceAttachment(url=args.voice or "", transcript=args.transcript or "")
        if (args.voice or args.transcript)
        else None,
        description=args.description or "",
        address=args.address or "",
    )

    with Database(config.db_path) as db:
        db.create_report(report)
        print(report.id)
        if args.enqueue:
            from jobs import configure_celery, enqueue_report, reset_worker

            configure_celery(config)
            try:
                enqueue_report(report.id)
            finally:
                reset_worker()
            return 0
        if not args.process:
            return 0

        if error := config.validate():
            print(f"Configuration error: {error}", file=sys.stderr)
            return 1
        worker = _build_worker(config, db)
        try:
            report = asyncio.run(worker.process_report(report.id))
        except Exception as e:
            print(f"Error: Analysis failed: {type(e).__name__}: {e}", file=sys.stderr)
            return 1

    _print_report(report)
    return 0


def cmd_process(args: argparse.Namespace, config: Config) -> int:
    """Classify one report, or every pending report, in this process.

    Args:
        args: Parsed command line arguments
        config: Application configuration

    Returns:
        Exit code (0 for success)
    """
    if not args.report_id and not args.pending:
        print("Error: REPORT_ID or --pending is required", file=sys.stderr)
        return 1

    with Database(config.db_path) as db:
        worker = _build_worker(config, db)

        if args.report_id:
            try:
                report = asyncio.run(worker.process_report(args.report_id, force=args.force))
            except ReportNotFoundError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1
            except Exception as e:
                logger.error("Processing failed | report_id=%s error=%s", args.report_id, e)
                print(f"Error: Analysis failed: {type(e).__name__}: {e}", file=sys.stderr)
                return 1
            _print_report(report)
            return 0 if report.ai_status == AIStatus.COMPLETED else 1

        report_ids = db.reports_needing_analysis(
            limit=args.limit,
            include_failed=args.failed,
            stale_after=config.stale_processing_seconds,
        )
        errors: dict[str, str] = {}

        async def process_all() -> None:
            for report_id in report_ids:
                try:
                    await worker.handle_job(report_id)
                except Exception as e:
                    errors[report_id] = f"{type(e).__name__}: {e}"

        try:
            asyncio.run(process_all())
        except KeyboardInterrupt:
            logger.info("Stopped by user (Ctrl+C)")
            return 130

    result = {"reports": len(report_ids), "errors": errors, "worker": worker.stats.to_dict()}
    print(json.dumps(result, indent=2))
    return 0 if not errors else 1


def cmd_enqueue(args: argparse.Namespace, config: Config) -> int:
    """Put classification jobs on the Celery queue.

    Args:
        args: Parsed command line arguments
        config: Application configuration

    Returns:
        Exit code (0 for success)
    """
    from jobs import configure_celery, enqueue_pending, enqueue_report, job_state, reset_worker

    if not args.report_id and not (args.pending or args.failed):
        print("Error: REPORT_ID, --pending or --failed is required", file=sys.stderr)
        return 1

    configure_celery(config)
    try:
        with Database(config.db_path) as db:
            if args.report_id:
                try:
                    db.get_report(args.report_id)
                except ReportNotFoundError as e:
                    print(f"Error: {e}", file=sys.stderr)
                    return 1
                report_ids = [args.report_id]
                enqueue_report(args.report_id, priority=args.priority, force=args.force)
            else:
                report_ids = enqueue_pending(db, config, limit=args.limit, include_failed=args.failed)
        jobs = {report_id: job_state(report_id) for report_id in report_ids}
    finally:
        # Eager mode ran the jobs here; release their database connection
        reset_worker()

    print(json.dumps({"queued": len(report_ids), "jobs": jobs}, indent=2))
    return 0


def cmd_worker(args: argparse.Namespace, config: Config) -> int:
    """Run the Celery worker until interrupted.

    Args:
        args: Parsed command line arguments
        config: Application configuration

    Returns:
        Exit code (0 for success)
    """
    from jobs import run_worker

    if args.concurrency:
        config.worker_concurrency = args.concurrency
    if args.interval:
        config.poll_interval_seconds = args.interval

    try:
        run_worker(config, beat=not args.no_beat)
    except KeyboardInterrupt:
        logger.info("Stopped by user (Ctrl+C)")
    return 0


def cmd_classify(args: argparse.Namespace, config: Config) -> int:
    """Classify ad-hoc inputs and print the analysis.

    Args:
        args: Parsed command line arguments
        config: Application configuration

    Returns:
        Exit code (0 for success)
    """
    from analysis.decision import decide_final_category, normalize_user_category
    from worker import build_engine

    if not (args.text or args.image or args.voice_text):
        print("Error: --text, --image or --voice-text is required", file=sys.stderr)
        return 1

    setup_tracing(enabled=config.enable_logfire, token=config.logfire_token)
    engine = build_engine(config)

    async def classify():
        return await engine.analyze(
            image=args.image,
            text=args.text,
            voice_transcript=args.voice_text,
        )

    analysis = asyncio.run(classify())
    final = decide_final_category(analysis, normalize_user_category(args.user_category))

    if args.json:
        payload = analysis.debug_payload()
        payload["final_category"] = final
        print(json.dumps(payload, indent=2))
        return 0

    print("\n=== Classification ===")
    for source in ("image", "text", "voice"):
        result = getattr(analysis, source)
        if result is not None:
            print(f"{source}: {result}")
    if analysis.consensus:
        print(
            f"consensus: {analysis.consensus.main_category.value} "
            f"({analysis.consensus.confidence:.2f}, {analysis.consensus.votes} votes)"
        )
    print(f"Best: {analysis.best.main_category.value} ({analysis.best.confidence:.2f}, {analysis.best.source})")
    if analysis.content_flagged:
        reason = analysis.safety.reason if analysis.safety else ""
        print(f"⚠️  Image flagged: {reason}")
    print(f"Final category: {final}")
    return 0


def cmd_show(args: argparse.Namespace, config: Config) -> int:
    """Display one report."""
    with Database(config.db_path) as db:
        try:
            report = db.get_report(args.report_id)
        except ReportNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    _print_report(report, raw=args.raw)
    return 0


def cmd_list(args: argparse.Namespace, config: Config) -> int:
    """List reports, newest first."""
    flagged = True if args.flagged else None
    with Database(config.db_path) as db:
        reports = db.list_reports(
            ai_status=args.ai_status,
            category=args.category,
            flagged=flagged,
            limit=args.limit,
        )

    if not reports:
        print("No reports found.")
        return 0

    for report in reports:
        marker = "⚠️ " if report.flagged else "  "
        category = report.final_category or "-"
        description = report.description[:60] + ("..." if len(report.description) > 60 else "")
        print(f"{marker}{report.id}  {report.ai_status.value:<10}  {category:<30}  {description}")
    return 0


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    """Display configuration and database statistics.

    Args:
        args: Parsed command line arguments
        config: Application configuration

    Returns:
        Exit code (0 for success)
    """
    from kombu.utils.url import maybe_sanitize_url

    with Database(config.db_path) as db:
        db_stats = db.stats()
        departments = len(db.list_departments())

    status = {
        "config": {
            "use_ai": config.use_ai,
            "ai_models": config.ai_models,
            "ai_timeout_seconds": config.ai_timeout_seconds,
            "weights": {
                "image": config.image_weight,
                "text": config.text_weight,
                "voice": config.voice_weight,
            },
            "consensus_boost": config.consensus_boost,
            "image_min_confidence": config.image_min_confidence,
            "safety_min_confidence": config.safety_min_confidence,
            "transcription_model": config.transcription_model or None,
            "worker_concurrency": config.worker_concurrency,
            "job_attempts": config.job_attempts,
            "job_backoff_seconds": config.job_backoff_seconds,
            "poll_interval": config.poll_interval_seconds,
            "stale_processing_seconds": config.stale_processing_seconds,
            "broker_url": maybe_sanitize_url(config.broker_url),
            "jobs_eager": config.jobs_eager,
            "enable_logfire": config.enable_logfire,
        },
        "database": {
            "path": str(config.db_path),
            "departments": departments,
            **db_stats,
        },
    }

    print(json.dumps(status, indent=2))
    return 0


def cmd_departments(args: argparse.Namespace, config: Config) -> int:
    """Manage departments and department admins."""
    with Database(config.db_path) as db:
        if args.action == "seed":
            created = db.seed_departments()
            print(f"Departments created: {created}")
        elif args.action == "add":
            department = db.add_department(args.name, args.description or "")
            print(f"Department added: {department.id} {department.name}")
        elif args.action == "add-admin":
            if db.get_department(args.department_id) is None:
                print(f"Error: Unknown department {args.department_id}", file=sys.stderr)
                return 1
            admin = db.add_department_admin(args.department_id, args.name, args.email)
            print(f"Admin added: {admin.id} {admin.name} <{admin.email}>")
        else:
            departments = db.list_departments()
            if not departments:
                print("No departments. Run 'departments seed' first.")
                return 0
            for department in departments:
                admins = db.get_admins_by_department(department.id)
                state = "" if department.is_active else " (inactive)"
                print(f"{department.id:>3}  {department.name}{state}  admins={len(admins)}")
    return 0


def main() -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    parser = argparse.ArgumentParser(
        description="civic-triage: classify and route citizen issue reports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # submit command
    submit_parser = subparsers.add_parser("submit", help="Store a new report")
    submit_parser.add_argument("--description", help="Report description")
    submit_parser.add_argument("--photo", help="Photo URL or local path")
    submit_parser.add_argument("--voice", help="Voice note URL or local path")
    submit_parser.add_argument("--transcript", help="Voice note transcript, if already known")
    submit_parser.add_argument("--address", help="Street address")
    submit_parser.add_argument("--user-category", help="Category chosen by the citizen")
    submit_parser.add_argument("--user-id", help="Submitting user id")
    submit_parser.add_argument(
        "--process",
        action="store_true",
        help="Classify immediately instead of waiting for the worker",
    )
    submit_parser.add_argument(
        "--enqueue",
        action="store_true",
        help="Queue a classification job on the broker",
    )

    # process command
    process_parser = subparsers.add_parser("process", help="Classify reports now")
    process_parser.add_argument("report_id", nargs="?", help="Report to classify")
    process_parser.add_argument(
        "--pending",
        action="store_true",
        help="Classify every pending report (and stale processing ones)",
    )
    process_parser.add_argument(
        "--failed",
        action="store_true",
        help="With --pending, also retry reports whose last attempt failed",
    )
    process_parser.add_argument(
        "--force",
        action="store_true",
        help="Reclassify even if the report is already completed",
    )
    process_parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Max pending reports to process (default: 100)",
    )

    # enqueue command
    enqueue_parser = subparsers.add_parser("enqueue", help="Queue classification jobs")
    enqueue_parser.add_argument("report_id", nargs="?", help="Report to queue")
    enqueue_parser.add_argument(
        "--pending",
        action="store_true",
        help="Queue every pending report (and stale processing ones)",
    )
    enqueue_parser.add_argument(
        "--failed",
        action="store_true",
        help="Also queue reports whose jobs exhausted their retries",
    )
    enqueue_parser.add_argument(
        "--priority",
        type=int,
        help="Broker priority for REPORT_ID (lower runs first)",
    )
    enqueue_parser.add_argument(
        "--force",
        action="store_true",
        help="Reclassify REPORT_ID even if already completed",
    )
    enqueue_parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Max reports to queue (default: 100)",
    )

    # worker command
    worker_parser = subparsers.add_parser("worker", help="Run the Celery worker")
    worker_parser.add_argument(
        "--concurrency",
        type=int,
        help="Concurrent jobs (default: config WORKER_CONCURRENCY)",
    )
    worker_parser.add_argument(
        "--interval",
        type=int,
        help="Pending report poll interval in seconds",
    )
    worker_parser.add_argument(
        "--no-beat",
        action="store_true",
        help="Do not run the embedded beat scheduler",
    )

    # classify command
    classify_parser = subparsers.add_parser("classify", help="Classify ad-hoc inputs")
    classify_parser.add_argument("--text", help="Description text")
    classify_parser.add_argument("--image", help="Image URL or local path")
    classify_parser.add_argument("--voice-text", help="Voice transcript text")
    classify_parser.add_argument("--user-category", help="Citizen-chosen category")
    classify_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full analysis as JSON",
    )

    # show command
    show_parser = subparsers.add_parser("show", help="Display one report")
    show_parser.add_argument("report_id", help="Report id")
    show_parser.add_argument(
        "--raw",
        action="store_true",
        help="Include the raw analysis payload",
    )

    # list command
    list_parser = subparsers.add_parser("list", help="List reports")
    list_parser.add_argument(
        "--ai-status",
        choices=[s.value for s in AIStatus],
        help="Filter by AI status",
    )
    list_parser.add_argument("--category", help="Filter by final category")
    list_parser.add_argument(
        "--flagged",
        action="store_true",
        help="Only reports flagged by the safety filter",
    )
    list_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Max reports to show (default: 50)",
    )

    # status command
    subparsers.add_parser("status", help="Show configuration and statistics")

    # departments command
    dept_parser = subparsers.add_parser("departments", help="Manage departments")
    dept_sub = dept_parser.add_subparsers(dest="action")
    dept_sub.add_parser("list", help="List departments")
    dept_sub.add_parser("seed", help="Create one department per category")
    add_parser = dept_sub.add_parser("add", help="Add a department")
    add_parser.add_argument("name", help="Department name (a category name)")
    add_parser.add_argument("--description", help="Department description")
    admin_parser = dept_sub.add_parser("add-admin", help="Add a department admin")
    admin_parser.add_argument("department_id", type=int, help="Department id")
    admin_parser.add_argument("name", help="Admin name")
    admin_parser.add_argument("email", help="Admin email")

    args = parser.parse_args()

    # Load configuration
    try:
        config = Config.load()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    # Setup logging
    setup_logging(config, verbose=args.verbose)

    # Validate configuration for commands that call the model
    needs_model = args.command in ("process", "worker", "classify")
    if args.command == "enqueue" and config.jobs_eager:
        needs_model = True
    if needs_model:
        error = config.validate()
        if error:
            print(f"Configuration error: {error}", file=sys.stderr)
            return 1

    # Route to command handler
    commands = {
        "submit": cmd_submit,
        "process": cmd_process,
        "enqueue": cmd_enqueue,
        "worker": cmd_worker,
        "classify": cmd_classify,
        "show": cmd_show,
        "list": cmd_list,
        "status": cmd_status,
        "departments": cmd_departments,
    }

    if args.command in commands:
        try:
            return commands[args.command](args, config)
        except Exception as e:
            logger.error("Command failed | cmd=%s error=%s", args.command, e, exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            return 1
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
