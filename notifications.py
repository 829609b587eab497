"""Department notifications for routed reports.

When the worker routes a report to a department, every active administrator
of that department is notified:
- Webhook POST notifications
- JSONL alerts file

All notification methods are async and fail gracefully (errors are logged
but don't affect other notifications or the classification already saved).

Output Formats:
    Webhook: JSON payload for integration with email/push systems
    JSONL: One JSON object per line for log aggregation
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import aiohttp

from config import Config
from database import Database, Department, DepartmentAdmin
from models.report import Report

logger = logging.getLogger(__name__)


def build_alert(report: Report, admin: DepartmentAdmin, department: Department | None) -> dict:
    """Build the alert payload for one administrator.

    The payload never includes the raw model response.
    """
    return {
        "type": "report_assigned",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "report_id": report.id,
        "final_category": report.final_category,
        "confidence": report.ai_category_confidence,
        "description": report.description[:500],
        "address": report.address,
        "department_id": admin.department_id,
        "department": department.name if department else "",
        "admin_id": admin.id,
        "admin_name": admin.name,
        "admin_email": admin.email,
    }


async def send_webhook(alert: dict, url: str) -> bool:
    """Send notification via webhook POST."""
    if not url:
        return True

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url, json=alert, timeout=aiohttp.ClientTimeout(total=10)
            ) as resp:
                if resp.status < 300:
                    logger.debug("Webhook sent | report_id=%s admin_id=%s", alert["report_id"], alert["admin_id"])
                    return True
                logger.warning("Webhook failed | status=%d report_id=%s", resp.status, alert["report_id"])
                return False
    except asyncio.TimeoutError:
        logger.warning("Webhook timeout | url=%s report_id=%s", url[:50], alert["report_id"])
        return False
    except Exception as e:
        logger.error("Webhook error: %s (%s)", e, type(e).__name__, exc_info=True)
        return False


async def append_alerts_file(alert: dict, filepath: str) -> bool:
    """Append alert to JSONL file."""
    if not filepath:
        return True

    try:
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)

        # Warn if file is getting large (> 100MB)
        if path.exists():
            size_mb = path.stat().st_size / (1024 * 1024)
            if size_mb > 100:
                logger.warning("Alerts file large | size=%.1fMB path=%s", size_mb, filepath)

        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(alert, ensure_ascii=False) + "\n")
        return True
    except Exception as e:
        logger.error("Alerts file error: %s (%s)", e, type(e).__name__, exc_info=True)
        return False


async def notify_admin(alert: dict, config: Config) -> bool:
    """Deliver one alert through every configured channel."""
    logger.info(
        "Notifying admin | admin=%s email=%s report_id=%s category=%s",
        alert["admin_name"],
        alert["admin_email"],
        alert["report_id"],
        alert["final_category"],
    )
    webhook_ok = await send_webhook(alert, config.webhook_url)
    alerts_ok = await append_alerts_file(alert, config.alerts_file)
    return webhook_ok and alerts_ok


async def notify_department_admins(
    department_id: int,
    report: Report,
    config: Config,
    db: Database,
) -> tuple[int, int]:
    """Notify all active administrators of a department about a report.

    Never raises; lookup errors count as a single failure.

    Returns:
        (sent, failed) counts
    """
    try:
        admins = db.get_admins_by_department(department_id)
        department = db.get_department(department_id)
    except Exception as e:
        logger.error("Admin lookup failed | department_id=%s error=%s", department_id, e, exc_info=True)
        return 0, 1

    if not admins:
        logger.info("No active admins to notify | department_id=%s", department_id)
        return 0, 0

    tasks = [notify_admin(build_alert(report, admin, department), config) for admin in admins]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    sent = sum(1 for r in results if r is True)
    failed = len(results) - sent
    for r in results:
        if isinstance(r, Exception):
            logger.error("Admin notification error: %s", r, exc_info=r)

    logger.info(
        "Department notified | department_id=%s report_id=%s sent=%d failed=%d",
        department_id,
        report.id,
        sent,
        failed,
    )
    return sent, failed
