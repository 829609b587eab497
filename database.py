"""Database operations for the civic report triage pipeline.

This module provides SQLite-based storage for report records, municipal
departments and the administrators who receive routed reports.

Database Schema:
    reports table:
        - id (TEXT, PK): Report id
        - doc (TEXT): Full Report record as JSON
        - ai_status (TEXT): pending/processing/completed/failed
        - final_category (TEXT): Final category ('' until classified)
        - flagged (INTEGER): 0/1 content-safety flag
        - assigned_department (INTEGER): Routed department id (NULL if none)
        - created_at / updated_at (INTEGER): Unix epoch seconds

    departments table:
        - id (INTEGER, PK)
        - name (TEXT, UNIQUE): Matches a taxonomy category name
        - description (TEXT)
        - is_active (INTEGER)

    department_admins table:
        - id (INTEGER, PK)
        - department_id (INTEGER): FK to departments
        - name, email (TEXT)
        - is_active (INTEGER)

The report row keeps the whole record in ``doc`` and mirrors the columns the
worker and CLI filter on, so new report fields never need a migration.

Features:
    - WAL mode for concurrent read/write access
    - Context manager support for auto-cleanup
"""

import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from models.report import AIStatus, Report
from models.taxonomy import MainCategory

logger = logging.getLogger(__name__)


class ReportNotFoundError(LookupError):
    """No report exists with the requested id."""

    def __init__(self, report_id: str):
        super().__init__(f"Report not found: {report_id}")
        self.report_id = report_id


@dataclass
class Department:
    """A municipal department that receives routed reports."""
    id: int
    name: str
    description: str = ""
    is_active: bool = True


@dataclass
class DepartmentAdmin:
    """An administrator notified about reports routed to their department."""
    id: int
    department_id: int
    name: str
    email: str
    is_active: bool = True


class Database:
    """SQLite database for reports and department routing data.

    Example:
        >>> with Database("civic.db") as db:
        ...     report = db.create_report(Report(description="Broken streetlight"))
        ...     db.seed_departments()
        ...     dept = db.get_department_by_category("Street Lighting & Electrical")
    """

    SCHEMA = """
    -- One row per report; doc holds the full record as JSON
    CREATE TABLE IF NOT EXISTS reports (
        id TEXT PRIMARY KEY,
        doc TEXT NOT NULL,
        ai_status TEXT NOT NULL DEFAULT 'pending',
        final_category TEXT NOT NULL DEFAULT '',
        flagged INTEGER NOT NULL DEFAULT 0,
        assigned_department INTEGER,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    );

    -- Worker poller and status queries
    CREATE INDEX IF NOT EXISTS idx_reports_ai_status ON reports(ai_status, created_at);

    -- Admin listing by category/routing
    CREATE INDEX IF NOT EXISTS idx_reports_category
        ON reports(final_category, assigned_department, flagged, created_at);

    CREATE TABLE IF NOT EXISTS departments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,       -- Taxonomy category name
        description TEXT NOT NULL DEFAULT '',
        is_active INTEGER NOT NULL DEFAULT 1
    );

    CREATE TABLE IF NOT EXISTS department_admins (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        department_id INTEGER NOT NULL REFERENCES departments(id),
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1
    );

    CREATE INDEX IF NOT EXISTS idx_admins_department ON department_admins(department_id, is_active);
    """

    path: Path
    conn: sqlite3.Connection

    def __init__(self, path: Path | str):
        """Initialize database connection.

        Creates the database file if it doesn't exist and sets up
        the schema. Uses WAL mode for better concurrent access.

        Args:
            path: Path to SQLite database file
        """
        self.path = Path(path)
        self.conn = sqlite3.connect(str(self.path))
        self.conn.row_factory = sqlite3.Row  # Enable dict-like row access

        # WAL mode allows concurrent readers during writes
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()
        logger.debug("Database initialized | path=%s", self.path)

    # === Reports ===

    def create_report(self, report: Report) -> Report:
        """Insert a new report.

        Raises:
            sqlite3.IntegrityError: A report with the same id already exists
        """
        now = int(time.time())
        self.conn.execute(
            """
            INSERT INTO reports (id, doc, ai_status, final_category, flagged,
                                 assigned_department, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                report.id,
                report.model_dump_json(),
                report.ai_status.value,
                report.final_category,
                int(report.flagged),
                report.assigned_department,
                now,
                now,
            ),
        )
        self.conn.commit()
        logger.info("Report created | report_id=%s", report.id)
        return report

    def get_report(self, report_id: str) -> Report:
        """Load a report by id.

        Raises:
            ReportNotFoundError: No such report
        """
        row = self.conn.execute("SELECT doc FROM reports WHERE id = ?", (report_id,)).fetchone()
        if row is None:
            raise ReportNotFoundError(report_id)
        return Report.model_validate_json(row["doc"])

    def save_report(self, report: Report) -> None:
        """Write the full report record back.

        Raises:
            ReportNotFoundError: No such report
        """
        report.updated_at = datetime.now(timezone.utc)
        cursor = self.conn.execute(
            """
            UPDATE reports
            SET doc = ?, ai_status = ?, final_category = ?, flagged = ?,
                assigned_department = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                report.model_dump_json(),
                report.ai_status.value,
                report.final_category,
                int(report.flagged),
                report.assigned_department,
                int(time.time()),
                report.id,
            ),
        )
        if cursor.rowcount == 0:
            raise ReportNotFoundError(report.id)
        self.conn.commit()
        logger.debug("Report saved | report_id=%s ai_status=%s", report.id, report.ai_status.value)

    def reports_needing_analysis(
        self,
        limit: int = 100,
        include_failed: bool = False,
        stale_after: int | None = None,
    ) -> list[str]:
        """Ids of reports awaiting classification, oldest first.

        Args:
            limit: Maximum ids returned
            include_failed: Also return reports whose last attempt failed
            stale_after: Also return reports left in ``processing`` for at
                least this many seconds (the worker died mid-job)
        """
        statuses = [AIStatus.PENDING.value]
        if include_failed:
            statuses.append(AIStatus.FAILED.value)
        placeholders = ",".join("?" * len(statuses))
        where = f"ai_status IN ({placeholders})"
        params: list[Any] = list(statuses)
        if stale_after is not None:
            where += " OR (ai_status = ? AND updated_at <= ?)"
            params += [AIStatus.PROCESSING.value, int(time.time()) - stale_after]
        cursor = self.conn.execute(
            f"""
            SELECT id FROM reports
            WHERE {where}
            ORDER BY created_at ASC, rowid ASC
            LIMIT ?
            """,
            (*params, limit),
        )
        return [row["id"] for row in cursor.fetchall()]

    def list_reports(
        self,
        ai_status: str | None = None,
        category: str | None = None,
        flagged: bool | None = None,
        limit: int = 50,
    ) -> list[Report]:
        """List reports, newest first, with optional filters."""
        clauses = []
        params: list[Any] = []
        if ai_status:
            clauses.append("ai_status = ?")
            params.append(ai_status)
        if category:
            clauses.append("final_category = ?")
            params.append(category)
        if flagged is not None:
            clauses.append("flagged = ?")
            params.append(int(flagged))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        cursor = self.conn.execute(
            f"SELECT doc FROM reports {where} ORDER BY created_at DESC, rowid DESC LIMIT ?",
            params,
        )
        return [Report.model_validate_json(row["doc"]) for row in cursor.fetchall()]

    def stats(self) -> dict[str, Any]:
        """Get database statistics.

        Returns:
            Dictionary with total/flagged/routed counts plus per-status and
            per-category breakdowns
        """
        row = self.conn.execute(
            """
            SELECT COUNT(*) AS total,
                   SUM(flagged) AS flagged,
                   SUM(CASE WHEN assigned_department IS NOT NULL THEN 1 ELSE 0 END) AS routed
            FROM reports
            """
        ).fetchone()
        by_status = {
            r["ai_status"]: r["n"]
            for r in self.conn.execute(
                "SELECT ai_status, COUNT(*) AS n FROM reports GROUP BY ai_status"
            ).fetchall()
        }
        by_category = {
            r["final_category"]: r["n"]
            for r in self.conn.execute(
                """
                SELECT final_category, COUNT(*) AS n FROM reports
                WHERE final_category != '' GROUP BY final_category
                """
            ).fetchall()
        }
        return {
            "total": row["total"] or 0,
            "flagged": row["flagged"] or 0,
            "routed": row["routed"] or 0,
            "by_status": by_status,
            "by_category": by_category,
        }

    # === Departments ===

    def add_department(self, name: str, description: str = "") -> Department:
        """Create a department (name should be a taxonomy category).

        Raises:
            sqlite3.IntegrityError: Name already exists
        """
        cursor = self.conn.execute(
            "INSERT INTO departments (name, description) VALUES (?, ?)",
            (name, description),
        )
        self.conn.commit()
        logger.info("Department added | name=%s id=%d", name, cursor.lastrowid)
        return Department(id=cursor.lastrowid, name=name, description=description)

    def get_department_by_category(self, category: str | None) -> Department | None:
        """Find the department whose name matches a category."""
        if not category:
            return None
        row = self.conn.execute(
            "SELECT * FROM departments WHERE name = ?", (category,)
        ).fetchone()
        return self._department(row) if row else None

    def get_department(self, department_id: int) -> Department | None:
        row = self.conn.execute(
            "SELECT * FROM departments WHERE id = ?", (department_id,)
        ).fetchone()
        return self._department(row) if row else None

    def list_departments(self) -> list[Department]:
        cursor = self.conn.execute("SELECT * FROM departments ORDER BY id")
        return [self._department(row) for row in cursor.fetchall()]

    def seed_departments(self) -> int:
        """Create one department per taxonomy category (except Other).

        Returns:
            Number of departments created
        """
        created = 0
        for category in MainCategory:
            if category == MainCategory.OTHER:
                continue
            cursor = self.conn.execute(
                "INSERT OR IGNORE INTO departments (name, description) VALUES (?, ?)",
                (category.value, f"Handles {category.value} reports"),
            )
            created += cursor.rowcount
        self.conn.commit()
        logger.info("Departments seeded | created=%d", created)
        return created

    def add_department_admin(self, department_id: int, name: str, email: str) -> DepartmentAdmin:
        """Register an administrator for a department.

        Raises:
            sqlite3.IntegrityError: Unknown department
        """
        cursor = self.conn.execute(
            "INSERT INTO department_admins (department_id, name, email) VALUES (?, ?, ?)",
            (department_id, name, email),
        )
        self.conn.commit()
        return DepartmentAdmin(id=cursor.lastrowid, department_id=department_id, name=name, email=email)

    def get_admins_by_department(self, department_id: int | None) -> list[DepartmentAdmin]:
        """Active administrators of a department."""
        if department_id is None:
            return []
        cursor = self.conn.execute(
            """
            SELECT * FROM department_admins
            WHERE department_id = ? AND is_active = 1
            ORDER BY id
            """,
            (department_id,),
        )
        return [
            DepartmentAdmin(
                id=row["id"],
                department_id=row["department_id"],
                name=row["name"],
                email=row["email"],
                is_active=bool(row["is_active"]),
            )
            for row in cursor.fetchall()
        ]

    @staticmethod
    def _department(row: sqlite3.Row) -> Department:
        return Department(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            is_active=bool(row["is_active"]),
        )

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self) -> "Database":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
