# ============================================================================
# SERVIX CMMS - Reporting Models & Record Store
# ============================================================================
# Read-side schema for equipment / users / tasks, the record dataclasses the
# aggregation engine consumes, the request / artifact value types, and the
# SQLite-backed record store.
# ============================================================================

import enum
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

logger = logging.getLogger("reporting.store")

DB_PATH = Path("servix.db")


# ============================================================================
# Database Schema  (additive: CREATE IF NOT EXISTS only)
# ============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS equipment (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    serial_number TEXT UNIQUE,
    department TEXT,
    category TEXT,
    status TEXT DEFAULT 'Serviceable',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT UNIQUE,
    role TEXT DEFAULT 'Technician',
    department TEXT
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT DEFAULT 'Pending',
    task_type TEXT,
    priority TEXT DEFAULT 'Medium',
    equipment_id INTEGER REFERENCES equipment(id),
    assigned_to INTEGER REFERENCES users(id),
    due_date TIMESTAMP,
    -- local wall-clock time in the configured timezone, written by the caller
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS task_spare_parts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id INTEGER REFERENCES tasks(id) ON DELETE CASCADE,
    name TEXT,
    quantity INTEGER
);

CREATE TABLE IF NOT EXISTS ReportingConfig (
    id INTEGER PRIMARY KEY,
    key TEXT UNIQUE NOT NULL,
    value TEXT,
    value_type TEXT DEFAULT 'string',
    category TEXT DEFAULT 'general',
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_by TEXT
);

CREATE TABLE IF NOT EXISTS ReportAuditLog (
    id INTEGER PRIMARY KEY,
    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    action TEXT NOT NULL,
    category TEXT DEFAULT 'general',
    user_name TEXT,
    old_value TEXT,
    new_value TEXT,
    details TEXT
);

CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_spare_parts_task ON task_spare_parts(task_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_timestamp ON ReportAuditLog(timestamp);
"""


def init_database():
    """Initialize the reporting database tables."""
    conn = sqlite3.connect(str(DB_PATH))
    conn.executescript(SCHEMA_SQL)
    conn.commit()
    conn.close()


def get_db():
    """Get database connection with row factory."""
    conn = sqlite3.connect(str(DB_PATH))
    conn.row_factory = sqlite3.Row
    return conn


def ensure_output_dir(path: Path) -> Path:
    """Create (if needed) and return the report output directory."""
    path.mkdir(parents=True, exist_ok=True)
    return path


_TS_FORMATS = [
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
]


def parse_ts(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into a naive datetime, or None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    text = str(value).strip()
    for fmt in _TS_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


# ============================================================================
# Record dataclasses (read side)
# ============================================================================

TASK_STATUSES = ("Pending", "In Progress", "Completed", "Cancelled")
OPERATIONAL_ROLES = ("Technician", "Engineer")


@dataclass(frozen=True)
class EquipmentRecord:
    id: int
    name: str = ""
    department: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class UserRecord:
    id: int
    name: str = ""
    role: Optional[str] = None


@dataclass(frozen=True)
class SparePartLine:
    name: Optional[str]
    quantity: Optional[int] = None


@dataclass(frozen=True)
class TaskRecord:
    id: int
    title: str = ""
    status: Optional[str] = None
    task_type: Optional[str] = None
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    equipment: Optional[EquipmentRecord] = None
    assignee: Optional[UserRecord] = None
    spare_parts: Tuple[SparePartLine, ...] = ()


# ============================================================================
# Request / artifact value types
# ============================================================================

class ReportSection(enum.Enum):
    """The closed set of report sections a caller may request."""

    TASK_MANAGEMENT = "taskManagement"
    STAFF_PERFORMANCE = "staffPerformance"
    INVENTORY_SPARE_PARTS = "inventorySpareParts"
    DOWNTIME_ANALYSIS = "downtimeAnalysis"
    COMPLIANCE_AUDIT = "complianceAudit"


class OutputFormat(enum.Enum):
    PRINT = "pdf"
    WORKBOOK = "xlsx"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def mime_type(self) -> str:
        return MIME_TYPES[self]


MIME_TYPES = {
    OutputFormat.PRINT: "application/pdf",
    OutputFormat.WORKBOOK: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


@dataclass(frozen=True)
class Filter:
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    date_to_is_day: bool = False
    departments: FrozenSet[str] = frozenset()
    categories: FrozenSet[str] = frozenset()
    staff: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dateFrom": self.date_from.strftime("%Y-%m-%d") if self.date_from else None,
            "dateTo": self.date_to.strftime("%Y-%m-%d") if self.date_to else None,
            "departments": sorted(self.departments),
            "categories": sorted(self.categories),
            "staff": self.staff,
        }


@dataclass(frozen=True)
class Visuals:
    charts: bool = False
    summary: bool = True


@dataclass(frozen=True)
class ReportRequest:
    sections: Tuple[ReportSection, ...]
    filters: Filter = field(default_factory=Filter)
    format: OutputFormat = OutputFormat.PRINT
    requested_by: str = "System"
    visuals: Visuals = field(default_factory=Visuals)


@dataclass(frozen=True)
class ChartImage:
    kind: str
    data: Optional[bytes]
    width: int
    height: int

    @property
    def available(self) -> bool:
        return bool(self.data)


@dataclass(frozen=True)
class ReportArtifact:
    filename: str
    absolute_path: Path
    mime_type: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "filename": self.filename,
            "absolutePath": str(self.absolute_path),
            "mimeType": self.mime_type,
        }


# ============================================================================
# Record store
# ============================================================================

_TASK_SELECT = """
SELECT t.id, t.title, t.status, t.task_type, t.due_date, t.created_at,
       t.equipment_id, t.assigned_to,
       e.id AS eq_id, e.name AS eq_name, e.department AS eq_department,
       e.category AS eq_category,
       u.id AS u_id, u.name AS u_name, u.role AS u_role
FROM tasks t
LEFT JOIN equipment e ON e.id = t.equipment_id
LEFT JOIN users u ON u.id = t.assigned_to
"""

# SQLite caps bound parameters per statement
_IN_CHUNK = 500


class TaskRecordStore:
    """Read-only access to task records with their joins resolved.

    ``fetch_tasks`` is the only query the report engine issues.  The
    predicate narrows the query in SQL to a superset of the matching rows
    and is then re-applied to each row for the exact result.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path or DB_PATH))
        conn.row_factory = sqlite3.Row
        return conn

    def fetch_tasks(self, predicate) -> List[TaskRecord]:
        where, params = predicate.to_sql()
        conn = self._connect()
        try:
            rows = conn.execute(
                f"{_TASK_SELECT} WHERE {where} ORDER BY t.id", params
            ).fetchall()
            parts = self._fetch_spare_parts(conn, [r["id"] for r in rows])
        finally:
            conn.close()

        tasks = [_task_from_row(r, parts.get(r["id"], ())) for r in rows]
        matched = [t for t in tasks if predicate.matches(t)]
        logger.debug("fetch_tasks: %d rows, %d matched", len(rows), len(matched))
        return matched

    @staticmethod
    def _fetch_spare_parts(conn, task_ids: List[int]) -> Dict[int, Tuple[SparePartLine, ...]]:
        found: Dict[int, List[SparePartLine]] = {}
        for i in range(0, len(task_ids), _IN_CHUNK):
            chunk = task_ids[i:i + _IN_CHUNK]
            marks = ",".join("?" for _ in chunk)
            rows = conn.execute(
                f"SELECT task_id, name, quantity FROM task_spare_parts "
                f"WHERE task_id IN ({marks}) ORDER BY id",
                chunk,
            ).fetchall()
            for r in rows:
                found.setdefault(r["task_id"], []).append(
                    SparePartLine(name=r["name"], quantity=r["quantity"])
                )
        return {k: tuple(v) for k, v in found.items()}


def _task_from_row(row, spare_parts) -> TaskRecord:
    equipment = None
    if row["eq_id"] is not None:
        equipment = EquipmentRecord(
            id=row["eq_id"],
            name=row["eq_name"] or "",
            department=row["eq_department"],
            category=row["eq_category"],
        )
    assignee = None
    if row["u_id"] is not None:
        assignee = UserRecord(id=row["u_id"], name=row["u_name"] or "", role=row["u_role"])
    return TaskRecord(
        id=row["id"],
        title=row["title"] or "",
        status=row["status"],
        task_type=row["task_type"],
        due_date=parse_ts(row["due_date"]),
        created_at=parse_ts(row["created_at"]),
        equipment=equipment,
        assignee=assignee,
        spare_parts=spare_parts,
    )


# ============================================================================
# Audit log
# ============================================================================

class AuditRepository:
    @staticmethod
    def log(action, category="general", user_name=None,
            old_value=None, new_value=None, details=None):
        conn = get_db()
        conn.execute(
            """INSERT INTO ReportAuditLog
               (action, category, user_name, old_value, new_value, details)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (action, category, user_name, old_value, new_value, details))
        conn.commit()
        conn.close()

    @staticmethod
    def get_recent(limit=100, category=None):
        conn = get_db()
        if category:
            rows = conn.execute(
                "SELECT * FROM ReportAuditLog WHERE category = ? ORDER BY id DESC LIMIT ?",
                (category, limit)).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM ReportAuditLog ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        conn.close()
        return [dict(r) for r in rows]
