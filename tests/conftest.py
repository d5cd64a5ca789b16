"""
SERVIX CMMS — Test Infrastructure (conftest.py)
================================================
Provides:
  - Per-test SQLite database with deterministic seed data
  - Report output directory under the pytest tmp_path
  - FastAPI TestClient over main.app
  - DB assertion helpers
"""

import os
import sys
import sqlite3
import datetime

import pytest

# Ensure project root is on path
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT_DIR)

from app.reporting import models
from app.reporting.config import ReportingConfig
from app.reporting.engine import reset_engine

# Reference "now" for every aggregation that depends on the clock.
NOW = datetime.datetime(2026, 1, 10, 12, 0, 0)


# ============================================================================
# Seed data
# ============================================================================

# (id, name, department, category)
EQUIPMENT = [
    (1, "Infusion Pump A", "ICU", "Infusion"),
    (2, "Ventilator V2", "ICU", "Respiratory"),
    (3, "X-Ray Unit", "Radiology", "Imaging"),
    (4, "Defibrillator D1", "Emergency", "Cardiac"),
]

# (id, name, role)
USERS = [
    (1, "Ama Mensah", "Technician"),
    (2, "Kofi Boateng", "Engineer"),
    (3, "Esi Owusu", "Technician"),
    (4, "Admin User", "Admin"),
]

# (id, title, status, task_type, equipment_id, assigned_to, due_date, created_at)
TASKS = [
    (1, "Replace pump battery", "Completed", "Preventive", 1, 1,
     "2026-01-10 09:00:00", "2026-01-05 08:00:00"),
    (2, "Ventilator calibration", "In Progress", "Calibration", 2, 2,
     "2026-01-08 12:00:00", "2026-01-06 09:30:00"),
    (3, "X-Ray tube inspection", "Pending", "Inspection", 3, 1,
     "2026-01-04 17:00:00", "2026-01-03 10:00:00"),
    (4, "Defib self-test", "Completed", "Preventive", 4, 3,
     "2026-01-12 08:00:00", "2026-01-07 14:15:00"),
    (5, "Pump occlusion alarm", "Cancelled", "Corrective", 1, 4,
     "2026-01-09 08:00:00", "2026-01-08 11:00:00"),
    (6, "Unassigned check", "Pending", None, None, None,
     None, "2026-01-09 16:45:00"),
    (7, "Ventilator filter swap", "Completed", "Corrective", 2, 2,
     "2026-01-11 10:00:00", "2026-01-05 13:20:00"),
]

# (task_id, name, quantity)
SPARE_PARTS = [
    (1, "Battery Pack", 2),
    (1, "Filter X", 2),
    (7, "Filter X", 5),
    (4, "Electrode Pads", None),
    (2, "O-Ring", 3),
]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reporting_db(tmp_path, monkeypatch):
    """Point the reporting package at a fresh database and output dir."""
    db_path = tmp_path / "servix_test.db"
    monkeypatch.setattr(models, "DB_PATH", db_path)
    models.init_database()

    ReportingConfig.reset_cache()
    ReportingConfig.set("output_dir", str(tmp_path / "downloads"), user="pytest")
    reset_engine()

    yield db_path

    ReportingConfig.reset_cache()
    reset_engine()


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "downloads"


@pytest.fixture
def seeded_db(reporting_db):
    """Seed the test database with deterministic data."""
    conn = sqlite3.connect(str(reporting_db))
    c = conn.cursor()

    c.executemany(
        "INSERT INTO equipment (id, name, department, category) VALUES (?, ?, ?, ?)",
        EQUIPMENT,
    )
    c.executemany("INSERT INTO users (id, name, role) VALUES (?, ?, ?)", USERS)
    c.executemany(
        """INSERT INTO tasks
           (id, title, status, task_type, equipment_id, assigned_to, due_date, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        TASKS,
    )
    c.executemany(
        "INSERT INTO task_spare_parts (task_id, name, quantity) VALUES (?, ?, ?)",
        SPARE_PARTS,
    )
    conn.commit()
    conn.close()
    return reporting_db


@pytest.fixture
def client(seeded_db):
    """FastAPI TestClient; entering the context runs the startup hooks."""
    from starlette.testclient import TestClient
    import main

    with TestClient(main.app, raise_server_exceptions=False) as c:
        yield c


# ============================================================================
# Test doubles
# ============================================================================

class SpyStore:
    """Record store stand-in that counts queries and returns fixed records."""

    def __init__(self, records=()):
        self.records = list(records)
        self.calls = 0

    def fetch_tasks(self, predicate):
        self.calls += 1
        return [r for r in self.records if predicate.matches(r)]


class FailingStore:
    def fetch_tasks(self, predicate):
        raise sqlite3.OperationalError("database is locked")


# ============================================================================
# DB helpers
# ============================================================================

def get_test_db():
    """Direct connection to the test database for assertions."""
    conn = sqlite3.connect(str(models.DB_PATH), timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def db_query(sql, params=()):
    """Run a query against the test DB and return list of dicts."""
    conn = get_test_db()
    rows = conn.execute(sql, params).fetchall()
    result = [dict(r) for r in rows]
    conn.close()
    return result


def db_count(table, where="1=1", params=()):
    """Count rows in a table."""
    conn = get_test_db()
    row = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table} WHERE {where}", params).fetchone()
    conn.close()
    return row["cnt"]
