# ============================================================================
# SERVIX CMMS - Report Aggregation Engine
# ============================================================================
# Each aggregate is a pure function of (records, now).  The Aggregator
# fetches the filtered task records once and runs only the aggregates the
# requested sections need.
#
#   totals             - counts per status bucket and per task type
#   overdue            - 10 earliest-due tasks that are past due, not completed
#   staff_performance  - per-assignee status counts (Technician / Engineer)
#   spare_parts        - top 20 parts by summed quantity
#   department_load    - task count per equipment department
#   trend              - completed tasks per creation day
#   compliance         - static placeholder (no compliance data model exists)
# ============================================================================

import enum
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import ReportAggregationError
from .filters import normalize_filter
from .models import OPERATIONAL_ROLES, Filter, TaskRecord

logger = logging.getLogger("reporting.aggregation")

UNKNOWN_TYPE = "N/A"
UNRESOLVED = "—"

OVERDUE_LIMIT = 10
SPARE_PARTS_LIMIT = 20

_STATUS_FIELDS = {
    "Pending": "pending",
    "In Progress": "in_progress",
    "Completed": "completed",
    "Cancelled": "cancelled",
}


# ============================================================================
# Dataset shapes
# ============================================================================

@dataclass(frozen=True)
class StatusTotals:
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.in_progress + self.completed + self.cancelled

    def items(self) -> List[Tuple[str, int]]:
        """(display label, count) pairs in canonical status order."""
        return [
            ("Pending", self.pending),
            ("In Progress", self.in_progress),
            ("Completed", self.completed),
            ("Cancelled", self.cancelled),
        ]


@dataclass(frozen=True)
class TypeCount:
    label: str
    count: int


@dataclass(frozen=True)
class TaskTotals:
    status: StatusTotals
    types: Tuple[TypeCount, ...]


@dataclass(frozen=True)
class OverdueItem:
    task_id: int
    title: str
    equipment: str
    due: date
    status: str


@dataclass(frozen=True)
class StaffPerformance:
    user_id: int
    name: str
    role: str
    completed: int
    in_progress: int
    pending: int
    cancelled: int
    total: int


@dataclass(frozen=True)
class SparePartUsage:
    part: str
    qty_used: int
    qty_required: int = 0


@dataclass(frozen=True)
class DepartmentLoad:
    department: str
    count: int


@dataclass(frozen=True)
class TrendPoint:
    day: date
    count: int


@dataclass(frozen=True)
class ComplianceRow:
    item: str
    passed: int
    failed: int
    due_soon: int


# ============================================================================
# Aggregates
# ============================================================================

def _bucket(status: Optional[str]) -> Optional[str]:
    return _STATUS_FIELDS.get(status or "")


def aggregate_totals(records: Sequence[TaskRecord], now: datetime) -> TaskTotals:
    """Counts per status bucket and per free-form type label."""
    buckets: Counter = Counter()
    types: Counter = Counter()
    for task in records:
        field_name = _bucket(task.status)
        if field_name:
            buckets[field_name] += 1
        types[task.task_type or UNKNOWN_TYPE] += 1

    type_rows = sorted(types.items(), key=lambda kv: (-kv[1], kv[0]))
    return TaskTotals(
        status=StatusTotals(**{f: buckets.get(f, 0) for f in _STATUS_FIELDS.values()}),
        types=tuple(TypeCount(label, count) for label, count in type_rows),
    )


def aggregate_overdue(records: Sequence[TaskRecord], now: datetime) -> Tuple[OverdueItem, ...]:
    """Past-due tasks that are not completed, earliest due first."""
    overdue = [
        t for t in records
        if t.due_date is not None and t.due_date < now and t.status != "Completed"
    ]
    overdue.sort(key=lambda t: (t.due_date, t.title, t.id))
    return tuple(
        OverdueItem(
            task_id=t.id,
            title=t.title or "Task",
            equipment=(t.equipment.name if t.equipment and t.equipment.name else UNRESOLVED),
            due=t.due_date.date(),
            status=t.status or UNRESOLVED,
        )
        for t in overdue[:OVERDUE_LIMIT]
    )


def aggregate_staff_performance(
    records: Sequence[TaskRecord], now: datetime
) -> Tuple[StaffPerformance, ...]:
    """Per-assignee status counts for operational staff only.

    Unassigned tasks and assignees outside OPERATIONAL_ROLES are excluded,
    not zero-filled.
    """
    counts: Dict[int, Counter] = {}
    people = {}
    for task in records:
        user = task.assignee
        if user is None or user.role not in OPERATIONAL_ROLES:
            continue
        people[user.id] = user
        bucket = counts.setdefault(user.id, Counter())
        field_name = _bucket(task.status)
        if field_name:
            bucket[field_name] += 1

    rows = []
    for user_id, bucket in counts.items():
        user = people[user_id]
        completed = bucket.get("completed", 0)
        in_progress = bucket.get("in_progress", 0)
        pending = bucket.get("pending", 0)
        cancelled = bucket.get("cancelled", 0)
        rows.append(StaffPerformance(
            user_id=user_id,
            name=user.name or UNRESOLVED,
            role=user.role,
            completed=completed,
            in_progress=in_progress,
            pending=pending,
            cancelled=cancelled,
            total=completed + in_progress + pending + cancelled,
        ))

    rows.sort(key=lambda p: (-p.completed, -p.total, p.name, p.user_id))
    return tuple(rows)


def aggregate_spare_parts(
    records: Sequence[TaskRecord], now: datetime
) -> Tuple[SparePartUsage, ...]:
    """Quantity used per part name across all matching tasks."""
    used: Counter = Counter()
    for task in records:
        for line in task.spare_parts:
            qty = 1 if line.quantity is None else line.quantity
            used[line.name or UNRESOLVED] += qty

    ranked = sorted(used.items(), key=lambda kv: (-kv[1], kv[0]))
    return tuple(SparePartUsage(part=name, qty_used=qty) for name, qty in ranked[:SPARE_PARTS_LIMIT])


def aggregate_department_load(
    records: Sequence[TaskRecord], now: datetime
) -> Tuple[DepartmentLoad, ...]:
    load: Counter = Counter()
    for task in records:
        dept = task.equipment.department if task.equipment else None
        load[dept or UNRESOLVED] += 1
    ranked = sorted(load.items(), key=lambda kv: (-kv[1], kv[0]))
    return tuple(DepartmentLoad(department=d, count=c) for d, c in ranked)


def aggregate_trend(records: Sequence[TaskRecord], now: datetime) -> Tuple[TrendPoint, ...]:
    """Completed tasks per calendar day of creation, oldest day first."""
    per_day: Counter = Counter(
        t.created_at.date()
        for t in records
        if t.status == "Completed" and t.created_at is not None
    )
    return tuple(TrendPoint(day=d, count=per_day[d]) for d in sorted(per_day))


# TODO: replace with real inspection data once equipment safety tests and
# calibration certificates are recorded in the store.
_COMPLIANCE_PLACEHOLDER = (
    ComplianceRow(item="Electrical Safety Test", passed=12, failed=1, due_soon=3),
    ComplianceRow(item="Calibration Certificates", passed=9, failed=0, due_soon=4),
)


def compliance_placeholder(records: Sequence[TaskRecord], now: datetime) -> Tuple[ComplianceRow, ...]:
    return _COMPLIANCE_PLACEHOLDER


# ============================================================================
# Dataset registry
# ============================================================================

class DatasetKey(enum.Enum):
    TOTALS = "totals"
    OVERDUE = "overdue"
    STAFF_PERFORMANCE = "staff_performance"
    SPARE_PARTS = "spare_parts"
    DEPARTMENT_LOAD = "department_load"
    TREND = "trend"
    COMPLIANCE = "compliance"


AGGREGATES: Dict[DatasetKey, Callable[[Sequence[TaskRecord], datetime], object]] = {
    DatasetKey.TOTALS: aggregate_totals,
    DatasetKey.OVERDUE: aggregate_overdue,
    DatasetKey.STAFF_PERFORMANCE: aggregate_staff_performance,
    DatasetKey.SPARE_PARTS: aggregate_spare_parts,
    DatasetKey.DEPARTMENT_LOAD: aggregate_department_load,
    DatasetKey.TREND: aggregate_trend,
    DatasetKey.COMPLIANCE: compliance_placeholder,
}


@dataclass(frozen=True)
class AggregatedDataset:
    """The datasets computed for one request.  Unrequested entries are None."""

    record_count: int = 0
    totals: Optional[TaskTotals] = None
    overdue: Optional[Tuple[OverdueItem, ...]] = None
    staff_performance: Optional[Tuple[StaffPerformance, ...]] = None
    spare_parts: Optional[Tuple[SparePartUsage, ...]] = None
    department_load: Optional[Tuple[DepartmentLoad, ...]] = None
    trend: Optional[Tuple[TrendPoint, ...]] = None
    compliance: Optional[Tuple[ComplianceRow, ...]] = None


class Aggregator:
    """Fetches the filtered records and computes the requested datasets."""

    def __init__(self, store):
        self.store = store

    def build(
        self,
        flt: Filter,
        keys: Iterable[DatasetKey],
        now: datetime,
    ) -> AggregatedDataset:
        predicate = normalize_filter(flt)
        try:
            records = self.store.fetch_tasks(predicate)
        except Exception as exc:
            raise ReportAggregationError(f"Record store query failed: {exc}") from exc

        values = {"record_count": len(records)}
        for key in _ordered_unique(keys):
            try:
                values[key.value] = AGGREGATES[key](records, now)
            except Exception as exc:
                raise ReportAggregationError(f"Aggregate {key.value} failed: {exc}") from exc

        logger.info(
            "Aggregated %d task records into %s",
            len(records), ", ".join(k for k in values if k != "record_count"),
        )
        return AggregatedDataset(**values)


def _ordered_unique(keys: Iterable[DatasetKey]) -> List[DatasetKey]:
    seen: List[DatasetKey] = []
    for key in keys:
        if key not in seen:
            seen.append(key)
    return seen
