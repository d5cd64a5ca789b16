# ============================================================================
# SERVIX CMMS - Report Filter Normalizer
# ============================================================================
# Turns the raw JSON filter object into a Filter, and a Filter into the
# canonical TaskPredicate the record store and the aggregation engine use.
#
# Rules
# -----
# * Missing dateFrom / dateTo leave that side unbounded; present bounds are
#   inclusive on task creation time.  A date-only dateTo covers that day.
# * Non-empty departments / categories require the equipment join; tasks
#   whose equipment cannot be resolved never match them.
# * staff matches the assignee name (case-insensitive substring) or id.
# * Every active filter is ANDed.
# ============================================================================

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .errors import ReportValidationError
from .models import Filter, TaskRecord


def _parse_bound(value: Any, label: str) -> Tuple[Optional[datetime], bool]:
    """Parse a date / datetime bound.  Returns (datetime, is_date_only)."""
    if value is None or value == "":
        return None, False
    if isinstance(value, datetime):
        return value.replace(tzinfo=None), False
    text = str(value).strip()
    try:
        if len(text) == 10:
            return datetime.strptime(text, "%Y-%m-%d"), True
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ReportValidationError(f"Invalid {label}: {value!r}") from None
    if parsed.tzinfo is not None:
        from .config import get_timezone
        parsed = parsed.astimezone(get_timezone()).replace(tzinfo=None)
    return parsed, False


def _clean_set(values: Any, label: str) -> FrozenSet[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, (list, tuple, set, frozenset)):
        raise ReportValidationError(f"{label} must be a list of strings")
    return frozenset(str(v).strip() for v in values if v is not None and str(v).strip())


def parse_filter(raw: Optional[Dict[str, Any]]) -> Filter:
    """Build a Filter from the request's ``filters`` object."""
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ReportValidationError("filters must be an object")

    date_from, _ = _parse_bound(raw.get("dateFrom"), "dateFrom")
    date_to, to_is_day = _parse_bound(raw.get("dateTo"), "dateTo")
    staff = raw.get("staff")
    staff = str(staff).strip() if staff is not None and str(staff).strip() else None

    flt = Filter(
        date_from=date_from,
        date_to=date_to,
        date_to_is_day=to_is_day,
        departments=_clean_set(raw.get("departments"), "departments"),
        categories=_clean_set(raw.get("categories"), "categories"),
        staff=staff,
    )
    validate_filter(flt)
    return flt


def validate_filter(flt: Filter) -> None:
    predicate = normalize_filter(flt)
    if (predicate.created_from and predicate.created_to
            and predicate.created_from > predicate.created_to):
        raise ReportValidationError("dateFrom must not be after dateTo")


# ============================================================================
# Predicate
# ============================================================================

def _sql_day(dt: datetime) -> str:
    return dt.date().isoformat()


@dataclass(frozen=True)
class TaskPredicate:
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    departments: FrozenSet[str] = frozenset()
    categories: FrozenSet[str] = frozenset()
    staff: Optional[str] = None

    @property
    def equipment_join_required(self) -> bool:
        return bool(self.departments or self.categories)

    def matches(self, task: TaskRecord) -> bool:
        created = task.created_at
        if self.created_from is not None and (created is None or created < self.created_from):
            return False
        if self.created_to is not None and (created is None or created > self.created_to):
            return False

        if self.equipment_join_required:
            eq = task.equipment
            if eq is None:
                return False
            if self.departments and eq.department not in self.departments:
                return False
            if self.categories and eq.category not in self.categories:
                return False

        if self.staff is not None:
            user = task.assignee
            if user is None:
                return False
            token = self.staff.lower()
            if token not in (user.name or "").lower() and str(user.id) != self.staff:
                return False
        return True

    def to_sql(self) -> Tuple[str, List[Any]]:
        """Render as a WHERE clause over ``tasks t`` / ``equipment e`` / ``users u``.

        Date bounds narrow to whole calendar days through SQLite's ``date()``,
        which reads every stored timestamp shape; ``matches`` applies the
        exact bounds afterwards.
        """
        clauses: List[str] = []
        params: List[Any] = []
        if self.created_from is not None:
            clauses.append("date(t.created_at) >= ?")
            params.append(_sql_day(self.created_from))
        if self.created_to is not None:
            clauses.append("date(t.created_at) <= ?")
            params.append(_sql_day(self.created_to))
        if self.departments:
            clauses.append(_in_clause("e.department", self.departments, params))
        if self.categories:
            clauses.append(_in_clause("e.category", self.categories, params))
        if self.staff is not None:
            clauses.append("(u.name LIKE ? ESCAPE '\\' OR CAST(u.id AS TEXT) = ?)")
            params.append(f"%{_escape_like(self.staff)}%")
            params.append(self.staff)

        where = " AND ".join(clauses) if clauses else "1=1"
        return where, params


def _in_clause(column: str, values: Iterable[str], params: List[Any]) -> str:
    ordered = sorted(values)
    params.extend(ordered)
    return f"{column} IN ({','.join('?' for _ in ordered)})"


def _escape_like(token: str) -> str:
    return token.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def normalize_filter(flt: Filter) -> TaskPredicate:
    """Canonical predicate for a Filter."""
    created_to = flt.date_to
    if created_to is not None and flt.date_to_is_day:
        created_to = datetime.combine(created_to.date(), datetime.max.time())
    return TaskPredicate(
        created_from=flt.date_from,
        created_to=created_to,
        departments=flt.departments,
        categories=flt.categories,
        staff=flt.staff,
    )
