"""
SERVIX CMMS — Filter Normalizer Tests
======================================
Tests: request filter parsing, validation, predicate matching, SQL rendering
"""

import datetime

import pytest

from app.reporting.errors import ReportValidationError
from app.reporting.filters import normalize_filter, parse_filter
from app.reporting.models import (
    EquipmentRecord, Filter, TaskRecord, TaskRecordStore, UserRecord,
)
from tests.conftest import get_test_db


def _task(**kw):
    base = dict(
        id=1, title="t", status="Pending",
        created_at=datetime.datetime(2026, 1, 5, 10, 0),
        equipment=EquipmentRecord(id=1, name="Pump", department="ICU", category="Infusion"),
        assignee=UserRecord(id=7, name="Ama Mensah", role="Technician"),
    )
    base.update(kw)
    return TaskRecord(**base)


def _ids(flt):
    return [t.id for t in TaskRecordStore().fetch_tasks(normalize_filter(flt))]


class TestParseFilter:

    def test_empty_filter_is_unbounded(self):
        flt = parse_filter({})
        assert flt == Filter()
        assert parse_filter(None) == Filter()

    def test_date_only_bounds(self):
        flt = parse_filter({"dateFrom": "2026-01-06", "dateTo": "2026-01-07"})
        assert flt.date_from == datetime.datetime(2026, 1, 6)
        assert flt.date_to == datetime.datetime(2026, 1, 7)
        assert flt.date_to_is_day is True

    def test_datetime_bound_is_not_day(self):
        flt = parse_filter({"dateTo": "2026-01-07T08:30:00"})
        assert flt.date_to == datetime.datetime(2026, 1, 7, 8, 30)
        assert flt.date_to_is_day is False

    def test_sets_are_cleaned(self):
        flt = parse_filter({"departments": [" ICU ", "", None, "ICU"], "categories": "Imaging"})
        assert flt.departments == frozenset({"ICU"})
        assert flt.categories == frozenset({"Imaging"})

    def test_blank_staff_is_ignored(self):
        assert parse_filter({"staff": "   "}).staff is None
        assert parse_filter({"staff": " Ama "}).staff == "Ama"

    def test_invalid_date_rejected(self):
        with pytest.raises(ReportValidationError):
            parse_filter({"dateFrom": "06/01/2026"})

    def test_inverted_range_rejected(self):
        with pytest.raises(ReportValidationError, match="dateFrom"):
            parse_filter({"dateFrom": "2026-01-08", "dateTo": "2026-01-07"})

    def test_same_day_range_accepted(self):
        flt = parse_filter({"dateFrom": "2026-01-07", "dateTo": "2026-01-07"})
        predicate = normalize_filter(flt)
        assert predicate.created_from < predicate.created_to

    def test_non_list_departments_rejected(self):
        with pytest.raises(ReportValidationError):
            parse_filter({"departments": {"ICU": True}})

    def test_filters_must_be_object(self):
        with pytest.raises(ReportValidationError):
            parse_filter(["ICU"])


class TestPredicate:

    def test_date_only_upper_bound_covers_whole_day(self):
        predicate = normalize_filter(parse_filter({"dateTo": "2026-01-05"}))
        assert predicate.matches(_task(created_at=datetime.datetime(2026, 1, 5, 23, 59, 59)))
        assert not predicate.matches(_task(created_at=datetime.datetime(2026, 1, 6, 0, 0)))

    def test_bounds_are_inclusive(self):
        at = datetime.datetime(2026, 1, 5, 10, 0)
        predicate = normalize_filter(Filter(date_from=at, date_to=at))
        assert predicate.matches(_task(created_at=at))

    def test_department_requires_resolved_equipment(self):
        predicate = normalize_filter(Filter(departments=frozenset({"ICU"})))
        assert predicate.equipment_join_required
        assert predicate.matches(_task())
        assert not predicate.matches(_task(equipment=None))
        assert not predicate.matches(
            _task(equipment=EquipmentRecord(id=2, department="Radiology"))
        )

    def test_staff_matches_name_substring_or_id(self):
        by_name = normalize_filter(Filter(staff="mensah"))
        by_id = normalize_filter(Filter(staff="7"))
        assert by_name.matches(_task())
        assert by_id.matches(_task())
        assert not by_name.matches(_task(assignee=None))

    def test_filters_are_anded(self):
        predicate = normalize_filter(Filter(
            departments=frozenset({"ICU"}), categories=frozenset({"Imaging"}),
        ))
        assert not predicate.matches(_task())

    def test_sql_for_empty_predicate(self):
        where, params = normalize_filter(Filter()).to_sql()
        assert where == "1=1"
        assert params == []

    def test_sql_escapes_like_wildcards(self):
        where, params = normalize_filter(Filter(staff="50%_x")).to_sql()
        assert "LIKE" in where
        assert params[0] == "%50\\%\\_x%"


class TestRecordStoreFiltering:

    def test_no_filter_returns_all(self, seeded_db):
        assert _ids(Filter()) == [1, 2, 3, 4, 5, 6, 7]

    def test_department_filter(self, seeded_db):
        assert _ids(parse_filter({"departments": ["ICU"]})) == [1, 2, 5, 7]

    def test_date_range_filter(self, seeded_db):
        flt = parse_filter({"dateFrom": "2026-01-06", "dateTo": "2026-01-07"})
        assert _ids(flt) == [2, 4]

    def test_staff_filter_case_insensitive(self, seeded_db):
        assert _ids(parse_filter({"staff": "ama"})) == [1, 3]

    def test_staff_filter_by_id(self, seeded_db):
        assert _ids(parse_filter({"staff": "2"})) == [2, 7]

    def test_combined_filters(self, seeded_db):
        flt = parse_filter({"categories": ["Respiratory"], "staff": "kofi"})
        assert _ids(flt) == [2, 7]

    def test_spare_parts_loaded(self, seeded_db):
        tasks = TaskRecordStore().fetch_tasks(normalize_filter(Filter()))
        by_id = {t.id: t for t in tasks}
        assert [p.name for p in by_id[1].spare_parts] == ["Battery Pack", "Filter X"]
        assert by_id[4].spare_parts[0].quantity is None
        assert by_id[6].spare_parts == ()
        assert by_id[6].equipment is None


class TestStoredTimestampShapes:

    @staticmethod
    def _insert(*rows):
        conn = get_test_db()
        conn.executemany("INSERT INTO tasks (id, title, created_at) VALUES (?, ?, ?)", rows)
        conn.commit()
        conn.close()

    def test_iso_and_date_only_values_match_their_day(self, reporting_db):
        self._insert(
            (1, "iso", "2026-01-10T08:00:00"),
            (2, "date only", "2026-01-10"),
            (3, "space", "2026-01-10 23:59:59.500000"),
            (4, "next day", "2026-01-11T00:00:00"),
        )
        flt = parse_filter({"dateFrom": "2026-01-10", "dateTo": "2026-01-10"})
        assert _ids(flt) == [1, 2, 3]

    def test_sub_day_bound_is_exact(self, reporting_db):
        self._insert(
            (1, "early", "2026-01-10T08:00:00"),
            (2, "late", "2026-01-10T10:00:00"),
        )
        flt = parse_filter({"dateFrom": "2026-01-10T09:00:00", "dateTo": "2026-01-10"})
        assert _ids(flt) == [2]

    def test_sql_narrows_by_calendar_day(self):
        flt = parse_filter({"dateFrom": "2026-01-10T09:00:00", "dateTo": "2026-01-12"})
        where, params = normalize_filter(flt).to_sql()
        assert where == "date(t.created_at) >= ? AND date(t.created_at) <= ?"
        assert params == ["2026-01-10", "2026-01-12"]

    def test_created_at_has_no_utc_default(self, reporting_db):
        conn = get_test_db()
        conn.execute("INSERT INTO tasks (id, title) VALUES (1, 'undated')")
        conn.commit()
        conn.close()

        assert _ids(Filter()) == [1]
        assert _ids(parse_filter({"dateFrom": "2000-01-01"})) == []
