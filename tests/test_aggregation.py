"""
SERVIX CMMS — Aggregation Engine Tests
=======================================
Tests: status / type totals, overdue ranking, staff performance, spare parts,
       department load, completion trend, idempotence, error wrapping
"""

import datetime

import pytest

from app.reporting.aggregation import (
    OVERDUE_LIMIT, SPARE_PARTS_LIMIT, UNRESOLVED, AggregatedDataset, Aggregator,
    DatasetKey, SparePartUsage, StatusTotals, aggregate_department_load,
    aggregate_overdue, aggregate_spare_parts, aggregate_staff_performance,
    aggregate_totals, aggregate_trend,
)
from app.reporting.errors import ReportAggregationError
from app.reporting.filters import parse_filter
from app.reporting.models import (
    EquipmentRecord, Filter, SparePartLine, TaskRecord, TaskRecordStore, UserRecord,
)
from tests.conftest import NOW, FailingStore, SpyStore

ALL_KEYS = list(DatasetKey)


def _build(flt=None, keys=ALL_KEYS):
    return Aggregator(TaskRecordStore()).build(flt or Filter(), keys, NOW)


class TestTotals:

    def test_status_buckets_from_four_records(self):
        records = [
            TaskRecord(id=i, status=s)
            for i, s in enumerate(["Pending", "Pending", "Completed", "Cancelled"], 1)
        ]
        totals = aggregate_totals(records, NOW)
        assert totals.status == StatusTotals(pending=2, in_progress=0, completed=1, cancelled=1)

    def test_seeded_totals(self, seeded_db):
        data = _build(keys=[DatasetKey.TOTALS])
        assert data.record_count == 7
        assert data.totals.status == StatusTotals(pending=2, in_progress=1, completed=3, cancelled=1)
        assert [(t.label, t.count) for t in data.totals.types] == [
            ("Corrective", 2), ("Preventive", 2),
            ("Calibration", 1), ("Inspection", 1), ("N/A", 1),
        ]

    @pytest.mark.parametrize("filters", [
        {},
        {"departments": ["ICU"]},
        {"dateFrom": "2026-01-06", "dateTo": "2026-01-08"},
        {"staff": "ama"},
        {"categories": ["Imaging", "Cardiac"]},
    ])
    def test_buckets_sum_to_record_count(self, seeded_db, filters):
        data = _build(parse_filter(filters), [DatasetKey.TOTALS])
        assert data.totals.status.total == data.record_count

    def test_unknown_status_counts_in_no_bucket(self):
        totals = aggregate_totals([TaskRecord(id=1, status="On Hold")], NOW)
        assert totals.status.total == 0
        assert totals.types[0].count == 1


class TestOverdue:

    def test_seeded_overdue_order(self, seeded_db):
        data = _build(keys=[DatasetKey.OVERDUE])
        assert [o.task_id for o in data.overdue] == [3, 2, 5]
        assert data.overdue[0].equipment == "X-Ray Unit"
        assert data.overdue[0].due == datetime.date(2026, 1, 4)

    def test_completed_is_never_overdue(self):
        task = TaskRecord(id=1, status="Completed", due_date=NOW - datetime.timedelta(days=3))
        assert aggregate_overdue([task], NOW) == ()

    def test_limit_and_sort(self):
        records = [
            TaskRecord(id=i, title=f"T{i}", status="Pending",
                       due_date=NOW - datetime.timedelta(days=(i * 7) % 15 + 1))
            for i in range(1, 25)
        ]
        overdue = aggregate_overdue(records, NOW)
        assert len(overdue) == OVERDUE_LIMIT
        dues = [o.due for o in overdue]
        assert dues == sorted(dues)

    def test_missing_equipment_is_placeholder(self):
        task = TaskRecord(id=1, title="x", status="Pending", due_date=NOW - datetime.timedelta(days=1))
        assert aggregate_overdue([task], NOW)[0].equipment == UNRESOLVED


class TestStaffPerformance:

    def test_seeded_performance(self, seeded_db):
        data = _build(keys=[DatasetKey.STAFF_PERFORMANCE])
        rows = [(p.name, p.completed, p.in_progress, p.pending, p.total) for p in data.staff_performance]
        assert rows == [
            ("Ama Mensah", 1, 0, 1, 2),
            ("Kofi Boateng", 1, 1, 0, 2),
            ("Esi Owusu", 1, 0, 0, 1),
        ]

    def test_non_operational_roles_excluded(self):
        admin = UserRecord(id=9, name="Boss", role="Admin")
        tech = UserRecord(id=3, name="Tech", role="Technician")
        records = [
            TaskRecord(id=1, status="Completed", assignee=admin),
            TaskRecord(id=2, status="Completed", assignee=tech),
            TaskRecord(id=3, status="Completed", assignee=None),
        ]
        perf = aggregate_staff_performance(records, NOW)
        assert [p.user_id for p in perf] == [3]


class TestSpareParts:

    def test_same_part_across_records_is_summed(self):
        records = [
            TaskRecord(id=1, spare_parts=(SparePartLine("Filter X", 2),)),
            TaskRecord(id=2, spare_parts=(SparePartLine("Filter X", 5),)),
        ]
        assert aggregate_spare_parts(records, NOW) == (SparePartUsage(part="Filter X", qty_used=7),)

    def test_seeded_parts(self, seeded_db):
        data = _build(keys=[DatasetKey.SPARE_PARTS])
        assert [(s.part, s.qty_used) for s in data.spare_parts] == [
            ("Filter X", 7), ("O-Ring", 3), ("Battery Pack", 2), ("Electrode Pads", 1),
        ]

    def test_limit_and_sort(self):
        records = [
            TaskRecord(id=i, spare_parts=(SparePartLine(f"Part {i}", i % 9),))
            for i in range(1, 40)
        ]
        parts = aggregate_spare_parts(records, NOW)
        assert len(parts) == SPARE_PARTS_LIMIT
        qty = [p.qty_used for p in parts]
        assert qty == sorted(qty, reverse=True)


class TestDepartmentAndTrend:

    def test_department_load(self, seeded_db):
        data = _build(keys=[DatasetKey.DEPARTMENT_LOAD])
        assert [(d.department, d.count) for d in data.department_load] == [
            ("ICU", 4), ("Emergency", 1), ("Radiology", 1), (UNRESOLVED, 1),
        ]

    def test_trend_counts_completed_by_creation_day(self, seeded_db):
        data = _build(keys=[DatasetKey.TREND])
        assert [(t.day, t.count) for t in data.trend] == [
            (datetime.date(2026, 1, 5), 2), (datetime.date(2026, 1, 7), 1),
        ]

    def test_trend_skips_missing_creation_time(self):
        assert aggregate_trend([TaskRecord(id=1, status="Completed")], NOW) == ()

    def test_department_placeholder_for_missing_equipment(self):
        load = aggregate_department_load(
            [TaskRecord(id=1, equipment=EquipmentRecord(id=1, department=None))], NOW
        )
        assert load[0].department == UNRESOLVED


class TestAggregator:

    def test_only_requested_datasets_computed(self, seeded_db):
        data = _build(keys=[DatasetKey.SPARE_PARTS])
        assert data.spare_parts is not None
        assert data.totals is None
        assert data.compliance is None

    def test_idempotent(self, seeded_db):
        flt = parse_filter({"departments": ["ICU", "Radiology"]})
        assert _build(flt) == _build(flt)

    def test_single_store_query(self):
        store = SpyStore([TaskRecord(id=1, status="Pending")])
        Aggregator(store).build(Filter(), ALL_KEYS, NOW)
        assert store.calls == 1

    def test_store_failure_wrapped(self):
        with pytest.raises(ReportAggregationError):
            Aggregator(FailingStore()).build(Filter(), ALL_KEYS, NOW)

    def test_empty_store(self):
        data = Aggregator(SpyStore()).build(Filter(), ALL_KEYS, NOW)
        assert isinstance(data, AggregatedDataset)
        assert data.record_count == 0
        assert data.overdue == ()
        assert data.totals.status.total == 0
        assert len(data.compliance) > 0
