# ============================================================================
# SERVIX CMMS - Report Section Registry
# ============================================================================
# Every ReportSection maps, through SECTIONS, to
#
#   datasets      - the aggregates it reads
#   build_charts  - the charts it can show (list of ChartRequest)
#   write_print   - its part of the paginated PDF
#   write_sheet   - its worksheet in the XLSX workbook
#
# A new section is one enum member plus one SectionSpec entry; the engine
# never compares section names.
# ============================================================================

from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .aggregation import AggregatedDataset, DatasetKey
from .charts import BLUE, GREEN, INDIGO, ORANGE, RED, STATUS_COLORS, ChartSpec, Series, heat_colors
from .models import ChartImage, ReportSection
from .pdf_writer import PaginatedWriter
from .workbook_writer import WorkbookWriter


@dataclass(frozen=True)
class ChartSettings:
    width: int = 900
    height: int = 420
    max_chart_ms: int = 6000
    max_heatmap_ms: int = 6000


@dataclass(frozen=True)
class ChartRequest:
    key: str
    spec: ChartSpec
    budget_ms: int


Charts = Mapping[str, ChartImage]


@dataclass(frozen=True)
class SectionSpec:
    section: ReportSection
    title: str
    datasets: Tuple[DatasetKey, ...]
    build_charts: Callable[[AggregatedDataset, ChartSettings], List[ChartRequest]]
    write_print: Callable[[PaginatedWriter, AggregatedDataset, Charts], None]
    write_sheet: Callable[[WorkbookWriter, AggregatedDataset, Charts], None]


def _place_image(pw: PaginatedWriter, image: Optional[ChartImage], label: str):
    if image is not None:
        pw.image(image.data, image.width, image.height, label)


def _cols(pw: PaginatedWriter, *fractions: float) -> List[float]:
    return [round(pw.CONTENT_W * f) for f in fractions]


# ============================================================================
# Task management
# ============================================================================

def _task_charts(data: AggregatedDataset, cfg: ChartSettings) -> List[ChartRequest]:
    status = data.totals.status.items()
    types = data.totals.types
    return [
        ChartRequest("status", ChartSpec(
            kind="pie",
            labels=tuple(label for label, _ in status),
            series=(Series("Status", tuple(count for _, count in status)),),
            colors=tuple(STATUS_COLORS),
            width=cfg.width, height=cfg.height,
        ), cfg.max_chart_ms),
        ChartRequest("types", ChartSpec(
            kind="bar",
            labels=tuple(t.label for t in types),
            series=(Series("Types", tuple(t.count for t in types), INDIGO),),
            width=cfg.width, height=cfg.height,
        ), cfg.max_chart_ms),
    ]


def _task_print(pw: PaginatedWriter, data: AggregatedDataset, charts: Charts):
    st = data.totals.status
    pw.heading("Task Management - Totals", 2)
    pw.table(
        [[label for label, _ in st.items()], [count for _, count in st.items()]],
        [pw.CONTENT_W / 4] * 4,
    )
    type_rows = [["Type", "Count"]] + [[t.label, t.count] for t in data.totals.types]
    pw.table(type_rows, _cols(pw, 0.65, 0.35))
    _place_image(pw, charts.get("status"), "Status Distribution")
    _place_image(pw, charts.get("types"), "Types Distribution")

    pw.heading("Top Overdue", 2)
    if data.overdue:
        over_rows = [["Title", "Equipment", "Due", "Status"]] + [
            [o.title, o.equipment, o.due.isoformat(), o.status] for o in data.overdue
        ]
        pw.table(over_rows, _cols(pw, 0.40, 0.30, 0.15, 0.15))
    else:
        pw.paragraph("No overdue tasks.")


def _task_sheet(xw: WorkbookWriter, data: AggregatedDataset, charts: Charts):
    ws = xw.add_sheet("Tasks")
    row = xw.write_table(ws, ["Status", "Count"], [list(i) for i in data.totals.status.items()])
    row = xw.write_table(ws, ["Type", "Count"], [[t.label, t.count] for t in data.totals.types], row + 1)
    xw.write_table(
        ws, ["Title", "Equipment", "Due", "Status"],
        [[o.title, o.equipment, o.due, o.status] for o in data.overdue], row + 1,
    )
    next_row = xw.add_image(ws, charts.get("status"), data_columns=4, row=2)
    xw.add_image(ws, charts.get("types"), data_columns=4, row=next_row)


# ============================================================================
# Staff performance
# ============================================================================

_PERF_HEADER = ["Name", "Role", "Completed", "In Progress", "Pending", "Cancelled", "Total"]


def _perf_rows(data: AggregatedDataset):
    return [
        [p.name, p.role, p.completed, p.in_progress, p.pending, p.cancelled, p.total]
        for p in data.staff_performance
    ]


def _perf_charts(data: AggregatedDataset, cfg: ChartSettings) -> List[ChartRequest]:
    perf = data.staff_performance
    trend = data.trend
    return [
        ChartRequest("performance", ChartSpec(
            kind="grouped_bar",
            labels=tuple(p.name for p in perf),
            series=(
                Series("Completed", tuple(p.completed for p in perf), GREEN),
                Series("In Progress", tuple(p.in_progress for p in perf), BLUE),
                Series("Pending", tuple(p.pending for p in perf), ORANGE),
                Series("Cancelled", tuple(p.cancelled for p in perf), RED),
            ),
            width=cfg.width, height=cfg.height,
        ), cfg.max_chart_ms),
        ChartRequest("trend", ChartSpec(
            kind="line",
            labels=tuple(t.day.isoformat() for t in trend),
            series=(Series("Completed over time", tuple(t.count for t in trend), BLUE),),
            width=cfg.width, height=round(cfg.height * 0.7),
        ), cfg.max_chart_ms),
    ]


def _perf_print(pw: PaginatedWriter, data: AggregatedDataset, charts: Charts):
    pw.heading("Engineer & Technician Performance", 2)
    if data.staff_performance:
        # fixed numeric columns; normalized down to the content width
        pw.table(
            [_PERF_HEADER] + _perf_rows(data),
            _cols(pw, 0.32, 0.16) + [70, 90, 70, 80, 50],
            font_size=10,
        )
    else:
        pw.paragraph("No technician or engineer activity for the selected filters.")
    _place_image(pw, charts.get("performance"), "Tasks by Staff")

    trend_chart = charts.get("trend")
    if trend_chart is not None and trend_chart.available:
        _place_image(pw, trend_chart, "Completed Over Time")
    elif data.trend:
        pw.heading("Completed Over Time", 3)
        pw.table(
            [["Date", "Completed"]] + [[t.day.isoformat(), t.count] for t in data.trend],
            _cols(pw, 0.5, 0.5),
        )


def _perf_sheet(xw: WorkbookWriter, data: AggregatedDataset, charts: Charts):
    ws = xw.add_sheet("Performance")
    row = xw.write_table(ws, _PERF_HEADER, _perf_rows(data))
    xw.write_table(ws, ["Date", "Completed"], [[t.day, t.count] for t in data.trend], row + 1)
    next_row = xw.add_image(ws, charts.get("performance"), data_columns=len(_PERF_HEADER), row=2)
    xw.add_image(ws, charts.get("trend"), data_columns=len(_PERF_HEADER), row=next_row)


# ============================================================================
# Spare parts
# ============================================================================

def _parts_charts(data: AggregatedDataset, cfg: ChartSettings) -> List[ChartRequest]:
    parts = data.spare_parts
    return [
        ChartRequest("parts", ChartSpec(
            kind="bar",
            labels=tuple(s.part for s in parts),
            series=(Series("Qty Used", tuple(s.qty_used for s in parts), ORANGE),),
            width=cfg.width, height=cfg.height,
        ), cfg.max_chart_ms),
    ]


def _parts_print(pw: PaginatedWriter, data: AggregatedDataset, charts: Charts):
    pw.heading("Spare Parts & Inventory", 2)
    rows = [["Part", "Qty Used", "Qty Required"]] + [
        [s.part, s.qty_used, s.qty_required] for s in data.spare_parts
    ]
    pw.table(rows, _cols(pw, 0.6, 0.2, 0.2))
    _place_image(pw, charts.get("parts"), "Top Used Parts")


def _parts_sheet(xw: WorkbookWriter, data: AggregatedDataset, charts: Charts):
    ws = xw.add_sheet("Spare Parts")
    xw.write_table(
        ws, ["Part", "Qty Used", "Qty Required"],
        [[s.part, s.qty_used, s.qty_required] for s in data.spare_parts],
    )
    xw.add_image(ws, charts.get("parts"), data_columns=3)


# ============================================================================
# Downtime (department load)
# ============================================================================

def _downtime_charts(data: AggregatedDataset, cfg: ChartSettings) -> List[ChartRequest]:
    load = data.department_load
    counts = [d.count for d in load]
    return [
        ChartRequest("heat", ChartSpec(
            kind="bar",
            labels=tuple(d.department for d in load),
            series=(Series("Events", tuple(counts)),),
            colors=tuple(heat_colors(counts)),
            width=cfg.width, height=cfg.height,
        ), cfg.max_heatmap_ms),
    ]


def _downtime_print(pw: PaginatedWriter, data: AggregatedDataset, charts: Charts):
    pw.heading("Downtime Analysis (by Department)", 2)
    heat = charts.get("heat")
    if heat is not None and heat.available:
        _place_image(pw, heat, "Events by Department")
    else:
        rows = [["Department", "Count"]] + [[d.department, d.count] for d in data.department_load]
        pw.table(rows, _cols(pw, 0.7, 0.3))


def _downtime_sheet(xw: WorkbookWriter, data: AggregatedDataset, charts: Charts):
    ws = xw.add_sheet("Downtime")
    xw.write_table(ws, ["Department", "Count"], [[d.department, d.count] for d in data.department_load])
    xw.add_image(ws, charts.get("heat"), data_columns=2)


# ============================================================================
# Compliance (placeholder data)
# ============================================================================

def _no_charts(data: AggregatedDataset, cfg: ChartSettings) -> List[ChartRequest]:
    return []


_COMPLIANCE_NOTE = "Placeholder figures: compliance inspections are not yet tracked."


def _compliance_print(pw: PaginatedWriter, data: AggregatedDataset, charts: Charts):
    pw.heading("Compliance & Audit", 2)
    rows = [["Item", "Passed", "Failed", "Due Soon"]] + [
        [c.item, c.passed, c.failed, c.due_soon] for c in data.compliance
    ]
    pw.table(rows, _cols(pw, 0.55, 0.15, 0.15, 0.15))
    pw.paragraph(_COMPLIANCE_NOTE, size=9)


def _compliance_sheet(xw: WorkbookWriter, data: AggregatedDataset, charts: Charts):
    ws = xw.add_sheet("Compliance")
    row = xw.write_table(
        ws, ["Item", "Passed", "Failed", "Due Soon"],
        [[c.item, c.passed, c.failed, c.due_soon] for c in data.compliance],
    )
    ws.cell(row=row + 1, column=1, value=_COMPLIANCE_NOTE)


# ============================================================================
# Registry
# ============================================================================

SECTIONS: Dict[ReportSection, SectionSpec] = {
    ReportSection.TASK_MANAGEMENT: SectionSpec(
        section=ReportSection.TASK_MANAGEMENT,
        title="Task Management Report",
        datasets=(DatasetKey.TOTALS, DatasetKey.OVERDUE),
        build_charts=_task_charts,
        write_print=_task_print,
        write_sheet=_task_sheet,
    ),
    ReportSection.STAFF_PERFORMANCE: SectionSpec(
        section=ReportSection.STAFF_PERFORMANCE,
        title="Engineer & Technician Performance Report",
        datasets=(DatasetKey.STAFF_PERFORMANCE, DatasetKey.TREND),
        build_charts=_perf_charts,
        write_print=_perf_print,
        write_sheet=_perf_sheet,
    ),
    ReportSection.INVENTORY_SPARE_PARTS: SectionSpec(
        section=ReportSection.INVENTORY_SPARE_PARTS,
        title="Spare Parts & Inventory Report",
        datasets=(DatasetKey.SPARE_PARTS,),
        build_charts=_parts_charts,
        write_print=_parts_print,
        write_sheet=_parts_sheet,
    ),
    ReportSection.DOWNTIME_ANALYSIS: SectionSpec(
        section=ReportSection.DOWNTIME_ANALYSIS,
        title="Downtime Analysis Report",
        datasets=(DatasetKey.DEPARTMENT_LOAD,),
        build_charts=_downtime_charts,
        write_print=_downtime_print,
        write_sheet=_downtime_sheet,
    ),
    ReportSection.COMPLIANCE_AUDIT: SectionSpec(
        section=ReportSection.COMPLIANCE_AUDIT,
        title="Compliance & Audit Report",
        datasets=(DatasetKey.COMPLIANCE,),
        build_charts=_no_charts,
        write_print=_compliance_print,
        write_sheet=_compliance_sheet,
    ),
}


def get_section(section: ReportSection) -> SectionSpec:
    return SECTIONS[section]


def section_catalogue() -> List[Dict[str, str]]:
    return [{"key": s.value, "name": spec.title} for s, spec in SECTIONS.items()]
