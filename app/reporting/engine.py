# ============================================================================
# SERVIX CMMS - Report Generation Engine
# ============================================================================
# One request, one sequential batch:
#
#   validate  ->  aggregate  ->  render charts  ->  write document  ->  persist
#
# Each generate() call owns its dataset, its chart images and its writer
# instance.  The output directory is the only shared resource.  A request
# either returns a ReportArtifact for a complete file or raises a
# ReportError; no partially written file is ever left under its final name.
# ============================================================================

import logging
import os
import sqlite3
import tempfile
import time
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .aggregation import AggregatedDataset, Aggregator, DatasetKey
from .charts import ChartRenderer, get_chart_renderer
from .config import format_time_for_display, get_config, get_local_now, get_output_dir
from .errors import ReportAggregationError, ReportError, ReportValidationError, ReportWriteError
from .filters import parse_filter, validate_filter
from .models import (
    AuditRepository,
    ChartImage,
    Filter,
    OutputFormat,
    ReportArtifact,
    ReportRequest,
    ReportSection,
    TaskRecordStore,
    Visuals,
    ensure_output_dir,
)
from .pdf_writer import DEFAULT_FOOTER, PaginatedWriter
from .sections import SECTIONS, ChartSettings, SectionSpec
from .workbook_writer import SummaryMeta, WorkbookWriter

logger = logging.getLogger("reporting.engine")

REPORT_TITLE = "CMMS Report"


# ============================================================================
# Request parsing
# ============================================================================

def parse_report_request(payload: Dict[str, Any], requested_by: Optional[str] = None) -> ReportRequest:
    """Build a ReportRequest from the JSON request body.

    Unknown section keys and formats are rejected; repeated sections keep
    their first position.  An empty section list is left for generate()
    to reject.
    """
    if not isinstance(payload, dict):
        raise ReportValidationError("Request body must be an object")

    reports = payload.get("reports") or []
    if not isinstance(reports, list):
        raise ReportValidationError("reports must be a list of section keys")

    sections: List[ReportSection] = []
    for key in reports:
        try:
            section = ReportSection(key)
        except ValueError:
            raise ReportValidationError(f"Unknown report section: {key!r}") from None
        if section not in sections:
            sections.append(section)

    options = payload.get("options") or {}
    if not isinstance(options, dict):
        raise ReportValidationError("options must be an object")
    fmt_raw = str(options.get("format") or OutputFormat.PRINT.value).lower()
    try:
        fmt = OutputFormat(fmt_raw)
    except ValueError:
        raise ReportValidationError(f"Unsupported format: {fmt_raw!r}") from None

    visuals_raw = options.get("visuals") or {}
    visuals = Visuals(
        charts=bool(visuals_raw.get("charts", False)),
        summary=bool(visuals_raw.get("summary", True)),
    )

    requester = requested_by or payload.get("requestedBy") or "System"
    return ReportRequest(
        sections=tuple(sections),
        filters=parse_filter(payload.get("filters")),
        format=fmt,
        requested_by=str(requester),
        visuals=visuals,
    )


# ============================================================================
# Report Engine
# ============================================================================

class ReportEngine:
    """Orchestrates aggregation, chart rendering and document writing.

    ``store`` and ``chart_renderer`` are injectable; by default the engine
    reads the SQLite record store and draws with matplotlib when it is
    installed.
    """

    def __init__(
        self,
        store=None,
        chart_renderer: Optional[ChartRenderer] = None,
        output_dir: Optional[Path] = None,
    ):
        self.store = store if store is not None else TaskRecordStore()
        self.chart_renderer = chart_renderer if chart_renderer is not None else get_chart_renderer()
        self.output_dir = output_dir

    # ------------------------------------------------------------------ #
    # generate
    # ------------------------------------------------------------------ #

    def generate(self, request: ReportRequest) -> ReportArtifact:
        """Generate one report file and return its descriptor."""
        sections = self._validate(request)
        specs = [SECTIONS[s] for s in sections]
        started = time.monotonic()

        logger.info(
            "REPORT_REQUESTED sections=%s format=%s requested_by=%s",
            [s.value for s in sections], request.format.value, request.requested_by,
        )

        try:
            out_dir = ensure_output_dir(Path(self.output_dir) if self.output_dir else get_output_dir())
        except OSError as exc:
            raise ReportWriteError(f"Output directory unavailable: {exc}") from exc

        local_now = get_local_now()
        try:
            data = Aggregator(self.store).build(
                request.filters, self._dataset_keys(specs, request.visuals),
                local_now.replace(tzinfo=None),
            )
        except ReportAggregationError as exc:
            logger.error("Report aggregation failed:\n%s", traceback.format_exc())
            self._audit("report_failed", request, f"Aggregation failed: {exc}")
            raise

        charts: Dict[str, Optional[ChartImage]] = {}
        if request.visuals.charts and get_config("charts_enabled", True):
            charts = self._render_charts(specs, data)

        generated = format_time_for_display(local_now)
        try:
            if request.format is OutputFormat.WORKBOOK:
                payload = self._write_workbook(request, specs, data, charts, generated)
            else:
                payload = self._write_print(request, specs, data, charts, generated)
        except Exception as exc:
            logger.error("Report layout failed:\n%s", traceback.format_exc())
            self._audit("report_failed", request, f"Write failed: {exc}")
            raise ReportWriteError(f"Could not lay out the report: {exc}") from exc

        try:
            artifact = self._persist(payload, out_dir, request.format)
        except ReportWriteError as exc:
            logger.error("Report write failed:\n%s", traceback.format_exc())
            self._audit("report_failed", request, str(exc))
            raise

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            "REPORT_GENERATED file=%s records=%d charts=%d took=%.0fms",
            artifact.filename, data.record_count,
            sum(1 for c in charts.values() if c is not None and c.available), elapsed_ms,
        )
        self._audit("report_generated", request, artifact.filename)
        return artifact

    @staticmethod
    def _validate(request: ReportRequest) -> List[ReportSection]:
        if not request.sections:
            raise ReportValidationError("Select at least one report section")
        if not isinstance(request.format, OutputFormat):
            raise ReportValidationError(f"Unsupported format: {request.format!r}")

        sections: List[ReportSection] = []
        for section in request.sections:
            if not isinstance(section, ReportSection):
                raise ReportValidationError(f"Unknown report section: {section!r}")
            if section not in sections:
                sections.append(section)
        validate_filter(request.filters)
        return sections

    @staticmethod
    def _dataset_keys(specs: Sequence[SectionSpec], visuals: Visuals) -> List[DatasetKey]:
        keys = [key for spec in specs for key in spec.datasets]
        if visuals.summary:
            keys.append(DatasetKey.TOTALS)
        return keys

    # ------------------------------------------------------------------ #
    # Charts
    # ------------------------------------------------------------------ #

    def _render_charts(
        self, specs: Sequence[SectionSpec], data: AggregatedDataset
    ) -> Dict[str, Optional[ChartImage]]:
        settings = ChartSettings(
            width=int(get_config("chart_width", 900)),
            height=int(get_config("chart_height", 420)),
            max_chart_ms=int(get_config("max_chart_ms", 6000)),
            max_heatmap_ms=int(get_config("max_heatmap_ms", 6000)),
        )
        images: Dict[str, Optional[ChartImage]] = {}
        for spec in specs:
            try:
                chart_requests = spec.build_charts(data, settings)
            except Exception as exc:
                logger.warning("Chart setup for %s failed: %s", spec.section.value, exc)
                continue
            for chart in chart_requests:
                try:
                    images[chart.key] = self.chart_renderer.render(chart.spec, chart.budget_ms)
                except Exception as exc:
                    logger.warning("Chart %s failed, omitted: %s", chart.key, exc)
                    images[chart.key] = None
        return images

    # ------------------------------------------------------------------ #
    # Writers
    # ------------------------------------------------------------------ #

    def _write_print(self, request, specs, data, charts, generated) -> bytes:
        pw = PaginatedWriter(
            title=REPORT_TITLE,
            footer_text=get_config("footer_text", DEFAULT_FOOTER),
        ).init()

        pw.heading(REPORT_TITLE, 1)
        pw.paragraph(f"Generated: {generated}", size=10)
        pw.paragraph(f"Requested By: {request.requested_by}", size=10)
        pw.heading("Report Types", 2)
        pw.paragraph(", ".join(spec.title for spec in specs))
        pw.heading("Filters", 2)
        for line in _filter_lines(request.filters):
            pw.paragraph(line, size=10)

        if request.visuals.summary and data.totals is not None:
            pw.heading("Key Figures", 2)
            st = data.totals.status
            pw.table(
                [["Tasks", "Pending", "In Progress", "Completed", "Cancelled"],
                 [data.record_count, st.pending, st.in_progress, st.completed, st.cancelled]],
                [pw.CONTENT_W / 5] * 5,
            )
        pw.rule()

        for spec in specs:
            pw.section_gap()
            spec.write_print(pw, data, charts)
            pw.rule()

        return pw.finish()

    def _write_workbook(self, request, specs, data, charts, generated) -> bytes:
        xw = WorkbookWriter().init()
        flt = request.filters.to_dict()
        xw.add_summary(SummaryMeta(
            generated=generated,
            requested_by=request.requested_by,
            sections=[spec.title for spec in specs],
            date_from=flt["dateFrom"],
            date_to=flt["dateTo"],
            departments=flt["departments"],
            categories=flt["categories"],
            staff=flt["staff"],
            footnote=get_config("footer_text", DEFAULT_FOOTER),
        ))
        for spec in specs:
            spec.write_sheet(xw, data, charts)
        return xw.finish()

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def _persist(self, payload: bytes, out_dir: Path, fmt: OutputFormat) -> ReportArtifact:
        """Write *payload* to a temp file, then link it in under a fresh name."""
        prefix = get_config("report_prefix", "cmms-report")
        tmp_path: Optional[Path] = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=str(out_dir), prefix=".partial-", suffix=".tmp")
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            target = _claim_target(tmp_path, out_dir, prefix, fmt.extension)
        except OSError as exc:
            raise ReportWriteError(f"Could not write report file: {exc}") from exc
        finally:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)

        return ReportArtifact(
            filename=target.name,
            absolute_path=target.resolve(),
            mime_type=fmt.mime_type,
        )

    @staticmethod
    def _audit(action: str, request: ReportRequest, details: str):
        try:
            AuditRepository.log(
                action=action,
                category="reports",
                user_name=request.requested_by,
                new_value=",".join(s.value for s in request.sections),
                details=details,
            )
        except sqlite3.Error as exc:
            logger.warning("Audit log write failed: %s", exc)


def _claim_target(tmp_path: Path, out_dir: Path, prefix: str, extension: str) -> Path:
    """Hard-link *tmp_path* under the first free ``<prefix>-<ms>.<ext>`` name."""
    stamp = time.time_ns() // 1_000_000
    while True:
        target = out_dir / f"{prefix}-{stamp}.{extension}"
        try:
            os.link(tmp_path, target)
        except FileExistsError:
            stamp += 1
            continue
        return target


def _filter_lines(flt: Filter) -> List[str]:
    d = flt.to_dict()
    return [
        f"Date range: {d['dateFrom'] or 'Any'} to {d['dateTo'] or 'Any'}",
        f"Departments: {', '.join(d['departments']) or 'All'}",
        f"Categories: {', '.join(d['categories']) or 'All'}",
        f"Staff: {d['staff'] or 'All'}",
    ]


# ============================================================================
# Singleton
# ============================================================================

_engine: Optional[ReportEngine] = None


def get_engine() -> ReportEngine:
    """Return (or create) the global ReportEngine singleton."""
    global _engine
    if _engine is None:
        _engine = ReportEngine()
    return _engine


def reset_engine():
    """Drop the singleton so the next get_engine() picks up fresh wiring."""
    global _engine
    _engine = None


def generate_report(payload: Dict[str, Any], requested_by: Optional[str] = None) -> ReportArtifact:
    """Parse a JSON request body and generate the report it describes."""
    return get_engine().generate(parse_report_request(payload, requested_by))


__all__ = [
    "ReportEngine",
    "ReportError",
    "generate_report",
    "get_engine",
    "parse_report_request",
    "reset_engine",
]
