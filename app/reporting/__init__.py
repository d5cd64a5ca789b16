# ============================================================================
# SERVIX CMMS - Report Engine
# ============================================================================
# Multi-section maintenance reports over the task record store.
#
# Features:
#   - Filtered aggregation of tasks, staff, spare parts and departments
#   - Matplotlib charts with a soft per-chart time budget
#   - Paginated PDF (reportlab) and XLSX (openpyxl) output
#   - Database-backed configuration and audit logging
# ============================================================================

from .config import ReportingConfig, get_config, set_config
from .engine import ReportEngine, generate_report, get_engine, parse_report_request
from .errors import ReportAggregationError, ReportError, ReportValidationError, ReportWriteError
from .models import OutputFormat, ReportArtifact, ReportRequest, ReportSection
from .routes import register_reporting_routes

__version__ = "1.0.0"
__all__ = [
    "ReportingConfig",
    "get_config",
    "set_config",
    "ReportEngine",
    "generate_report",
    "get_engine",
    "parse_report_request",
    "ReportError",
    "ReportValidationError",
    "ReportAggregationError",
    "ReportWriteError",
    "OutputFormat",
    "ReportArtifact",
    "ReportRequest",
    "ReportSection",
    "register_reporting_routes",
]
