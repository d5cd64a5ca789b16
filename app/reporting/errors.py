# ============================================================================
# SERVIX CMMS - Reporting Errors
# ============================================================================
# Every failure the engine reports derives from ReportError.  Chart
# degradation is deliberately absent: a missing chart is not an error.
# ============================================================================


class ReportError(Exception):
    """Base class for report generation failures."""


class ReportValidationError(ReportError):
    """The request was rejected before any aggregation work began."""


class ReportAggregationError(ReportError):
    """A record-store query or an aggregate failed."""


class ReportWriteError(ReportError):
    """Layout, serialization, or the final file write failed."""
