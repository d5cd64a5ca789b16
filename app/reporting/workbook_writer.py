# ============================================================================
# SERVIX CMMS - XLSX Workbook Writer
# ============================================================================
# Cell-indexed layout: one sheet per section, each with a styled header row
# followed by data rows.  Chart images are anchored to the right of the
# data columns so they never cover data.  The "Summary" sheet is created by
# init() and is always the first sheet.
# ============================================================================

import io
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Sequence

from openpyxl import Workbook
from openpyxl.drawing.image import Image as XLImage
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .models import ChartImage

logger = logging.getLogger("reporting.workbook")

SUMMARY_SHEET = "Summary"
IMAGE_DISPLAY_WIDTH = 520
IMAGE_COLUMN_GAP = 2       # blank columns between data and an anchored chart
ROW_HEIGHT_PX = 20         # default Excel row height in pixels


@dataclass(frozen=True)
class SummaryMeta:
    generated: str
    requested_by: str
    sections: Sequence[str]
    date_from: Optional[str]
    date_to: Optional[str]
    departments: Sequence[str]
    categories: Sequence[str]
    staff: Optional[str]
    footnote: str


class WorkbookWriter:
    """Builds one XLSX workbook.  ``init()`` first, ``finish()`` last."""

    def __init__(self, creator: str = "Servix CMMS"):
        self.creator = creator
        self.wb: Optional[Workbook] = None
        self.header_font = Font(bold=True, color="FFFFFF", size=11)
        self.header_fill = PatternFill(start_color="1E40AF", end_color="1E40AF", fill_type="solid")
        self.label_font = Font(bold=True)
        self._finished = False

    def init(self) -> "WorkbookWriter":
        if self.wb is not None:
            raise RuntimeError("WorkbookWriter.init() called twice")
        self.wb = Workbook()
        self.wb.properties.creator = self.creator
        self.wb.active.title = SUMMARY_SHEET
        return self

    def _require_open(self):
        if self.wb is None:
            raise RuntimeError("WorkbookWriter.init() must be called first")
        if self._finished:
            raise RuntimeError("WorkbookWriter already finished")

    @property
    def sheet_names(self):
        return list(self.wb.sheetnames) if self.wb is not None else []

    # ------------------------------------------------------------------
    # Sheets
    # ------------------------------------------------------------------

    def add_summary(self, meta: SummaryMeta):
        """Fill the Summary sheet with the request metadata."""
        self._require_open()
        ws = self.wb[SUMMARY_SHEET]
        self._write_header(ws, 1, ["Section", "Detail"])
        rows = [
            ("Generated", meta.generated),
            ("Requested By", meta.requested_by),
            ("Reports", ", ".join(meta.sections)),
            ("Date From", meta.date_from or "—"),
            ("Date To", meta.date_to or "—"),
            ("Departments", ", ".join(meta.departments) or "All"),
            ("Categories", ", ".join(meta.categories) or "All"),
            ("Staff", meta.staff or "All"),
            ("Footnote", meta.footnote),
        ]
        for offset, (label, value) in enumerate(rows, start=2):
            ws.cell(row=offset, column=1, value=label).font = self.label_font
            ws.cell(row=offset, column=2, value=value)
        ws.column_dimensions["A"].width = 30
        ws.column_dimensions["B"].width = 90

    def add_sheet(self, title: str):
        self._require_open()
        return self.wb.create_sheet(title=title[:31])  # Excel limits sheet name to 31 chars

    def write_table(self, ws, header: Sequence[str], rows: Sequence[Sequence[Any]], start_row: int = 1) -> int:
        """Write a header row plus data rows.  Returns the next free row."""
        self._write_header(ws, start_row, header)
        current_row = start_row + 1
        for row_data in rows:
            for col_idx, value in enumerate(row_data, 1):
                cell = ws.cell(row=current_row, column=col_idx, value=value)
                if isinstance(value, (date, datetime)):
                    cell.number_format = "yyyy-mm-dd"
            current_row += 1

        for col_idx, h in enumerate(header, 1):
            max_len = len(str(h))
            for row_data in rows[:200]:  # sample first 200 rows
                if col_idx <= len(row_data):
                    max_len = max(max_len, len(str(row_data[col_idx - 1])))
            letter = get_column_letter(col_idx)
            current = ws.column_dimensions[letter].width or 0
            ws.column_dimensions[letter].width = max(current, min(max_len + 4, 60))
        return current_row

    def _write_header(self, ws, row: int, header: Sequence[str]):
        for col_idx, h in enumerate(header, 1):
            cell = ws.cell(row=row, column=col_idx, value=h)
            cell.font = self.header_font
            cell.fill = self.header_fill
            cell.alignment = Alignment(horizontal="center")

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def add_image(self, ws, image: Optional[ChartImage], data_columns: int, row: int = 2) -> int:
        """Anchor *image* right of *data_columns* at *row*.

        Returns the first row below the image, or *row* unchanged when the
        image is absent.
        """
        self._require_open()
        if image is None or not image.data:
            return row
        picture = XLImage(io.BytesIO(image.data))
        picture.width = IMAGE_DISPLAY_WIDTH
        picture.height = round(IMAGE_DISPLAY_WIDTH * image.height / image.width)
        anchor_col = data_columns + IMAGE_COLUMN_GAP + 1
        ws.add_image(picture, f"{get_column_letter(anchor_col)}{row}")
        return row + math.ceil(picture.height / ROW_HEIGHT_PX) + 2

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def finish(self) -> bytes:
        self._require_open()
        self._finished = True
        buf = io.BytesIO()
        self.wb.save(buf)
        logger.debug("XLSX workbook serialized: %s", ", ".join(self.wb.sheetnames))
        return buf.getvalue()
