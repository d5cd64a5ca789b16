# ============================================================================
# SERVIX CMMS - Paginated PDF Writer
# ============================================================================
# Vertical-flow layout onto fixed A4 portrait pages.
#
# The writer owns a LayoutCursor (page, x, y) where y is the top of the
# next free line.  Every drawing operation reserves the space it needs
# first; when the current page cannot hold it the writer stamps the footer
# on that page, opens a new page and resets the cursor to the content
# origin.  Nothing is ever drawn below the footer band.
#
# Pages are recorded as display lists and replayed onto a reportlab canvas
# in finish(), so footers ("Page N of M") can be stamped on any page and
# each page records whether its footer has already been drawn.
# ============================================================================

import io
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from reportlab.lib import colors
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

logger = logging.getLogger("reporting.pdf_writer")

DEFAULT_FOOTER = "Generated by Servix CMMS"
ELLIPSIS = "…"


def normalize_column_widths(widths: Sequence[float], content_width: float) -> List[float]:
    """Scale *widths* by one common ratio when their sum exceeds *content_width*.

    Column count never changes.  When scaling happens the last column
    absorbs the rounding residue so the widths sum to exactly
    *content_width*.
    """
    widths = [float(w) for w in widths]
    if any(w < 0 for w in widths):
        raise ValueError("column widths must be non-negative")
    total = sum(widths)
    if total <= content_width or not widths:
        return widths
    ratio = content_width / total
    scaled = [w * ratio for w in widths]
    scaled[-1] = max(0.0, content_width - sum(scaled[:-1]))
    return scaled


@dataclass
class LayoutCursor:
    page: int
    x: float
    y: float


@dataclass(frozen=True)
class TextStyle:
    size: float
    color: Any
    bold: bool = False


@dataclass
class Page:
    number: int
    ops: List[Tuple] = field(default_factory=list)
    footer_drawn: bool = False


class PaginatedWriter:
    """Multi-section print document writer.

    Call ``init()`` once, then any mix of ``heading``, ``paragraph``,
    ``rule``, ``section_gap``, ``table`` and ``image``, and finally
    ``finish()`` for the PDF bytes.  An instance produces one document.
    """

    PAGE_W = 595
    PAGE_H = 842
    MARGIN = 36
    CONTENT_W = PAGE_W - MARGIN * 2
    FOOTER_BAND = 24          # reserved above the bottom margin
    SECTION_GAP = 32
    SECTION_ROOM = 140        # minimum room left to open a new section
    RULE_GAP = 12
    LINE_SPACING = 6
    TABLE_GAP = 6
    IMAGE_GAP = 10
    CELL_PAD = 4

    HEADER_TINT = colors.Color(0.95, 0.97, 1)
    ZEBRA_TINT = colors.Color(0.985, 0.985, 0.985)
    RULE_COLOR = colors.Color(0.85, 0.87, 0.9)
    FOOTER_COLOR = colors.Color(0.35, 0.35, 0.35)

    def __init__(self, title: str = "CMMS Report", footer_text: str = DEFAULT_FOOTER):
        self.title = title
        self.footer_text = footer_text
        self.fonts = {"regular": "Helvetica", "bold": "Helvetica-Bold"}
        self.styles = {
            1: TextStyle(20, colors.black, bold=True),
            2: TextStyle(14, colors.black, bold=True),
            3: TextStyle(12, colors.Color(0.1, 0.1, 0.25), bold=True),
            "body": TextStyle(11, colors.Color(0.15, 0.15, 0.15)),
            "head": TextStyle(11, colors.Color(0.1, 0.1, 0.25), bold=True),
        }
        self.cursor: Optional[LayoutCursor] = None
        self._pages: Optional[List[Page]] = None
        self._finished = False

    # ------------------------------------------------------------------
    # Page management
    # ------------------------------------------------------------------

    def init(self) -> "PaginatedWriter":
        if self._pages is not None:
            raise RuntimeError("PaginatedWriter.init() called twice")
        self._pages = []
        self._add_page()
        return self

    @property
    def pages(self) -> Tuple[Page, ...]:
        return tuple(self._pages or ())

    @property
    def page_count(self) -> int:
        return len(self._pages or ())

    @property
    def bottom_limit(self) -> float:
        return self.MARGIN + self.FOOTER_BAND

    @property
    def top(self) -> float:
        return self.PAGE_H - self.MARGIN

    @property
    def usable_height(self) -> float:
        return self.top - self.bottom_limit

    def remaining(self) -> float:
        """Vertical space left on the current page above the footer band."""
        self._require_open()
        return self.cursor.y - self.bottom_limit

    def _require_open(self):
        if self._pages is None:
            raise RuntimeError("PaginatedWriter.init() must be called before drawing")
        if self._finished:
            raise RuntimeError("PaginatedWriter already finished")

    def _current(self) -> Page:
        return self._pages[-1]

    def _add_page(self):
        page = Page(number=len(self._pages) + 1)
        self._pages.append(page)
        self.cursor = LayoutCursor(page=page.number, x=self.MARGIN, y=self.top)

    def _stamp_footer(self, page: Page):
        if page.footer_drawn:
            return
        page.ops.append(("footer",))
        page.footer_drawn = True

    def _page_break(self):
        self._stamp_footer(self._current())
        self._add_page()

    def _at_page_top(self) -> bool:
        return self.cursor.y >= self.top

    def ensure_space(self, need: float):
        """Page break unless *need* points fit above the footer band.

        A fresh page is never broken again: content taller than a whole
        page starts at the top and is expected to page itself further.
        """
        self._require_open()
        if self.cursor.y - need < self.bottom_limit and not self._at_page_top():
            self._page_break()

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def _font(self, bold: bool) -> str:
        return self.fonts["bold" if bold else "regular"]

    def _text_lines(self, text: Any, font: str, size: float) -> List[str]:
        text = "" if text is None else str(text)
        lines: List[str] = []
        for chunk in text.split("\n"):
            lines.extend(simpleSplit(chunk, font, size, self.CONTENT_W) or [""])
        return lines

    def _draw_line_of_text(self, line: str, font: str, size: float, color):
        # cursor.y is the top of the line; the baseline sits one size below
        self._current().ops.append(
            ("text", self.cursor.x, self.cursor.y - size, line, font, size, color)
        )
        self.cursor.y -= size + self.LINE_SPACING

    def heading(self, text: str, level: int = 1):
        """Bold heading; reserves room for itself plus a following line."""
        self._require_open()
        style = self.styles.get(level, self.styles[3])
        font = self._font(True)
        lines = self._text_lines(text, font, style.size)
        # room for the heading and roughly one line of what follows it
        self.ensure_space(style.size * 3 + (len(lines) - 1) * (style.size + self.LINE_SPACING))
        for line in lines:
            self._draw_line_of_text(line, font, style.size, style.color)

    def paragraph(self, text: Any, size: Optional[float] = None, bold: bool = False, color=None):
        """Wrapped body text; each line pages on its own if needed."""
        self._require_open()
        body = self.styles["body"]
        size = size or body.size
        color = color if color is not None else body.color
        font = self._font(bold)
        for line in self._text_lines(text, font, size):
            self.ensure_space(size + self.LINE_SPACING)
            self._draw_line_of_text(line, font, size, color)

    def rule(self):
        self._require_open()
        self.ensure_space(self.RULE_GAP)
        y = self.cursor.y
        self._current().ops.append(
            ("line", self.cursor.x, y, self.cursor.x + self.CONTENT_W, y, 0.5, self.RULE_COLOR)
        )
        self.cursor.y -= self.RULE_GAP

    def section_gap(self):
        self._require_open()
        self.cursor.y -= self.SECTION_GAP
        if self.cursor.y < self.MARGIN + self.SECTION_ROOM:
            self._page_break()

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def table(self, rows: Sequence[Sequence[Any]], column_widths: Sequence[float], font_size: float = 11):
        """Draw *rows* (``rows[0]`` is the header) in columns of *column_widths*.

        Widths are normalized to the content width first.  The whole table
        height (capped at one page) is reserved once; after that each body
        row re-checks and pages mid-table, repeating the header.
        """
        self._require_open()
        if not rows:
            return
        header = list(rows[0])
        if len(column_widths) != len(header):
            raise ValueError(
                f"table has {len(header)} columns but {len(column_widths)} widths"
            )
        widths = normalize_column_widths(column_widths, self.CONTENT_W)
        row_h = font_size + 8

        first_block = row_h * min(len(rows), 2)
        full = len(rows) * row_h + self.TABLE_GAP
        self.ensure_space(max(first_block, min(full, self.usable_height)))

        self._draw_row(header, widths, font_size, row_h, bold=True, fill=self.HEADER_TINT)
        for index in range(1, len(rows)):
            if self.cursor.y - row_h < self.bottom_limit:
                self._page_break()
                self._draw_row(header, widths, font_size, row_h, bold=True, fill=self.HEADER_TINT)
            fill = self.ZEBRA_TINT if index % 2 == 0 else None
            self._draw_row(rows[index], widths, font_size, row_h, bold=False, fill=fill)

        self.cursor.y -= self.TABLE_GAP

    def _draw_row(self, cells, widths, font_size, row_h, bold, fill):
        page = self._current()
        top = self.cursor.y
        x = self.cursor.x
        if fill is not None:
            page.ops.append(("rect", x, top - row_h, sum(widths), row_h, fill))

        font = self._font(bold)
        style = self.styles["head" if bold else "body"]
        baseline = top - row_h / 2 - font_size * 0.35
        cx = x
        for i, width in enumerate(widths):
            value = cells[i] if i < len(cells) else ""
            text = self._fit(value, font, font_size, width - self.CELL_PAD * 2)
            if text:
                page.ops.append(("text", cx + self.CELL_PAD, baseline, text, font, font_size, style.color))
            cx += width
        self.cursor.y -= row_h

    @staticmethod
    def _fit(value: Any, font: str, size: float, max_w: float) -> str:
        """Clip *value* with an ellipsis so it fits *max_w* points."""
        text = "" if value is None else str(value)
        if max_w <= 0:
            return ""
        if stringWidth(text, font, size) <= max_w:
            return text
        while text and stringWidth(text + ELLIPSIS, font, size) > max_w:
            text = text[:-1]
        return text + ELLIPSIS if text else ""

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def image(self, data: Optional[bytes], width: float, height: float, label: Optional[str] = None):
        """Place a PNG scaled down (never up) to the content width.

        Absent *data* is a no-op: the cursor does not move.
        """
        if not data:
            return
        self._require_open()
        if width <= 0 or height <= 0:
            raise ValueError("image dimensions must be positive")

        label_style = self.styles[2]
        label_need = label_style.size + self.LINE_SPACING if label else 0
        scale = min(1.0, self.CONTENT_W / width)
        max_h = self.usable_height - label_need - self.IMAGE_GAP
        if height * scale > max_h:
            scale = max_h / height
        w = width * scale
        h = height * scale

        self.ensure_space(h + label_need + self.IMAGE_GAP)
        if label:
            self._draw_line_of_text(label, self._font(True), label_style.size, label_style.color)
        self._current().ops.append(("image", data, self.cursor.x, self.cursor.y - h, w, h))
        self.cursor.y -= h + self.IMAGE_GAP

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def finish(self) -> bytes:
        """Stamp footers and serialize the document to PDF bytes."""
        self._require_open()
        self._stamp_footer(self._current())
        for page in self._pages:
            self._stamp_footer(page)
        self._finished = True

        buf = io.BytesIO()
        pdf = canvas.Canvas(buf, pagesize=(self.PAGE_W, self.PAGE_H), pageCompression=1)
        pdf.setTitle(self.title)
        pdf.setCreator(self.footer_text)
        total = len(self._pages)
        for page in self._pages:
            for op in page.ops:
                self._replay(pdf, op, page.number, total)
            pdf.showPage()
        pdf.save()

        logger.debug("PDF document serialized: %d pages", total)
        return buf.getvalue()

    def _replay(self, pdf, op, page_number: int, total: int):
        kind = op[0]
        if kind == "text":
            _, x, y, text, font, size, color = op
            pdf.setFont(font, size)
            pdf.setFillColor(color)
            pdf.drawString(x, y, text)
        elif kind == "line":
            _, x1, y1, x2, y2, thickness, color = op
            pdf.setStrokeColor(color)
            pdf.setLineWidth(thickness)
            pdf.line(x1, y1, x2, y2)
        elif kind == "rect":
            _, x, y, w, h, color = op
            pdf.setFillColor(color)
            pdf.rect(x, y, w, h, stroke=0, fill=1)
        elif kind == "image":
            _, data, x, y, w, h = op
            pdf.drawImage(ImageReader(io.BytesIO(data)), x, y, width=w, height=h, mask="auto")
        elif kind == "footer":
            pdf.saveState()
            pdf.setFont(self.fonts["regular"], 9)
            pdf.setFillColor(self.FOOTER_COLOR)
            pdf.drawString(self.MARGIN, self.MARGIN - 2, self.footer_text)
            pdf.drawRightString(self.PAGE_W - self.MARGIN, self.MARGIN - 2,
                                f"Page {page_number} of {total}")
            pdf.restoreState()
        else:
            raise ValueError(f"Unknown drawing op: {kind}")
