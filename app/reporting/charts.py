# ============================================================================
# SERVIX CMMS - Matplotlib Chart Renderer
# ============================================================================
# Renders report datasets to PNG bytes at an exact pixel size.
#
# Rendering is an injected capability: MatplotlibChartRenderer draws,
# NullChartRenderer always answers "no image".  Every render is raced
# against a soft time budget; a timeout or a drawing failure degrades to a
# ChartImage with data=None, which every writer treats as "omit the visual".
#
# Figures are built with the object API (Figure + Agg canvas) rather than
# pyplot so concurrent requests never share pyplot's global figure state.
# ============================================================================

import io
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .models import ChartImage

logger = logging.getLogger("reporting.charts")

try:
    import matplotlib
    matplotlib.use("Agg")  # non-interactive backend
    from matplotlib.backends.backend_agg import FigureCanvasAgg
    from matplotlib.figure import Figure
    import numpy as np
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False
    logger.warning("matplotlib not installed - chart generation disabled")

# ---------------------------------------------------------------------------
# Servix colours
# ---------------------------------------------------------------------------

AMBER = "#fbbf24"
BLUE = "#3b82f6"
GREEN = "#10b981"
RED = "#ef4444"
INDIGO = "#6366f1"
ORANGE = "#f59e0b"
GRAY_500 = "#6b7280"
GRAY_200 = "#e5e7eb"
WHITE = "#ffffff"

STATUS_COLORS = [AMBER, BLUE, GREEN, RED]
PALETTE = [GREEN, BLUE, ORANGE, RED, INDIGO, "#7c3aed", "#0891b2", "#c026d3"]

DPI = 100


# ============================================================================
# Chart specification
# ============================================================================

@dataclass(frozen=True)
class Series:
    label: str
    values: Tuple[float, ...]
    color: Optional[str] = None


@dataclass(frozen=True)
class ChartSpec:
    """What to draw.  ``kind`` is one of pie / bar / grouped_bar / line."""

    kind: str
    labels: Tuple[str, ...]
    series: Tuple[Series, ...]
    title: str = ""
    colors: Tuple[str, ...] = field(default_factory=tuple)
    width: int = 900
    height: int = 420


# ============================================================================
# Soft timeout
# ============================================================================

TIMED_OUT = object()


def run_with_soft_timeout(fn: Callable[..., Any], budget_ms: float, *args) -> Any:
    """Run *fn* in a worker thread and wait at most *budget_ms*.

    Returns the function's result, or ``TIMED_OUT`` when the budget expires
    first.  Exceptions raised by *fn* within the budget propagate.  A timed
    out call keeps running in its thread; its result is discarded.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chart-render")
    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=max(budget_ms, 0) / 1000.0)
    except FuturesTimeout:
        future.cancel()
        return TIMED_OUT
    finally:
        executor.shutdown(wait=False)


# ============================================================================
# Heat colouring
# ============================================================================

def interpolate_color(t: float) -> Tuple[int, int, int]:
    """Green (t=0) through yellow (t=0.5) to red (t=1)."""
    t = max(0.0, min(1.0, t))
    r = 255 if t > 0.5 else round(510 * t)
    g = round(510 * (1 - t)) if t > 0.5 else 255
    return r, g, 80


def heat_colors(counts: Sequence[float]) -> List[str]:
    """One hex colour per count, scaled on its fraction of the series max."""
    peak = max([1, *counts])
    colors = []
    for value in counts:
        r, g, b = interpolate_color(value / peak)
        colors.append(f"#{r:02x}{g:02x}{b:02x}")
    return colors


# ============================================================================
# Renderers
# ============================================================================

class ChartRenderer:
    """Base capability: race ``draw`` against a time budget."""

    available = True

    def render(self, spec: ChartSpec, budget_ms: float) -> ChartImage:
        try:
            result = run_with_soft_timeout(self.draw, budget_ms, spec)
        except Exception as exc:
            logger.warning("Chart %r failed to render: %s", spec.title or spec.kind, exc)
            return _no_image(spec)

        if result is TIMED_OUT:
            logger.warning(
                "Chart %r exceeded %sms budget - omitted", spec.title or spec.kind, budget_ms
            )
            return _no_image(spec)
        return ChartImage(kind=spec.kind, data=result or None, width=spec.width, height=spec.height)

    def draw(self, spec: ChartSpec) -> bytes:
        raise NotImplementedError


class NullChartRenderer(ChartRenderer):
    """Renderer used when no charting capability is present."""

    available = False

    def render(self, spec: ChartSpec, budget_ms: float) -> ChartImage:
        return _no_image(spec)

    def draw(self, spec: ChartSpec) -> bytes:
        return b""


def _no_image(spec: ChartSpec) -> ChartImage:
    return ChartImage(kind=spec.kind, data=None, width=spec.width, height=spec.height)


class MatplotlibChartRenderer(ChartRenderer):
    """Draws pie / bar / grouped-bar / line charts with matplotlib."""

    def draw(self, spec: ChartSpec) -> bytes:
        fig = Figure(figsize=(spec.width / DPI, spec.height / DPI), dpi=DPI, facecolor=WHITE)
        FigureCanvasAgg(fig)
        ax = fig.add_subplot(1, 1, 1)

        values = [v for s in spec.series for v in s.values]
        if not spec.labels or not any(values):
            _draw_empty(ax)
        elif spec.kind == "pie":
            _draw_pie(ax, spec)
        elif spec.kind == "bar":
            _draw_bar(ax, spec)
        elif spec.kind == "grouped_bar":
            _draw_grouped_bar(ax, spec)
        elif spec.kind == "line":
            _draw_line(ax, spec)
        else:
            raise ValueError(f"Unknown chart kind: {spec.kind}")

        if spec.title:
            ax.set_title(spec.title, fontsize=13, fontweight="bold", pad=12)
        fig.tight_layout()
        return _fig_to_png(fig)


def get_chart_renderer() -> ChartRenderer:
    """Matplotlib renderer when available, otherwise the null renderer."""
    if HAS_MATPLOTLIB:
        return MatplotlibChartRenderer()
    return NullChartRenderer()


# ============================================================================
# Drawing helpers
# ============================================================================

def _fig_to_png(fig) -> bytes:
    """Serialize a Figure to PNG bytes at its nominal pixel size."""
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=DPI, facecolor=WHITE, edgecolor="none")
    return buf.getvalue()


def _draw_empty(ax):
    ax.axis("off")
    ax.text(0.5, 0.5, "No data for the selected filters", ha="center", va="center",
            fontsize=12, color=GRAY_500, transform=ax.transAxes)


def _style_axes(ax, many_labels: bool, labels: Sequence[str]):
    ax.set_xticks(range(len(labels)))
    if many_labels:
        ax.set_xticklabels(labels, rotation=45, ha="right", fontsize=8)
    else:
        ax.set_xticklabels(labels, fontsize=9)
    ax.tick_params(axis="y", labelsize=9)
    ax.grid(axis="y", color=GRAY_200, alpha=0.8)
    ax.set_axisbelow(True)
    for side in ("top", "right"):
        ax.spines[side].set_visible(False)


def _draw_pie(ax, spec: ChartSpec):
    values = list(spec.series[0].values)
    colors = list(spec.colors) or [PALETTE[i % len(PALETTE)] for i in range(len(values))]
    # zero wedges would only clutter the legend with 0% labels
    shown = [(l, v, c) for l, v, c in zip(spec.labels, values, colors) if v > 0]
    wedges, _texts, autotexts = ax.pie(
        [v for _, v, _ in shown], labels=None, autopct="%1.0f%%", startangle=90,
        colors=[c for _, _, c in shown],
        wedgeprops=dict(edgecolor="white", linewidth=2),
    )
    for t in autotexts:
        t.set_fontsize(9)
        t.set_fontweight("bold")
        t.set_color("white")
    ax.legend(wedges, [l for l, _, _ in shown], loc="center left",
              bbox_to_anchor=(1, 0.5), fontsize=9, framealpha=0.9)
    ax.axis("equal")


def _draw_bar(ax, spec: ChartSpec):
    series = spec.series[0]
    colors = list(spec.colors) or [series.color or INDIGO] * len(spec.labels)
    bars = ax.bar(range(len(spec.labels)), series.values, color=colors, width=0.65,
                  edgecolor="white", linewidth=0.5, label=series.label)
    for bar_obj, val in zip(bars, series.values):
        if val > 0:
            ax.text(bar_obj.get_x() + bar_obj.get_width() / 2, bar_obj.get_height(),
                    f"{val:g}", ha="center", va="bottom", fontsize=8, color=GRAY_500)
    _style_axes(ax, len(spec.labels) > 8, spec.labels)


def _draw_grouped_bar(ax, spec: ChartSpec):
    x = np.arange(len(spec.labels))
    n = len(spec.series)
    width = 0.8 / n
    for i, s in enumerate(spec.series):
        offset = (i - (n - 1) / 2) * width
        ax.bar(x + offset, s.values, width=width, label=s.label,
               color=s.color or PALETTE[i % len(PALETTE)], edgecolor="white", linewidth=0.5)
    _style_axes(ax, len(spec.labels) > 6, spec.labels)
    ax.legend(fontsize=8, loc="upper right", framealpha=0.9)


def _draw_line(ax, spec: ChartSpec):
    x = list(range(len(spec.labels)))
    for i, s in enumerate(spec.series):
        color = s.color or PALETTE[i % len(PALETTE)]
        ax.plot(x, s.values, marker="o", markersize=4, linewidth=2, color=color, label=s.label)
        ax.fill_between(x, s.values, color=color, alpha=0.15)
    ax.set_ylim(bottom=0)
    _style_axes(ax, len(spec.labels) > 10, spec.labels)
    ax.legend(fontsize=9, loc="upper left", framealpha=0.9)
