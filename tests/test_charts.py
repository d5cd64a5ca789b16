"""
SERVIX CMMS — Chart Renderer Tests
===================================
Tests: soft timeout, null renderer, failure degradation, heat colours,
       matplotlib PNG output
"""

import io
import time

import pytest

from app.reporting import charts
from app.reporting.charts import (
    TIMED_OUT, ChartRenderer, ChartSpec, MatplotlibChartRenderer, NullChartRenderer,
    Series, heat_colors, interpolate_color, run_with_soft_timeout,
)


def _spec(kind="bar", width=300, height=200):
    return ChartSpec(
        kind=kind,
        labels=("A", "B", "C"),
        series=(Series("Count", (3, 1, 2)),),
        width=width, height=height,
    )


class SlowRenderer(ChartRenderer):
    def draw(self, spec):
        time.sleep(0.05)
        return b"\x89PNG slow"


class BrokenRenderer(ChartRenderer):
    def draw(self, spec):
        raise RuntimeError("backend exploded")


class TestSoftTimeout:

    def test_result_within_budget(self):
        assert run_with_soft_timeout(lambda x: x * 2, 1000, 21) == 42

    def test_budget_expiry_returns_sentinel(self):
        assert run_with_soft_timeout(time.sleep, 1, 0.05) is TIMED_OUT

    def test_exception_within_budget_propagates(self):
        def boom():
            raise ValueError("x")
        with pytest.raises(ValueError):
            run_with_soft_timeout(boom, 1000)


class TestRenderers:

    def test_slow_render_with_tiny_budget_yields_no_image(self):
        image = SlowRenderer().render(_spec(), budget_ms=1)
        assert image.data is None
        assert not image.available

    def test_slow_render_with_enough_budget(self):
        image = SlowRenderer().render(_spec(), budget_ms=2000)
        assert image.data == b"\x89PNG slow"
        assert (image.width, image.height) == (300, 200)

    def test_draw_failure_yields_no_image(self):
        image = BrokenRenderer().render(_spec(), budget_ms=1000)
        assert image.data is None

    def test_null_renderer(self):
        renderer = NullChartRenderer()
        assert renderer.available is False
        image = renderer.render(_spec(kind="pie"), budget_ms=1000)
        assert image.data is None
        assert image.kind == "pie"

    def test_get_chart_renderer_matches_capability(self):
        renderer = charts.get_chart_renderer()
        if charts.HAS_MATPLOTLIB:
            assert isinstance(renderer, MatplotlibChartRenderer)
        else:
            assert isinstance(renderer, NullChartRenderer)


class TestHeatColors:

    def test_endpoints(self):
        assert interpolate_color(0) == (0, 255, 80)
        assert interpolate_color(1) == (255, 0, 80)
        assert interpolate_color(0.5) == (255, 255, 80)

    def test_busiest_is_red(self):
        colors = heat_colors([10, 5, 0])
        assert colors[0] == "#ff0050"
        assert colors[2] == "#00ff50"

    def test_all_zero_counts(self):
        assert heat_colors([0, 0]) == ["#00ff50", "#00ff50"]


@pytest.mark.skipif(not charts.HAS_MATPLOTLIB, reason="matplotlib not installed")
class TestMatplotlibRenderer:

    @pytest.mark.parametrize("kind", ["pie", "bar", "line"])
    def test_png_at_requested_size(self, kind):
        from PIL import Image

        image = MatplotlibChartRenderer().render(_spec(kind=kind), budget_ms=30000)
        assert image.data.startswith(b"\x89PNG")
        assert Image.open(io.BytesIO(image.data)).size == (300, 200)

    def test_grouped_bar(self):
        spec = ChartSpec(
            kind="grouped_bar",
            labels=("Ama", "Kofi"),
            series=(Series("Completed", (2, 1)), Series("Pending", (0, 3))),
            width=400, height=240,
        )
        image = MatplotlibChartRenderer().render(spec, budget_ms=30000)
        assert image.available

    def test_empty_data_still_draws(self):
        spec = ChartSpec(kind="bar", labels=(), series=(Series("Count", ()),), width=300, height=200)
        assert MatplotlibChartRenderer().render(spec, budget_ms=30000).available

    def test_unknown_kind_degrades(self):
        assert MatplotlibChartRenderer().render(_spec(kind="radar"), budget_ms=30000).data is None
