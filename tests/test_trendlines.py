import pytest

from conftest import BASE_TS, INTERVAL_MS
from trendbot.models import SwingPoint
from trendbot.trendlines import TrendlineFitter, fit_trendline


def _high(position, price):
    return SwingPoint("BTCUSD", "HIGH", price, BASE_TS + position * INTERVAL_MS, position)


def test_two_points_give_exact_line():
    line = fit_trendline([_high(20, 105.0), _high(10, 110.0)], "RESISTANCE")

    assert line.slope == pytest.approx(-0.5)
    assert line.value_at(10) == pytest.approx(110.0)
    assert line.value_at(20) == pytest.approx(105.0)
    assert line.defined_at_position == 20
    assert line.defined_at == BASE_TS + 20 * INTERVAL_MS
    assert [p.position for p in line.anchors] == [10, 20]


def test_three_points_use_least_squares():
    line = fit_trendline([_high(0, 1.0), _high(1, 3.0), _high(2, 2.0)], "RESISTANCE")

    assert line.slope == pytest.approx(0.5)
    assert line.intercept == pytest.approx(1.5)


def test_fewer_than_two_points_give_no_line():
    assert fit_trendline([], "SUPPORT") is None
    assert fit_trendline([_high(5, 100.0)], "SUPPORT") is None


def test_stale_line_is_hidden_but_kept():
    fitter = TrendlineFitter(max_age=5)
    fitter.refit("BTCUSD", "RESISTANCE", [_high(4, 101.0), _high(10, 100.0)])

    assert fitter.active("BTCUSD", "RESISTANCE", 15) is not None
    assert fitter.active("BTCUSD", "RESISTANCE", 16) is None
    assert fitter.line("BTCUSD", "RESISTANCE") is not None
    assert fitter.active("BTCUSD", "SUPPORT", 15) is None


def test_refit_replaces_line():
    fitter = TrendlineFitter(max_age=50)
    fitter.refit("BTCUSD", "RESISTANCE", [_high(0, 100.0), _high(10, 110.0)])
    fitter.refit("BTCUSD", "RESISTANCE", [_high(10, 110.0), _high(20, 100.0)])

    assert fitter.line("BTCUSD", "RESISTANCE").slope == pytest.approx(-1.0)
