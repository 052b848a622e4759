from __future__ import annotations

import pytest

from analysis.metrics.metrics import compute_report, max_drawdown, profit_factor, sharpe_ratio
from shared.models.models import Direction, EquitySample, StopLossReason, Trade
from shared.utils.formatting import fmt_price, format_duration

HOUR = 3_600_000


def _trade(pnl: float, duration_ms: int = HOUR, invested: float = 1000.0) -> Trade:
    return Trade(
        id=1,
        pair="BTCUSDT",
        direction=Direction.LONG,
        entry_price=100.0,
        exit_price=100.0,
        entry_time=0,
        exit_time=duration_ms,
        size=10.0,
        leverage=1.0,
        invested_amount=invested,
        stop_loss=95.0,
        take_profit=110.0,
        stop_loss_reason=StopLossReason.AGENT_LOGIC,
        pnl=pnl,
        fees=0.0,
        exit_reason="Take Profit Hit",
    )


def test_report_identities():
    trades = [_trade(30.0), _trade(-10.0), _trade(0.0), _trade(20.0)]
    report = compute_report(trades)

    assert report.total_trades == 4
    assert report.wins + report.losses + report.break_evens == report.total_trades
    assert (report.wins, report.losses, report.break_evens) == (2, 1, 1)
    assert report.total_pnl == pytest.approx(sum(t.pnl for t in trades))
    assert report.win_rate == pytest.approx(50.0)
    assert report.profit_factor == pytest.approx(5.0)
    assert report.average_trade_duration == "1h 0m"


def test_profit_factor_edge_cases():
    assert profit_factor([_trade(10.0)]) == float("inf")
    assert profit_factor([_trade(0.0)]) == 0.0
    assert profit_factor([]) == 0.0


def test_empty_report():
    report = compute_report([])
    assert report.total_trades == 0
    assert report.total_pnl == 0.0
    assert report.win_rate == 0.0
    assert report.sharpe_ratio == 0.0
    assert report.average_trade_duration == "N/A"


def test_max_drawdown_is_peak_to_trough_money():
    curve = [EquitySample(ts=i, equity=e) for i, e in enumerate([100, 120, 90, 110, 80, 130])]
    assert max_drawdown(curve) == pytest.approx(40.0)
    assert max_drawdown([]) == 0.0


def test_sharpe_uses_population_std():
    # 收益率 0.01 / 0.03 -> 均值 0.02，总体标准差 0.01
    assert sharpe_ratio([_trade(10.0), _trade(30.0)]) == pytest.approx(2.0)
    assert sharpe_ratio([_trade(10.0), _trade(10.0)]) == 0.0


def test_report_to_dict_drops_series():
    report = compute_report([_trade(5.0)])
    out = report.to_dict()
    assert "trades" not in out
    assert "equity_curve" not in out
    assert len(report.to_dict(include_trades=True)["trades"]) == 1


@pytest.mark.parametrize(
    "ms, expected",
    [
        (0, "0s"),
        (45_000, "45s"),
        (90_000, "1m 30s"),
        (2 * HOUR + 5 * 60_000, "2h 5m"),
        (3 * 24 * HOUR + 4 * HOUR, "3d 4h"),
    ],
)
def test_format_duration(ms, expected):
    assert format_duration(ms) == expected


def test_fmt_price_trims_zeros():
    assert fmt_price(12345.678) == "12345.68"
    assert fmt_price(1.5) == "1.5"
    assert fmt_price(None) == "NA"
