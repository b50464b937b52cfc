"""
Indicator Library Tests — SMA, EMA, MACD, ATR, volume ratio, RSI, Mystic Pulse
"""

from __future__ import annotations

import math

import pytest


# ──────────────────────────────────────────────
# IndicatorSeries
# ──────────────────────────────────────────────

class TestIndicatorSeries:
    def test_restartable(self):
        from tradesetups.engines.indicators import ema_series
        s = ema_series([1, 2, 3, 4, 5], 3)
        assert list(s) == list(s)
        assert len(s) == 5

    def test_input_is_snapshotted(self):
        from tradesetups.engines.indicators import ema_series
        data = [1.0, 2.0, 3.0, 4.0, 5.0]
        s = ema_series(data, 3)
        data.append(100.0)
        data[0] = -50.0
        assert len(s) == 5
        assert s[2] == pytest.approx(2.0)

    def test_indexing_and_equality(self):
        from tradesetups.engines.indicators import sma_series
        s = sma_series([1, 2, 3, 4], 2)
        assert s[-1] == pytest.approx(3.5)
        assert s[:2] == [None, 1.5]
        assert s == [None, 1.5, 2.5, 3.5]
        assert s.to_list() == [None, 1.5, 2.5, 3.5]


# ──────────────────────────────────────────────
# Moving Averages
# ──────────────────────────────────────────────

class TestMovingAverages:
    def test_sma(self):
        from tradesetups.engines.indicators import sma
        assert sma([1, 2, 3, 4, 5], 5) == pytest.approx(3.0)
        assert sma([1, 2, 3, 4, 5], 2) == pytest.approx(4.5)
        assert sma([1, 2], 3) is None

    def test_ema_seeded_with_sma(self):
        from tradesetups.engines.indicators import ema_series
        s = ema_series([1, 2, 3, 4, 5], 3)
        assert s[0] is None and s[1] is None
        assert s[2] == pytest.approx(2.0)
        assert s[3] == pytest.approx(3.0)
        assert s[4] == pytest.approx(4.0)

    def test_ema_warmup_nulls(self):
        from tradesetups.engines.indicators import ema_series
        s = ema_series(list(range(100)), 80)
        assert all(v is None for v in s[:79])
        assert all(v is not None for v in s[79:])

    def test_ema_short_input(self):
        from tradesetups.engines.indicators import ema, ema_series
        assert ema([1, 2], 3) is None
        assert ema_series([1, 2], 3) == [None, None]
        assert ema_series([], 3) == []

    def test_ema_idempotent(self):
        from tradesetups.engines.indicators import ema_series
        closes = [100 + (i % 7) * 1.3 for i in range(60)]
        assert ema_series(closes, 8).to_list() == ema_series(closes, 8).to_list()


# ──────────────────────────────────────────────
# MACD
# ──────────────────────────────────────────────

class TestMACD:
    def test_warmup_positions(self):
        from tradesetups.engines.indicators import macd_series
        points = macd_series([100.0] * 50)
        assert points[24].macd is None
        assert points[25].macd == pytest.approx(0.0, abs=1e-9)
        assert points[32].signal is None
        assert points[32].histogram is None
        assert points[33].signal == pytest.approx(0.0, abs=1e-9)
        assert points[33].histogram == pytest.approx(0.0, abs=1e-9)

    def test_short_input_all_null(self):
        from tradesetups.engines.indicators import macd, macd_series
        points = macd_series([1.0] * 20)
        assert len(points) == 20
        assert all(p.macd is None and p.signal is None for p in points)
        assert macd([1.0] * 20).macd is None

    def test_accelerating_uptrend_positive_histogram(self):
        from tradesetups.engines.indicators import macd
        closes = [100 * 1.01 ** i for i in range(80)]
        point = macd(closes)
        assert point.macd > 0
        assert point.histogram > 0
        assert point.histogram == pytest.approx(point.macd - point.signal)


# ──────────────────────────────────────────────
# Volatility & Volume
# ──────────────────────────────────────────────

class TestATR:
    def test_true_range(self, make_candles):
        from tradesetups.engines.indicators import true_range
        prev, cur = make_candles([100, 104], spread=1.0)
        assert true_range(cur, None) == pytest.approx(2.0)
        assert true_range(cur, prev) == pytest.approx(5.0)

    def test_first_value_at_period(self, make_candles):
        from tradesetups.engines.indicators import atr_series
        candles = make_candles([100 + 2 * i for i in range(20)])
        s = atr_series(candles, 14)
        assert s[13] is None
        assert s[14] == pytest.approx(3.0)
        assert s[19] == pytest.approx(3.0)

    def test_insufficient_candles(self, make_candles):
        from tradesetups.engines.indicators import atr
        assert atr(make_candles([100] * 14), 14) is None
        assert atr(make_candles([100] * 15), 14) == pytest.approx(2.0)

    def test_atr_percent(self, make_candles):
        from tradesetups.engines.indicators import atr_percent
        candles = make_candles([100.0] * 20, spread=1.0)
        assert atr_percent(candles, 14) == pytest.approx(2.0)


class TestVolumeRatio:
    def test_excludes_current_bar(self, make_candles):
        from tradesetups.engines.indicators import volume_ratio
        candles = make_candles([100] * 21, volumes=[100.0] * 20 + [200.0])
        assert volume_ratio(candles, 20) == pytest.approx(2.0)

    def test_insufficient_history(self, make_candles):
        from tradesetups.engines.indicators import volume_ratio
        candles = make_candles([100] * 20, volumes=[100.0] * 20)
        assert volume_ratio(candles, 20) is None
        assert volume_ratio([], 20) is None

    def test_zero_average(self, make_candles):
        from tradesetups.engines.indicators import volume_ratio
        candles = make_candles([100] * 21, volumes=[0.0] * 20 + [50.0])
        assert volume_ratio(candles, 20) is None


class TestRSI:
    def test_only_gains(self):
        from tradesetups.engines.indicators import rsi
        assert rsi([100 + i for i in range(15)]) == 100.0

    def test_only_losses(self):
        from tradesetups.engines.indicators import rsi
        assert rsi([100 - i for i in range(15)]) == pytest.approx(0.0)

    def test_balanced_changes(self):
        from tradesetups.engines.indicators import rsi
        assert rsi([100, 101] * 7 + [100]) == pytest.approx(50.0)

    def test_uses_last_period_changes(self):
        from tradesetups.engines.indicators import rsi
        # An old crash outside the window does not count.
        assert rsi([200, 100] + [100 + i for i in range(1, 15)]) == 100.0

    def test_insufficient_history(self):
        from tradesetups.engines.indicators import rsi
        assert rsi([100 + i for i in range(14)]) is None
        assert rsi([100, 101], period=0) is None


# ──────────────────────────────────────────────
# Mystic Pulse
# ──────────────────────────────────────────────

class TestMysticPulse:
    def _uptrend(self, make_candles, n=25):
        return make_candles([100 + 2 * i for i in range(n)])

    def _downtrend(self, make_candles, n=25):
        return make_candles([200 - 2 * i for i in range(n)])

    def _up_then_down(self, make_candles):
        closes = [100 + 2 * i for i in range(30)] + [158 - 2 * k for k in range(1, 31)]
        return make_candles(closes)

    def test_below_warmup_is_none(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse, mystic_pulse_series
        candles = make_candles([100, 101, 102, 103, 104])
        assert mystic_pulse(candles) is None
        assert all(v is None for v in mystic_pulse_series(candles))
        assert mystic_pulse(make_candles([100 + i for i in range(10)]), adx_length=9) is None

    def test_uptrend_bullish(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse
        result = mystic_pulse(self._uptrend(make_candles))
        assert result.di_plus > result.di_minus
        assert result.trend_score > 0
        assert result.is_bullish is True
        assert result.positive_count == 23
        assert result.negative_count == 0
        assert result.intensity == pytest.approx(1.0)

    def test_downtrend_bearish(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse
        result = mystic_pulse(self._downtrend(make_candles))
        assert result.di_minus > result.di_plus
        assert result.trend_score < 0
        assert result.is_bullish is False
        assert result.negative_count == 23

    def test_score_monotonic_in_clean_trend(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse_series
        scores = [r.trend_score for r in mystic_pulse_series(self._uptrend(make_candles, 40)) if r]
        assert scores == sorted(scores)
        assert len(set(scores)) == len(scores)

    def test_flat_series_neutral(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse
        result = mystic_pulse(make_candles([100.0] * 30))
        assert result.di_plus == 0 and result.di_minus == 0
        assert result.trend_score == 0
        assert result.intensity == 0.0
        assert result.is_bullish is True

    def test_zero_score_follows_dominant_di(self, make_candles):
        # Decelerating decline: DI- stays on top but stops rising, so no run is counted.
        from tradesetups.engines.indicators import mystic_pulse
        result = mystic_pulse(make_candles([400 - 10 * math.log(i + 1) for i in range(60)]))
        assert result.trend_score == 0
        assert result.di_minus > result.di_plus
        assert result.is_bullish is False

    def test_series_matches_point_form_on_prefixes(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse, mystic_pulse_series
        candles = self._up_then_down(make_candles)
        series = mystic_pulse_series(candles, 9, 20, 0.7)
        assert len(series) == len(candles)
        assert series[10] is not None and series[9] is None
        for i in range(len(candles)):
            assert series[i] == mystic_pulse(candles[: i + 1], 9, 20, 0.7)

    def test_opposite_counter_resets(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse
        result = mystic_pulse(self._up_then_down(make_candles))
        assert result.positive_count == 0
        assert result.negative_count > 0
        assert result.is_bullish is False

    def test_intensity_bounds(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse_series
        candles = self._up_then_down(make_candles)
        for gamma in (0.3, 0.7, 1.5, 3.0):
            for collect in (1, 5, 20, 100):
                for r in mystic_pulse_series(candles, 9, collect, gamma):
                    if r is not None:
                        assert 0.0 <= r.intensity <= 1.0

    def test_intensity_varies_with_gamma(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse
        candles = self._up_then_down(make_candles)
        soft = mystic_pulse(candles, 9, 100, 0.5)
        hard = mystic_pulse(candles, 9, 100, 2.0)
        assert 0 < hard.intensity < soft.intensity < 1

    def test_intensity_varies_with_collect_length(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse
        candles = self._up_then_down(make_candles)
        short_window = mystic_pulse(candles, 9, 5, 0.7)
        long_window = mystic_pulse(candles, 9, 100, 0.7)
        assert short_window.intensity == pytest.approx(1.0)
        assert long_window.intensity < 1.0

    def test_idempotent(self, make_candles):
        from tradesetups.engines.indicators import mystic_pulse
        candles = self._up_then_down(make_candles)
        assert mystic_pulse(candles) == mystic_pulse(candles)

    def test_gamma_intensity_flat_window(self):
        from tradesetups.engines.indicators import gamma_intensity
        assert gamma_intensity(3, 3, 3, 0.7) == 0.0
        assert gamma_intensity(5, 0, 10, 1.0) == pytest.approx(0.5)
        assert gamma_intensity(20, 0, 10, 1.0) == pytest.approx(1.0)
