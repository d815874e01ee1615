"""
Test Risk Engine Pipeline
==========================

Tests the complete slow path → hot path pipeline:
- Bars → volatility estimates → regime states (refresh cycle)
- Open positions → portfolio snapshot
- Trade → risk assessment → sizing recommendation
- Config hot reload swapping components
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest
import yaml

from volrisk.core.risk_config import RegimeClassifierConfig, VolRiskConfig
from volrisk.core.risk_types import (
    InstrumentConstraints,
    OpenPosition,
    PositionContext,
    PriceBar,
    RiskLevel,
    SizingMethod,
    TradeDirection,
    VolatilityRegime,
)
from volrisk.core.snapshot_registry import RiskStateRegistry
from volrisk.engines.risk_engine import RiskEngine

START = datetime(2024, 3, 4, tzinfo=timezone.utc)  # Monday
TRADE_TIME = datetime(2024, 4, 16, 14, 0, tzinfo=timezone.utc)  # Tuesday afternoon


def make_bars(instrument, n, daily_vol, start_day=0, seed=1, price=1.10):
    rng = np.random.RandomState(seed)
    bars = []
    previous = price
    for i in range(n):
        close = previous * float(np.exp(rng.normal(0.0, daily_vol)))
        high = max(previous, close) * (1 + daily_vol / 4)
        low = min(previous, close) * (1 - daily_vol / 4)
        bars.append(PriceBar(instrument, START + timedelta(days=start_day + i),
                             previous, high, low, close))
        previous = close
    return bars


def flat_bars(instrument, n, price=1.10):
    return [
        PriceBar(instrument, START + timedelta(days=i), price, price, price, price)
        for i in range(n)
    ]


def eurusd_context(size=10000.0, stop_pips=50, equity=10000.0, timestamp=TRADE_TIME,
                   stats=None):
    entry = 1.1000
    return PositionContext(
        instrument="EURUSD",
        direction=TradeDirection.LONG,
        requested_size=size,
        entry_price=entry,
        stop_price=entry - stop_pips * 0.0001,
        account_equity=equity,
        timestamp=timestamp,
        trade_stats=stats
    )


EURUSD_LOTS = InstrumentConstraints(
    instrument="EURUSD",
    min_size=1000.0,
    max_size=1000000.0,
    size_step=1000.0,
    per_unit_value=1.0
)


class TestRefreshCycle:
    """Test suite for the slow-path refresh cycle."""

    def test_cycle_publishes_everything(self):
        """Test that one cycle publishes estimates, regimes and portfolio together."""
        engine = RiskEngine()

        result = engine.run_refresh_cycle(
            {"EURUSD": make_bars("EURUSD", 60, 0.006),
             "USDJPY": make_bars("USDJPY", 60, 0.008, seed=2, price=150.0)},
            positions=[OpenPosition("EURUSD", 10000, TradeDirection.LONG, 1.10)],
            equity=10000.0,
            timestamp=START
        )

        assert result.published
        assert engine.registry.published_generation == result.generation
        assert engine.registry.volatility.get("EURUSD") is result.estimates["EURUSD"]
        assert engine.registry.regimes.get("USDJPY") is result.regimes["USDJPY"]
        assert engine.registry.portfolio.get() is result.portfolio
        assert result.portfolio.leverage_ratio == pytest.approx(1.1)

    def test_positions_require_equity(self):
        """Test argument check for portfolio aggregation."""
        engine = RiskEngine()

        with pytest.raises(ValueError):
            engine.run_refresh_cycle({}, positions=[])

    def test_normal_to_spike_transition(self):
        """Test a volatility jump producing one Normal → Spike transition."""
        config = VolRiskConfig(regime=RegimeClassifierConfig(fixed_thresholds=(0.12, 0.25, 0.35)))
        engine = RiskEngine(config)

        calm = engine.run_refresh_cycle({"EURUSD": make_bars("EURUSD", 40, 0.012)})
        assert calm.regimes["EURUSD"].regime == VolatilityRegime.NORMAL
        assert calm.transitions == []

        # Replace the whole window with a violent regime
        stormy = engine.run_refresh_cycle(
            {"EURUSD": make_bars("EURUSD", 100, 0.05, start_day=40, seed=4)}
        )

        assert stormy.estimates["EURUSD"].blended > 0.35
        assert stormy.regimes["EURUSD"].regime == VolatilityRegime.SPIKE
        transitions = engine.get_transitions("EURUSD")
        assert len(transitions) == 1
        assert transitions[0].from_regime == VolatilityRegime.NORMAL
        assert transitions[0].to_regime == VolatilityRegime.SPIKE

    def test_stale_cycle_discarded(self):
        """Test that a cycle reserved earlier but published later is dropped."""
        engine = RiskEngine()
        registry = engine.registry
        stale_generation = registry.begin_cycle()

        fresh = engine.run_refresh_cycle({"EURUSD": make_bars("EURUSD", 30, 0.006)})
        stale = registry.publish_cycle(stale_generation, {}, {}, [])

        assert fresh.published
        assert not stale
        assert registry.published_generation == fresh.generation

    def test_shared_registry(self):
        """Test that a caller-supplied registry is used."""
        registry = RiskStateRegistry(window_capacity=40)
        engine = RiskEngine(registry=registry)

        engine.refresh_volatility("EURUSD", make_bars("EURUSD", 60, 0.006))

        assert len(registry.window("EURUSD")) == 40
        assert "EURUSD" in registry.volatility


class TestTradePipeline:
    """Test suite for scoring and sizing against published state."""

    def _warm_engine(self, daily_vol=0.006):
        engine = RiskEngine()
        engine.run_refresh_cycle(
            {"EURUSD": make_bars("EURUSD", 60, daily_vol)},
            positions=[],
            equity=10000.0
        )
        return engine

    def test_score_and_size(self):
        """Test a normal trade through both hot-path stages."""
        engine = self._warm_engine()

        assessment, recommendation = engine.evaluate_trade(
            eurusd_context(size=3000.0), EURUSD_LOTS
        )

        assert assessment.trading_allowed
        assert assessment.risk_level in (RiskLevel.LOW, RiskLevel.MEDIUM)
        assert not recommendation.rejected
        assert recommendation.clamped_size > 0
        assert recommendation.clamped_size % 1000.0 == 0
        assert recommendation.percent_risk <= 0.01 + 1e-9

    def test_flat_market_kelly_fallback(self):
        """Test 30 identical bars: zero volatility, reliable, Kelly falls back."""
        engine = RiskEngine()
        result = engine.run_refresh_cycle({"EURUSD": flat_bars("EURUSD", 30)})

        estimate = result.estimates["EURUSD"]
        assert estimate.blended == 0.0
        assert estimate.reliable

        context = eurusd_context(size=3000.0)
        assessment = engine.score_trade(context)
        recommendation = engine.size_trade(context, EURUSD_LOTS, assessment,
                                           method=SizingMethod.KELLY)

        assert any("Zero volatility" in w for w in assessment.warnings)
        assert not recommendation.rejected
        assert recommendation.kelly_fraction == 0.0
        assert any("Kelly skipped" in r for r in recommendation.reasons)
        # 1% of 10,000 over a 50 pip stop
        assert recommendation.clamped_size == 20000.0

    def test_oversized_trade_rejected(self):
        """Test that a blocked assessment never produces a size."""
        engine = self._warm_engine()

        assessment, recommendation = engine.evaluate_trade(
            eurusd_context(size=60000.0), EURUSD_LOTS
        )

        assert not assessment.trading_allowed
        assert recommendation.rejected
        assert recommendation.clamped_size == 0.0
        assert engine.get_statistics()['trades_blocked'] == 1

    def test_below_minimum_rejected(self):
        """Test a tiny account whose size rounds below the instrument minimum."""
        engine = self._warm_engine()

        _, recommendation = engine.evaluate_trade(
            eurusd_context(size=100.0, equity=300.0, stop_pips=100), EURUSD_LOTS
        )

        assert recommendation.rejected
        assert recommendation.clamped_size == 0.0
        assert any("below instrument minimum" in r for r in recommendation.reasons)

    def test_scoring_is_idempotent(self):
        """Test that repeated scoring of the same trade gives the same result."""
        engine = self._warm_engine()
        context = eurusd_context(size=3000.0)

        assert engine.score_trade(context) == engine.score_trade(context)

    def test_recorded_trades_feed_kelly(self):
        """Test that closed trades recorded on the engine drive Kelly sizing."""
        engine = self._warm_engine()
        for i in range(40):
            engine.record_trade_result("EURUSD", 200.0 if i % 5 < 3 else -100.0)

        recommendation = engine.size_trade(
            eurusd_context(size=3000.0), EURUSD_LOTS, method=SizingMethod.KELLY
        )

        # p = 0.6, b = 2 → full Kelly 0.4, quarter Kelly 0.1
        assert recommendation.kelly_fraction == pytest.approx(0.1)
        assert engine.get_kelly_tracker("EURUSD").total_trades == 40

    def test_reload_during_evaluation_keeps_one_config(self, monkeypatch):
        """Test that a config swap mid-trade does not mix scorer and sizer sets."""
        engine = self._warm_engine()
        old_sizer = engine.sizer
        score = engine.scorer.score

        def score_then_reload(*args, **kwargs):
            assessment = score(*args, **kwargs)
            engine.update_config(VolRiskConfig.from_dict({'sizing': {'risk_percent': 0.02}}))
            return assessment

        monkeypatch.setattr(engine.scorer, 'score', score_then_reload)

        _, recommendation = engine.evaluate_trade(eurusd_context(size=3000.0), EURUSD_LOTS)

        assert not recommendation.rejected
        assert old_sizer.total_recommendations == 1
        assert engine.sizer is not old_sizer
        assert engine.sizer.total_recommendations == 0

    def test_statistics(self):
        """Test aggregated engine statistics."""
        engine = self._warm_engine()
        engine.evaluate_trade(eurusd_context(size=3000.0), EURUSD_LOTS)

        stats = engine.get_statistics()

        assert stats['cycles_run'] == 1
        assert stats['trades_scored'] == 1
        assert stats['trades_sized'] == 1
        assert 'estimator' in stats and 'sizer' in stats


class TestConfigHotReload:
    """Test suite for config-driven component swaps."""

    def test_reload_swaps_components(self):
        """Test that a config edit rebuilds the engine's components."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            yaml.dump({'sizing': {'risk_percent': 0.01}}, f)
            path = f.name

        try:
            engine = RiskEngine(config_path=path)
            old_sizer = engine.sizer
            assert engine.config.sizing.risk_percent == 0.01

            mtime = os.path.getmtime(path)
            with open(path, 'w') as f:
                yaml.dump({'sizing': {'risk_percent': 0.02}}, f)
            os.utime(path, (mtime + 10, mtime + 10))

            assert engine.config_manager.reload_config()
            assert engine.config.sizing.risk_percent == 0.02
            assert engine.sizer is not old_sizer
            assert engine.config_swaps == 1
            engine.shutdown()
        finally:
            os.unlink(path)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
