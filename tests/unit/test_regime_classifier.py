"""
Unit tests for Regime Classifier
"""

from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from volrisk.core.risk_config import RegimeClassifierConfig
from volrisk.core.risk_types import (
    RegimeThresholds,
    VolatilityEstimate,
    VolatilityRegime,
)
from volrisk.core.snapshot_registry import RiskStateRegistry
from volrisk.engines.regime_classifier import RegimeClassifier


START = datetime(2024, 3, 1, tzinfo=timezone.utc)


def make_estimate(blended, day=0, instrument="EURUSD", short=0.0, long=0.0, reliable=True):
    return VolatilityEstimate(
        instrument=instrument,
        timestamp=START + timedelta(days=day),
        historical=blended,
        ewma=blended,
        garch=blended,
        parkinson=blended,
        garman_klass=blended,
        blended=blended,
        sample_size=50 if reliable else 3,
        reliable=reliable,
        short_term_volatility=short,
        long_term_volatility=long
    )


def fixed_classifier(thresholds=(0.12, 0.25, 0.35)):
    return RegimeClassifier(RegimeClassifierConfig(fixed_thresholds=thresholds))


class TestRegimeThresholds:
    """Test suite for threshold computation."""

    def test_default_thresholds_before_min_history(self):
        """Test defaults are used while history is short."""
        classifier = RegimeClassifier()

        thresholds = classifier.compute_thresholds([0.2] * 5)

        assert thresholds.as_tuple() == (0.10, 0.20, 0.35)

    def test_percentile_thresholds(self):
        """Test percentile thresholds over a full history."""
        classifier = RegimeClassifier()
        history = list(np.linspace(0.05, 0.50, 252))

        thresholds = classifier.compute_thresholds(history)

        expected = np.percentile(history, [25, 75, 95])
        assert thresholds.low == pytest.approx(expected[0])
        assert thresholds.normal == pytest.approx(expected[1])
        assert thresholds.high == pytest.approx(expected[2])
        assert thresholds.is_strictly_increasing()

    def test_constant_history_strictly_increasing(self):
        """Test that a degenerate history still gives strictly increasing thresholds."""
        classifier = RegimeClassifier()

        thresholds = classifier.compute_thresholds([0.2] * 100)

        assert thresholds.is_strictly_increasing()
        assert thresholds.low == pytest.approx(0.2)

    def test_random_histories_strictly_increasing(self):
        """Test the ordering invariant over many random histories."""
        classifier = RegimeClassifier()
        rng = np.random.RandomState(3)

        for _ in range(50):
            history = list(np.round(rng.uniform(0, 0.5, rng.randint(20, 252)), 2))
            assert classifier.compute_thresholds(history).is_strictly_increasing()

    def test_fixed_thresholds(self):
        """Test that fixed thresholds override the history."""
        classifier = fixed_classifier()

        thresholds = classifier.compute_thresholds(list(np.linspace(0.5, 0.9, 252)))

        assert thresholds.as_tuple() == (0.12, 0.25, 0.35)

    def test_bucket(self):
        """Test bucketing against thresholds."""
        thresholds = RegimeThresholds(0.12, 0.25, 0.35)

        assert thresholds.bucket(0.10) == VolatilityRegime.LOW
        assert thresholds.bucket(0.20) == VolatilityRegime.NORMAL
        assert thresholds.bucket(0.30) == VolatilityRegime.HIGH
        assert thresholds.bucket(0.35) == VolatilityRegime.HIGH
        assert thresholds.bucket(0.40) == VolatilityRegime.SPIKE


class TestRegimeClassifier:
    """Test suite for regime classification and transitions."""

    def test_new_instrument_starts_normal(self):
        """Test that a first estimate inside the normal band records no transition."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        state = classifier.classify(make_estimate(0.20), registry)

        assert state.regime == VolatilityRegime.NORMAL
        assert len(registry.transitions) == 0
        assert registry.regimes.get("EURUSD") is state

    def test_normal_to_spike(self):
        """Test a jump from normal to spike volatility."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        classifier.classify(make_estimate(0.20, day=0), registry)
        state = classifier.classify(make_estimate(0.40, day=1), registry)

        assert state.regime == VolatilityRegime.SPIKE
        transitions = registry.transitions.all()
        assert len(transitions) == 1
        record = transitions[0]
        assert record.from_regime == VolatilityRegime.NORMAL
        assert record.to_regime == VolatilityRegime.SPIKE
        assert record.trigger_volatility == 0.40
        assert record.timestamp == START + timedelta(days=1)
        assert not record.anticipated

    def test_low_volatility_first_estimate(self):
        """Test that a first estimate below the low threshold starts the instrument in low."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        state = classifier.classify(make_estimate(0.10), registry)

        assert state.regime == VolatilityRegime.LOW
        assert state.entered_at == START
        assert len(registry.transitions) == 0

    def test_first_spike_estimate_records_nothing(self):
        """Test that no transition is logged for an instrument never classified before."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        state = classifier.classify(make_estimate(0.40), registry)

        assert state.regime == VolatilityRegime.SPIKE
        assert registry.regimes.get("EURUSD") is state
        assert len(registry.transitions) == 0
        assert classifier.total_transitions == 0

    def test_first_unreliable_then_reliable_moves_from_normal(self):
        """Test that a published NORMAL starting state is a real previous regime."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        held = classifier.classify(make_estimate(0.40, reliable=False), registry)
        state = classifier.classify(make_estimate(0.40, day=1), registry)

        assert held.regime == VolatilityRegime.NORMAL
        assert state.regime == VolatilityRegime.SPIKE
        assert registry.transitions.last(1)[0].from_regime == VolatilityRegime.NORMAL

    def test_no_transition_when_regime_unchanged(self):
        """Test that staying in a regime appends nothing."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        for day, vol in enumerate([0.20, 0.21, 0.19, 0.22]):
            classifier.classify(make_estimate(vol, day=day), registry)

        assert len(registry.transitions) == 0

    def test_days_in_regime(self):
        """Test that days in regime count from the last transition."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        classifier.classify(make_estimate(0.20, day=0), registry)
        classifier.classify(make_estimate(0.30, day=2), registry)
        state = classifier.classify(make_estimate(0.31, day=7), registry)

        assert state.regime == VolatilityRegime.HIGH
        assert state.entered_at == START + timedelta(days=2)
        assert state.days_in_regime == 5

    def test_unreliable_estimate_holds_state(self):
        """Test that unreliable estimates neither move the regime nor extend history."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        first = classifier.classify(make_estimate(0.20, day=0), registry)
        second = classifier.classify(make_estimate(0.50, day=1, reliable=False), registry)

        assert second is first
        assert len(registry.transitions) == 0
        assert len(registry.volatility_history("EURUSD")) == 1
        assert classifier.skipped_unreliable == 1

    def test_anticipated_transition(self):
        """Test that a crossing projected by the prior trend is marked anticipated."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        # trend = (0.34 - 0.26) / 7.5 per sample; 0.30 projects past 0.35 within 5
        high = classifier.classify(make_estimate(0.30, day=0, short=0.34, long=0.26), registry)
        assert high.regime == VolatilityRegime.HIGH
        assert high.transitioning

        spike = classifier.classify(make_estimate(0.40, day=1, short=0.45, long=0.30), registry)

        assert spike.regime == VolatilityRegime.SPIKE
        record = registry.transitions.last(1)[0]
        assert record.from_regime == VolatilityRegime.HIGH
        assert record.anticipated
        assert classifier.anticipated_transitions == 1

    def test_unanticipated_when_trend_flat(self):
        """Test that a flat prior trend never anticipates a transition."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        classifier.classify(make_estimate(0.30, day=0, short=0.30, long=0.30), registry)
        classifier.classify(make_estimate(0.40, day=1), registry)

        assert not registry.transitions.last(1)[0].anticipated

    def test_downward_anticipation(self):
        """Test anticipation of a falling volatility crossing."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        classifier.classify(make_estimate(0.14, day=0, short=0.10, long=0.16), registry)
        classifier.classify(make_estimate(0.11, day=1), registry)

        record = registry.transitions.last(1)[0]
        assert record.to_regime == VolatilityRegime.LOW
        assert record.anticipated

    def test_evaluate_does_not_publish(self):
        """Test that evaluate leaves published state and the log alone."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        classifier.classify(make_estimate(0.20), registry)
        published = registry.regimes.get("EURUSD")

        state, record = classifier.evaluate(make_estimate(0.40, day=1), registry)

        assert state.regime == VolatilityRegime.SPIKE
        assert record is not None
        assert registry.regimes.get("EURUSD") is published
        assert len(registry.transitions) == 0

    def test_instruments_independent(self):
        """Test that instruments keep separate state."""
        registry = RiskStateRegistry()
        classifier = fixed_classifier()

        classifier.classify(make_estimate(0.40, instrument="EURUSD"), registry)
        classifier.classify(make_estimate(0.20, instrument="USDJPY"), registry)

        assert registry.regimes.get("EURUSD").regime == VolatilityRegime.SPIKE
        assert registry.regimes.get("USDJPY").regime == VolatilityRegime.NORMAL
        assert len(registry.transitions.for_instrument("USDJPY")) == 0

    def test_get_state(self):
        """Test state retrieval."""
        classifier = RegimeClassifier()

        state = classifier.get_state()

        assert state['percentiles'] == (25.0, 75.0, 95.0)
        assert state['total_transitions'] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
