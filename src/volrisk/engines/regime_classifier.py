"""
VOLRISK - Regime Classifier
============================

Per-instrument volatility regime state machine.

States: LOW, NORMAL, HIGH, SPIKE. Thresholds are the 25th/75th/95th
percentiles of a trailing one-year blended-volatility history, recomputed
each slow cycle and kept strictly increasing. A TransitionRecord is
appended whenever the bucket differs from the stored regime; it is marked
anticipated when the previous short/long volatility trend already
projected the crossing within the anticipation horizon.

The machine has no terminal state.

Version: 1.0
"""

from typing import Tuple, Dict, Optional, Sequence
import logging

import numpy as np

from ..core.risk_config import RegimeClassifierConfig
from ..core.risk_types import (
    ConfigurationError,
    RegimeState,
    RegimeThresholds,
    TransitionRecord,
    VolatilityEstimate,
    VolatilityRegime,
)
from ..core.snapshot_registry import RiskStateRegistry
from ..core import risk_metrics as metrics

logger = logging.getLogger(__name__)


class RegimeClassifier:
    """
    Volatility regime classifier with transition log.

    Holds no per-instrument state of its own: previous regimes, volatility
    histories and the transition log live in the caller-owned registry.
    """

    def __init__(self, config: RegimeClassifierConfig = None, enable_metrics: bool = False):
        """
        Initialize regime classifier.

        Args:
            config: RegimeClassifierConfig with all parameters
            enable_metrics: Record Prometheus metrics
        """
        if config is None:
            config = RegimeClassifierConfig()
        errors = config.validate()
        if errors:
            raise ConfigurationError(errors)

        self.config = config
        self.enable_metrics = enable_metrics
        self.horizon = config.anticipation_horizon

        self.total_classifications = 0
        self.total_transitions = 0
        self.anticipated_transitions = 0
        self.skipped_unreliable = 0

        logger.info(
            f"RegimeClassifier initialized: history={config.history_length}, "
            f"percentiles={tuple(config.percentiles)}, horizon={config.anticipation_horizon}"
        )

    # ------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------

    def compute_thresholds(self, history: Sequence[float]) -> RegimeThresholds:
        """
        Compute strictly increasing thresholds from a volatility history.

        Uses fixed thresholds when configured, the defaults until
        `min_history` samples exist, and the configured percentiles after.
        """
        if self.config.fixed_thresholds is not None:
            low, normal, high = self.config.fixed_thresholds
        elif len(history) < self.config.min_history:
            low, normal, high = self.config.default_thresholds
        else:
            low, normal, high = (
                float(v) for v in np.percentile(np.asarray(history, dtype=float),
                                                self.config.percentiles)
            )

        gap = self.config.min_threshold_gap
        low = max(low, 0.0)
        normal = max(normal, low + gap)
        high = max(high, normal + gap)

        return RegimeThresholds(low=low, normal=normal, high=high)

    # ------------------------------------------------------------------
    # Trend projection
    # ------------------------------------------------------------------

    def compute_trend(self, estimate: VolatilityEstimate) -> float:
        """
        Volatility change per sample implied by the short vs long windows.

        Zero until both windows have data.
        """
        short_vol = estimate.short_term_volatility
        long_vol = estimate.long_term_volatility
        if short_vol <= 0 or long_vol <= 0:
            return 0.0
        return (short_vol - long_vol) / self.config.trend_lag

    def project(self, volatility: float, trend: float) -> float:
        """Volatility projected `horizon` samples ahead."""
        return max(0.0, volatility + trend * self.horizon)

    def is_anticipated(
        self,
        previous: RegimeState,
        new_regime: VolatilityRegime,
        thresholds: RegimeThresholds
    ) -> bool:
        """
        True if the previous state's trend was already heading across the
        threshold next to the previous regime, in the direction of the move,
        and projected to cross it within the horizon.
        """
        step = new_regime.rank - previous.regime.rank
        if step == 0 or previous.trend == 0.0:
            return False

        bounds = thresholds.as_tuple()
        projected = previous.volatility + previous.trend * self.horizon

        if step > 0:
            boundary = bounds[previous.regime.rank]
            return previous.trend > 0 and projected >= boundary

        boundary = bounds[previous.regime.rank - 1]
        return previous.trend < 0 and projected < boundary

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def initial_state(
        self,
        instrument: str,
        registry: RiskStateRegistry,
        estimate: Optional[VolatilityEstimate] = None
    ) -> RegimeState:
        """Starting state for an instrument seen for the first time."""
        history = registry.volatility_history(instrument)
        return RegimeState(
            instrument=instrument,
            regime=VolatilityRegime.NORMAL,
            thresholds=self.compute_thresholds(history),
            entered_at=estimate.timestamp if estimate else None,
            days_in_regime=0,
            transitioning=False
        )

    def evaluate(
        self,
        estimate: VolatilityEstimate,
        registry: RiskStateRegistry,
        previous: Optional[RegimeState] = None
    ) -> Tuple[RegimeState, Optional[TransitionRecord]]:
        """
        Classify an estimate without publishing anything.

        Appends the blended volatility to the instrument's history when the
        estimate is reliable.

        Args:
            estimate: Latest VolatilityEstimate
            registry: Caller-owned state registry
            previous: Prior state (defaults to the published one)

        Returns:
            Tuple of (new_state, transition_record_or_None)
        """
        instrument = estimate.instrument
        self.total_classifications += 1

        if previous is None:
            previous = registry.regimes.get(instrument)
        first_sight = previous is None
        if first_sight:
            previous = self.initial_state(instrument, registry, estimate)

        if not estimate.reliable:
            self.skipped_unreliable += 1
            logger.debug(
                f"Unreliable estimate for {instrument} "
                f"(n={estimate.sample_size}); regime held at {previous.regime.value}"
            )
            return previous, None

        history = registry.volatility_history(instrument)
        history.append(estimate.blended)
        thresholds = self.compute_thresholds(history)

        volatility = estimate.blended
        regime = thresholds.bucket(volatility)
        trend = self.compute_trend(estimate)
        transitioning = thresholds.bucket(self.project(volatility, trend)) != regime

        record = None
        if first_sight:
            entered_at = estimate.timestamp
            logger.info(
                f"Initial regime {instrument}: {regime.value} (vol={volatility:.2%})"
            )
        elif regime != previous.regime:
            anticipated = self.is_anticipated(previous, regime, thresholds)
            record = TransitionRecord(
                instrument=instrument,
                from_regime=previous.regime,
                to_regime=regime,
                trigger_volatility=volatility,
                timestamp=estimate.timestamp,
                anticipated=anticipated
            )
            entered_at = estimate.timestamp
            self.total_transitions += 1
            if anticipated:
                self.anticipated_transitions += 1

            logger.info(
                f"Regime transition {instrument}: {previous.regime.value} → {regime.value} "
                f"(vol={volatility:.2%}, anticipated={anticipated})"
            )
        else:
            entered_at = previous.entered_at if previous.entered_at else estimate.timestamp

        days_in_regime = 0
        if entered_at is not None and estimate.timestamp is not None:
            days_in_regime = max(0, (estimate.timestamp - entered_at).days)

        state = RegimeState(
            instrument=instrument,
            regime=regime,
            thresholds=thresholds,
            entered_at=entered_at,
            days_in_regime=days_in_regime,
            transitioning=transitioning,
            volatility=volatility,
            trend=trend
        )

        return state, record

    def classify(
        self,
        estimate: VolatilityEstimate,
        registry: RiskStateRegistry
    ) -> RegimeState:
        """
        Classify an estimate and publish the resulting state.

        A transition record is appended to the registry's log when the
        regime changed.

        Returns:
            The published RegimeState
        """
        state, record = self.evaluate(estimate, registry)

        if record is not None:
            registry.transitions.append(record)
            if self.enable_metrics:
                metrics.record_transition(
                    record.from_regime.value, record.to_regime.value, record.anticipated
                )

        registry.regimes.publish(estimate.instrument, state)

        if self.enable_metrics:
            metrics.record_regime_metrics(estimate.instrument, state.regime.rank)

        return state

    def get_state(self) -> Dict:
        """Get current state for monitoring."""
        return {
            'history_length': self.config.history_length,
            'percentiles': tuple(self.config.percentiles),
            'fixed_thresholds': self.config.fixed_thresholds,
            'anticipation_horizon': self.horizon,
            'total_classifications': self.total_classifications,
            'total_transitions': self.total_transitions,
            'anticipated_transitions': self.anticipated_transitions,
            'skipped_unreliable': self.skipped_unreliable
        }
