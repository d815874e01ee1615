"""
VOLRISK - Volatility Estimator
===============================

Maintains a rolling bar window per instrument and computes a blended
volatility snapshot from several estimators:

- Historical: annualized std of log returns
- EWMA: v_t = λ·v_{t-1} + (1-λ)·r_t², seeded with the first squared return
- GARCH(1,1): v_t = ω + α·r_{t-1}² + β·v_{t-1}, seeded at ω/(1-α-β)
- Parkinson: high/low range estimator
- Garman-Klass: high/low/open/close range estimator

The blend is a weighted average renormalized over the estimators whose
inputs carry information (non-zero returns or ranges). Runs on the slow
path; the resulting snapshot is published by reference replace.

Version: 1.0
"""

import math
import logging
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from ..core.risk_config import VolatilityEstimatorConfig
from ..core.input_validator import InputValidator
from ..core.risk_types import ConfigurationError, PriceBar, VolatilityEstimate
from ..core.snapshot_registry import RiskStateRegistry
from ..core import risk_metrics as metrics

logger = logging.getLogger(__name__)

_LN2 = math.log(2.0)


class VolatilityEstimator:
    """
    Rolling multi-estimator volatility engine.

    Windows live in the caller-owned RiskStateRegistry; the estimator
    itself holds only configuration and statistics.
    """

    def __init__(
        self,
        config: VolatilityEstimatorConfig = None,
        enable_metrics: bool = False
    ):
        """
        Initialize volatility estimator.

        Args:
            config: VolatilityEstimatorConfig with all parameters
            enable_metrics: Record Prometheus metrics
        """
        if config is None:
            config = VolatilityEstimatorConfig()
        errors = config.validate()
        if errors:
            raise ConfigurationError(errors)

        self.config = config
        self.enable_metrics = enable_metrics
        self.validator = InputValidator()

        self.periods_per_year = config.periods_per_year
        self.min_samples = config.min_samples
        self.ewma_lambda = config.ewma_lambda
        self.garch_omega = config.garch_omega
        self.garch_alpha = config.garch_alpha
        self.garch_beta = config.garch_beta

        self.total_refreshes = 0
        self.unreliable_refreshes = 0
        self.rejected_bars = 0

        logger.info(
            f"VolatilityEstimator initialized: window={config.window_capacity}, "
            f"lambda={config.ewma_lambda}, min_samples={config.min_samples}"
        )

    # ------------------------------------------------------------------
    # Window maintenance
    # ------------------------------------------------------------------

    def add_bars(
        self,
        instrument: str,
        bars: Iterable[PriceBar],
        registry: RiskStateRegistry
    ) -> int:
        """
        Append bars to an instrument's window, oldest first.

        Invalid or out-of-order bars are skipped with a warning. The window
        evicts its oldest entries once capacity is reached.

        Returns:
            Number of bars accepted
        """
        window = registry.window(instrument)
        accepted = 0
        rejected = 0

        for bar in bars:
            if bar.instrument != instrument:
                logger.warning(
                    f"Skipping bar for {bar.instrument} passed to {instrument} window"
                )
                rejected += 1
                continue

            previous = window[-1] if window else None
            is_valid, errors = self.validator.validate_bar(bar, previous)
            if not is_valid:
                logger.warning(f"Skipping invalid bar for {instrument}: {errors}")
                rejected += 1
                continue

            window.append(bar)
            accepted += 1

        self.rejected_bars += rejected
        if self.enable_metrics:
            metrics.record_rejected_bars(instrument, rejected)

        return accepted

    # ------------------------------------------------------------------
    # Estimators
    # ------------------------------------------------------------------

    def _annualize(self, variance: float) -> float:
        return math.sqrt(max(variance, 0.0) * self.periods_per_year)

    def historical_volatility(self, returns: np.ndarray) -> float:
        """Annualized sample standard deviation of log returns."""
        if len(returns) < 2:
            return 0.0
        return self._annualize(float(np.var(returns, ddof=1)))

    def ewma_volatility(self, returns: np.ndarray) -> float:
        """RiskMetrics-style EWMA volatility, seeded with the first squared return."""
        if len(returns) == 0:
            return 0.0
        lam = self.ewma_lambda
        variance = float(returns[0]) ** 2
        for r in returns[1:]:
            variance = lam * variance + (1.0 - lam) * float(r) ** 2
        return self._annualize(variance)

    def garch_volatility(self, returns: np.ndarray) -> float:
        """
        GARCH(1,1) conditional volatility with fixed parameters.

        The recursion is seeded at the unconditional variance and run over
        the whole window; the final value is the one-step-ahead forecast.
        """
        if len(returns) == 0:
            return 0.0
        omega, alpha, beta = self.garch_omega, self.garch_alpha, self.garch_beta
        variance = omega / (1.0 - alpha - beta)
        for r in returns:
            variance = omega + alpha * float(r) ** 2 + beta * variance
        return self._annualize(variance)

    def parkinson_volatility(self, highs: np.ndarray, lows: np.ndarray) -> float:
        """Parkinson range estimator: σ² = mean(ln(H/L)²) / (4 ln 2)."""
        if len(highs) == 0:
            return 0.0
        log_range_sq = np.log(highs / lows) ** 2
        return self._annualize(float(np.mean(log_range_sq)) / (4.0 * _LN2))

    def garman_klass_volatility(
        self,
        opens: np.ndarray,
        highs: np.ndarray,
        lows: np.ndarray,
        closes: np.ndarray
    ) -> float:
        """Garman-Klass: σ² = mean(0.5·ln(H/L)² − (2 ln 2 − 1)·ln(C/O)²)."""
        if len(highs) == 0:
            return 0.0
        hl = np.log(highs / lows) ** 2
        co = np.log(closes / opens) ** 2
        variance = float(np.mean(0.5 * hl - (2.0 * _LN2 - 1.0) * co))
        return self._annualize(variance)

    def blend(self, components: Dict[str, float], valid: Dict[str, bool]) -> float:
        """
        Weighted average over estimators with valid inputs.

        Weights are renormalized over the estimators that are both valid and
        positive; returns 0.0 when none qualifies.
        """
        weights = self.config.blend_weights
        total_weight = 0.0
        weighted = 0.0
        for name, value in components.items():
            weight = weights.get(name, 0.0)
            if weight <= 0 or not valid.get(name, False) or value <= 0:
                continue
            total_weight += weight
            weighted += weight * value
        if total_weight <= 0:
            return 0.0
        return weighted / total_weight

    # ------------------------------------------------------------------
    # Snapshot computation
    # ------------------------------------------------------------------

    def compute(self, instrument: str, registry: RiskStateRegistry) -> VolatilityEstimate:
        """
        Compute a fresh snapshot over the current window without publishing.

        Args:
            instrument: Instrument id
            registry: Registry holding the instrument's window

        Returns:
            VolatilityEstimate (flagged unreliable below the sample floor)
        """
        bars = list(registry.window(instrument))
        if not bars:
            return VolatilityEstimate.empty(instrument)

        opens, highs, lows, closes = (
            np.array([getattr(b, f) for b in bars], dtype=float)
            for f in ('open', 'high', 'low', 'close')
        )
        returns = np.diff(np.log(closes))

        has_returns = bool(len(returns) > 0 and np.any(returns != 0.0))
        has_ranges = bool(np.any(highs > lows))

        if has_returns:
            historical = self.historical_volatility(returns)
            ewma = self.ewma_volatility(returns)
            garch = self.garch_volatility(returns)
        else:
            historical = ewma = garch = 0.0

        if has_ranges:
            parkinson = self.parkinson_volatility(highs, lows)
            garman_klass = self.garman_klass_volatility(opens, highs, lows, closes)
        else:
            parkinson = garman_klass = 0.0

        components = {
            'historical': historical,
            'ewma': ewma,
            'garch': garch,
            'parkinson': parkinson,
            'garman_klass': garman_klass,
        }
        valid = {
            'historical': has_returns,
            'ewma': has_returns,
            'garch': has_returns,
            'parkinson': has_ranges,
            'garman_klass': has_ranges,
        }
        blended = self.blend(components, valid)

        short_term, long_term = self._trend_volatilities(returns)

        sample_size = int(len(returns))
        reliable = sample_size >= self.min_samples

        return VolatilityEstimate(
            instrument=instrument,
            timestamp=bars[-1].timestamp,
            historical=historical,
            ewma=ewma,
            garch=garch,
            parkinson=parkinson,
            garman_klass=garman_klass,
            blended=blended,
            sample_size=sample_size,
            reliable=reliable,
            short_term_volatility=short_term,
            long_term_volatility=long_term
        )

    def _trend_volatilities(self, returns: np.ndarray) -> Tuple[float, float]:
        short_w = self.config.short_window
        long_w = self.config.long_window
        short_term = self.historical_volatility(returns[-short_w:]) \
            if len(returns) >= short_w else 0.0
        long_term = self.historical_volatility(returns[-long_w:]) \
            if len(returns) >= long_w else 0.0
        return short_term, long_term

    def refresh(
        self,
        instrument: str,
        registry: RiskStateRegistry,
        bars: Optional[Iterable[PriceBar]] = None,
        publish: bool = True
    ) -> VolatilityEstimate:
        """
        Slow-path refresh: append new bars, recompute and publish.

        Args:
            instrument: Instrument id
            registry: Caller-owned state registry
            bars: New bars to append first (optional)
            publish: Replace the published snapshot (False when the caller
                publishes a whole cycle at once)

        Returns:
            The new VolatilityEstimate
        """
        if bars is not None:
            self.add_bars(instrument, bars, registry)

        estimate = self.compute(instrument, registry)

        self.total_refreshes += 1
        if not estimate.reliable:
            self.unreliable_refreshes += 1
            logger.warning(
                f"Unreliable volatility for {instrument}: "
                f"{estimate.sample_size} < {self.min_samples} samples"
            )

        if publish:
            registry.volatility.publish(instrument, estimate)

        if self.enable_metrics:
            metrics.record_volatility_metrics(instrument, estimate.blended, estimate.reliable)

        logger.debug(
            f"Volatility {instrument}: blended={estimate.blended:.2%} "
            f"(hist={estimate.historical:.2%}, ewma={estimate.ewma:.2%}, "
            f"garch={estimate.garch:.2%}, n={estimate.sample_size})"
        )

        return estimate

    def get_state(self) -> Dict:
        """Get current state for monitoring."""
        return {
            'window_capacity': self.config.window_capacity,
            'min_samples': self.min_samples,
            'ewma_lambda': self.ewma_lambda,
            'blend_weights': dict(self.config.blend_weights),
            'total_refreshes': self.total_refreshes,
            'unreliable_refreshes': self.unreliable_refreshes,
            'rejected_bars': self.rejected_bars
        }
