"""
VOLRISK - Position Sizing Engine
=================================

Turns a risk assessment into a concrete, constraint-valid position size.

Candidate methods (one typed handler per SizingMethod):
1. Fixed-fractional: equity × risk% / (stop distance × per-unit value)
2. Kelly: fractional Kelly risk budget; falls back to fixed-fractional when
   the statistics are not trustworthy
3. Volatility targeting: base × clamp(target vol / current vol)
4. Regime scaled: base × regime factor

Every candidate is scaled by the assessed risk level, capped by max size
and available margin, and rounded down to the instrument's size step. A
single configured method is then used as-is; otherwise the validated
candidates are averaged or the most conservative one is taken. Anything
below the instrument minimum is rejected with explicit reasons, never
silently replaced.

Version: 1.0
"""

import math
import logging
from decimal import Decimal
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from ..core.risk_config import PositionSizingConfig
from ..core.input_validator import InputValidator
from ..core.risk_types import (
    CompositeRiskAssessment,
    ConfigurationError,
    InstrumentConstraints,
    PositionContext,
    SizingCombination,
    SizingMethod,
    SizingRecommendation,
)
from ..core import risk_metrics as metrics
from .kelly import fractional_kelly

logger = logging.getLogger(__name__)


def step_decimals(step: float) -> int:
    """Number of decimal places in a size step (0.01 -> 2, 1000 -> 0)."""
    exponent = Decimal(str(step)).normalize().as_tuple().exponent
    return max(0, -exponent)


def round_down_to_step(size: float, step: float) -> float:
    """Largest multiple of `step` not above `size` (tolerant of float noise)."""
    if size <= 0:
        return 0.0
    units = math.floor(size / step + 1e-9)
    return max(0.0, round(units * step, step_decimals(step)))


class SizingInputs(NamedTuple):
    """Resolved inputs shared by every sizing handler."""
    context: PositionContext
    assessment: CompositeRiskAssessment
    constraints: InstrumentConstraints
    equity: float
    stop_value: float                   # Loss per unit if the stop is hit
    base_size: float                    # Fixed-fractional size


class PositionSizer:
    """
    Position sizing engine with four independent methods.

    Pure: sizing reads its inputs only and keeps no per-trade state apart
    from monitoring counters.
    """

    def __init__(self, config: PositionSizingConfig = None, enable_metrics: bool = False):
        """
        Initialize position sizer.

        Args:
            config: PositionSizingConfig with all parameters
            enable_metrics: Record Prometheus metrics
        """
        if config is None:
            config = PositionSizingConfig()
        errors = config.validate()
        if errors:
            raise ConfigurationError(errors)

        self.config = config
        self.enable_metrics = enable_metrics
        self.validator = InputValidator()

        self._handlers: Dict[SizingMethod, Callable[[SizingInputs, List[str]], Tuple[float, float]]] = {
            SizingMethod.FIXED_FRACTIONAL: self._size_fixed_fractional,
            SizingMethod.KELLY: self._size_kelly,
            SizingMethod.VOLATILITY_TARGET: self._size_volatility_target,
            SizingMethod.REGIME_SCALED: self._size_regime_scaled,
        }

        self.total_recommendations = 0
        self.rejected_recommendations = 0

        logger.info(
            f"PositionSizer initialized: method="
            f"{config.method.value if config.method else config.combination.value}, "
            f"risk={config.risk_percent:.2%}, kelly_multiplier={config.kelly_multiplier}"
        )

    # ------------------------------------------------------------------
    # Candidate handlers: (size, kelly_fraction)
    # ------------------------------------------------------------------

    def _size_fixed_fractional(self, inputs: SizingInputs, notes: List[str]) -> Tuple[float, float]:
        return inputs.base_size, 0.0

    def _size_kelly(self, inputs: SizingInputs, notes: List[str]) -> Tuple[float, float]:
        cfg = self.config
        fraction, skip_reason = fractional_kelly(
            inputs.context.trade_stats,
            multiplier=cfg.kelly_multiplier,
            min_samples=cfg.kelly_min_samples,
            min_win_rate=cfg.kelly_min_win_rate,
            max_win_rate=cfg.kelly_max_win_rate
        )
        if skip_reason is not None:
            notes.append(f"Kelly skipped ({skip_reason}); using fixed-fractional size")
            return inputs.base_size, 0.0
        return inputs.equity * fraction / inputs.stop_value, fraction

    def _size_volatility_target(self, inputs: SizingInputs, notes: List[str]) -> Tuple[float, float]:
        cfg = self.config
        current = inputs.assessment.volatility
        if current <= 0:
            notes.append("Zero current volatility; volatility target multiplier set to 1.0")
            multiplier = 1.0
        else:
            multiplier = min(
                cfg.vol_multiplier_max,
                max(cfg.vol_multiplier_min, cfg.target_volatility / current)
            )
        return inputs.base_size * multiplier, 0.0

    def _size_regime_scaled(self, inputs: SizingInputs, notes: List[str]) -> Tuple[float, float]:
        factor = self.config.regime_factors[inputs.assessment.regime]
        return inputs.base_size * factor, 0.0

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    @staticmethod
    def _constrain(
        method: SizingMethod,
        size: float,
        constraints: InstrumentConstraints,
        limit: float,
        limit_note: str,
        notes: List[str]
    ) -> float:
        """Cap one candidate by max size and margin, then round down to the step."""
        if size > limit:
            notes.append(f"{method.value} capped at {limit_note}")
            size = limit
        validated = round_down_to_step(size, constraints.size_step)
        if validated > constraints.max_size:
            validated = round_down_to_step(constraints.max_size, constraints.size_step)
        return validated

    def _rejection(
        self,
        instrument: str,
        method: Optional[SizingMethod],
        reasons: List[str],
        raw_size: float = 0.0,
        candidates: Optional[Dict[SizingMethod, float]] = None,
        kelly: float = 0.0
    ) -> SizingRecommendation:
        recommendation = SizingRecommendation(
            instrument=instrument,
            method=method,
            raw_size=raw_size,
            clamped_size=0.0,
            dollar_risk=0.0,
            percent_risk=0.0,
            margin_required=0.0,
            rejected=True,
            reasons=tuple(reasons),
            candidates=dict(candidates or {}),
            kelly_fraction=kelly
        )
        self._record(recommendation)
        logger.info(f"Sizing rejected for {instrument}: {reasons}")
        return recommendation

    def _record(self, recommendation: SizingRecommendation):
        self.total_recommendations += 1
        if recommendation.rejected:
            self.rejected_recommendations += 1
        if self.enable_metrics:
            metrics.record_sizing(
                recommendation.method.value if recommendation.method else 'combined',
                recommendation.rejected,
                recommendation.kelly_fraction
            )

    def size(
        self,
        context: PositionContext,
        assessment: CompositeRiskAssessment,
        constraints: InstrumentConstraints,
        account_equity: float,
        method: Optional[SizingMethod] = None,
        available_margin: Optional[float] = None
    ) -> SizingRecommendation:
        """
        Compute a validated size recommendation.

        Args:
            context: Trade to size
            assessment: Risk assessment of the same trade
            constraints: Broker constraints for the instrument
            account_equity: Account equity
            method: Single method to use (overrides config)
            available_margin: Margin available (default equity × max utilization)

        Returns:
            SizingRecommendation (rejected with reasons on any failure)
        """
        cfg = self.config
        method = method if method is not None else cfg.method
        instrument = context.instrument

        # Boundary validation
        reasons: List[str] = []
        _, context_errors = self.validator.validate_context(context)
        reasons.extend(context_errors)
        _, constraint_errors = self.validator.validate_constraints(constraints)
        reasons.extend(constraint_errors)
        if not (isinstance(account_equity, (int, float)) and math.isfinite(account_equity)) \
                or account_equity <= 0:
            reasons.append(f"Account equity must be > 0, got {account_equity}")
        if constraints.instrument != instrument:
            reasons.append(
                f"Constraints for {constraints.instrument} do not match {instrument}"
            )
        if assessment.instrument != instrument:
            reasons.append(
                f"Assessment for {assessment.instrument} does not match {instrument}"
            )
        if reasons:
            return self._rejection(instrument, method, reasons)

        if not assessment.trading_allowed:
            reasons.append("Trading not allowed by risk assessment")
            reasons.extend(assessment.rejection_reasons)
            return self._rejection(instrument, method, reasons)

        # Candidates
        stop_value = context.stop_distance * constraints.per_unit_value
        inputs = SizingInputs(
            context=context,
            assessment=assessment,
            constraints=constraints,
            equity=account_equity,
            stop_value=stop_value,
            base_size=account_equity * cfg.risk_percent / stop_value
        )

        notes: List[str] = []
        level_scale = cfg.risk_level_scaling[assessment.risk_level]
        if level_scale < 1.0:
            notes.append(
                f"Scaled by {level_scale:.2f} for {assessment.risk_level.value} risk"
            )

        # Instrument constraints applied to every candidate
        limit = constraints.max_size
        limit_note = f"instrument maximum {constraints.max_size}"
        if constraints.margin_per_unit > 0:
            if available_margin is None:
                available_margin = account_equity * cfg.max_margin_utilization
            margin_cap = max(0.0, available_margin) / constraints.margin_per_unit
            if margin_cap < limit:
                limit = margin_cap
                limit_note = (
                    f"available margin {available_margin:,.2f} ({margin_cap:.4f} units)"
                )

        raw: Dict[SizingMethod, float] = {}
        candidates: Dict[SizingMethod, float] = {}
        kelly = 0.0
        methods = [method] if method is not None else list(SizingMethod)
        for m in methods:
            candidate, fraction = self._handlers[m](inputs, notes)
            if m is SizingMethod.KELLY:
                kelly = fraction
            raw[m] = max(0.0, candidate) * level_scale
            candidates[m] = self._constrain(m, raw[m], constraints, limit, limit_note, notes)

        if method is not None:
            raw_size, selected = raw[method], candidates[method]
        elif cfg.combination is SizingCombination.AVERAGE:
            raw_size = sum(raw.values()) / len(raw)
            selected = sum(candidates.values()) / len(candidates)
        else:
            raw_size = min(raw.values())
            selected = min(candidates.values())

        clamped = round_down_to_step(selected, constraints.size_step)

        if clamped < constraints.min_size - constraints.size_step * 1e-9:
            reasons = notes + [
                f"Size {clamped} after rounding to step {constraints.size_step} is below "
                f"instrument minimum {constraints.min_size}"
            ]
            return self._rejection(instrument, method, reasons, raw_size, candidates, kelly)

        dollar_risk = clamped * stop_value
        recommendation = SizingRecommendation(
            instrument=instrument,
            method=method,
            raw_size=raw_size,
            clamped_size=clamped,
            dollar_risk=dollar_risk,
            percent_risk=dollar_risk / account_equity,
            margin_required=clamped * constraints.margin_per_unit,
            rejected=False,
            reasons=tuple(notes),
            candidates=candidates,
            kelly_fraction=kelly
        )
        self._record(recommendation)

        logger.debug(
            f"Sized {instrument}: raw={raw_size:.4f} → {clamped} "
            f"(risk={dollar_risk:,.2f}, {recommendation.percent_risk:.2%})"
        )

        return recommendation

    def get_state(self) -> Dict:
        """Get current state for monitoring."""
        return {
            'method': self.config.method.value if self.config.method else None,
            'combination': self.config.combination.value,
            'risk_percent': self.config.risk_percent,
            'kelly_multiplier': self.config.kelly_multiplier,
            'total_recommendations': self.total_recommendations,
            'rejected_recommendations': self.rejected_recommendations
        }
