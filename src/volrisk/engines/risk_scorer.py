"""
VOLRISK - Composite Risk Scorer
================================

Scores a candidate or open trade against already-published snapshots.

Each RiskFactorKind has a typed handler returning (raw_value, score) with
the score clamped to [0, 1]. Scores are combined with fixed weights that
sum to 1 into the overall score, which is bucketed into a RiskLevel.

Hot path: constant work per call, no window scans, no recomputation of
volatility or regimes, no shared state written.

Version: 1.0
"""

import calendar
import math
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from ..core.risk_config import RiskScorerConfig
from ..core.input_validator import InputValidator
from ..core.risk_types import (
    CompositeRiskAssessment,
    ConfigurationError,
    PortfolioSnapshot,
    PositionContext,
    RegimeState,
    RiskFactorKind,
    RiskFactorScore,
    RiskLevel,
    VolatilityEstimate,
    VolatilityRegime,
)
from ..core import risk_metrics as metrics

logger = logging.getLogger(__name__)


def clamp01(value: float) -> float:
    if math.isnan(value):
        return 1.0
    return min(1.0, max(0.0, value))


class ScoringInputs(NamedTuple):
    """Resolved inputs shared by every factor handler."""
    context: PositionContext
    volatility: float                   # Annualized, never zero
    regime: Optional[RegimeState]
    portfolio: PortfolioSnapshot
    timestamp: Optional[datetime]       # UTC


class RiskScorer:
    """
    Composite risk scorer.

    Combines position size, stop distance, leverage, liquidity,
    volatility-ratio, correlation and calendar risk into one bounded score.
    """

    def __init__(self, config: RiskScorerConfig = None, enable_metrics: bool = False):
        """
        Initialize risk scorer.

        Args:
            config: RiskScorerConfig with weights and thresholds
            enable_metrics: Record Prometheus metrics
        """
        if config is None:
            config = RiskScorerConfig()
        errors = config.validate()
        if errors:
            raise ConfigurationError(errors)

        self.config = config
        self.enable_metrics = enable_metrics
        self.validator = InputValidator()

        self._handlers: Dict[RiskFactorKind, Callable[[ScoringInputs], Tuple[float, float]]] = {
            RiskFactorKind.POSITION_SIZE: self._score_position_size,
            RiskFactorKind.STOP_DISTANCE: self._score_stop_distance,
            RiskFactorKind.LEVERAGE: self._score_leverage,
            RiskFactorKind.LIQUIDITY: self._score_liquidity,
            RiskFactorKind.VOLATILITY_RATIO: self._score_volatility_ratio,
            RiskFactorKind.CORRELATION: self._score_correlation,
            RiskFactorKind.CALENDAR: self._score_calendar,
        }

    # ------------------------------------------------------------------
    # Level bucketing
    # ------------------------------------------------------------------

    def risk_level(self, overall_score: float) -> RiskLevel:
        """Monotonic bucketing of the overall score."""
        low, medium, high = self.config.level_thresholds
        if overall_score < low:
            return RiskLevel.LOW
        if overall_score < medium:
            return RiskLevel.MEDIUM
        if overall_score < high:
            return RiskLevel.HIGH
        return RiskLevel.CRITICAL

    # ------------------------------------------------------------------
    # Factor handlers
    # ------------------------------------------------------------------

    def _position_ratio(self, inputs: ScoringInputs) -> float:
        return inputs.context.notional / inputs.context.account_equity

    def _effective_leverage(self, inputs: ScoringInputs) -> float:
        return (
            (inputs.portfolio.total_exposure + inputs.context.notional)
            / inputs.context.account_equity
        )

    def _score_position_size(self, inputs: ScoringInputs) -> Tuple[float, float]:
        ratio = self._position_ratio(inputs)
        return ratio, clamp01(ratio / self.config.position_ratio_saturation)

    def _score_stop_distance(self, inputs: ScoringInputs) -> Tuple[float, float]:
        """
        Stop distance in multiples of per-period volatility.

        Stops tighter than `stop_vol_ratio_tight` risk being hit by noise;
        stops wider than `stop_vol_ratio_comfortable` risk large losses.
        """
        cfg = self.config
        ctx = inputs.context
        stop_pct = ctx.stop_distance / ctx.entry_price
        period_vol = inputs.volatility / math.sqrt(cfg.periods_per_year)
        ratio = stop_pct / period_vol

        if ratio < cfg.stop_vol_ratio_tight:
            score = (cfg.stop_vol_ratio_tight - ratio) / cfg.stop_vol_ratio_tight
        elif ratio <= cfg.stop_vol_ratio_comfortable:
            score = 0.0
        else:
            score = (ratio - cfg.stop_vol_ratio_comfortable) / (
                cfg.stop_vol_ratio_saturation - cfg.stop_vol_ratio_comfortable
            )
        return ratio, clamp01(score)

    def _score_leverage(self, inputs: ScoringInputs) -> Tuple[float, float]:
        leverage = self._effective_leverage(inputs)
        return leverage, clamp01(leverage / self.config.leverage_saturation)

    def _score_liquidity(self, inputs: ScoringInputs) -> Tuple[float, float]:
        """Session liquidity by UTC hour; weekends are the least liquid."""
        cfg = self.config
        ts = inputs.timestamp
        if ts is None:
            return 0.0, 0.0

        hour = ts.hour
        weekday = ts.weekday()  # Monday = 0
        if weekday == 5 or (weekday == 6 and hour < 21) or (weekday == 4 and hour >= 21):
            score = cfg.weekend_risk
        elif 12 <= hour < 16:
            score = cfg.session_overlap_risk
        elif 7 <= hour < 12 or 16 <= hour < 21:
            score = cfg.session_main_risk
        else:
            score = cfg.session_off_risk
        return float(hour), clamp01(score)

    def _score_volatility_ratio(self, inputs: ScoringInputs) -> Tuple[float, float]:
        """
        Position of the current volatility within the regime thresholds:
        0 at the low threshold, 0.5 at the normal threshold, 1 at the high
        threshold and beyond.
        """
        vol = inputs.volatility
        regime = inputs.regime
        if regime is None:
            return vol, 0.5

        if regime.regime is VolatilityRegime.SPIKE:
            return vol, 1.0

        low, normal, high = regime.thresholds.as_tuple()
        if vol <= low:
            score = 0.0
        elif vol <= normal:
            score = 0.5 * (vol - low) / (normal - low)
        elif vol <= high:
            score = 0.5 + 0.5 * (vol - normal) / (high - normal)
        else:
            score = 1.0

        if regime.transitioning:
            score += self.config.transitioning_regime_penalty
        return vol, clamp01(score)

    def _score_correlation(self, inputs: ScoringInputs) -> Tuple[float, float]:
        portfolio = inputs.portfolio
        combined = 0.5 * portfolio.concentration_index + 0.5 * portfolio.correlation_risk
        return combined, clamp01(combined)

    def _score_calendar(self, inputs: ScoringInputs) -> Tuple[float, float]:
        """Weekend-gap, Monday-open and month-end risk."""
        cfg = self.config
        ts = inputs.timestamp
        if ts is None:
            return 0.0, 0.0

        weekday = ts.weekday()
        scores = [0.0]
        if weekday == 4 and ts.hour >= 20:
            scores.append(cfg.friday_close_risk)
        if weekday == 0 and ts.hour < 2:
            scores.append(cfg.monday_open_risk)
        if ts.day == calendar.monthrange(ts.year, ts.month)[1]:
            scores.append(cfg.month_end_risk)
        return float(weekday), clamp01(max(scores))

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _resolve_volatility(
        self,
        vol: Optional[VolatilityEstimate],
        warnings: List[str]
    ) -> float:
        if vol is None:
            warnings.append(
                f"No volatility estimate; using default {self.config.default_volatility:.2%}"
            )
            return self.config.default_volatility
        if not vol.reliable:
            warnings.append(
                f"Volatility estimate unreliable (n={vol.sample_size}); "
                f"using default {self.config.default_volatility:.2%}"
            )
            return self.config.default_volatility
        if vol.blended <= 0:
            warnings.append(
                f"Zero volatility estimate; using default {self.config.default_volatility:.2%}"
            )
            return self.config.default_volatility
        return vol.blended

    @staticmethod
    def _resolve_timestamp(
        context: PositionContext,
        vol: Optional[VolatilityEstimate],
        portfolio: PortfolioSnapshot
    ) -> Optional[datetime]:
        ts = context.timestamp
        if ts is None and vol is not None:
            ts = vol.timestamp
        if ts is None:
            ts = portfolio.timestamp
        if ts is None:
            return None
        if ts.tzinfo is None:
            return ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc)

    def _invalid_assessment(
        self,
        context: PositionContext,
        errors: List[str],
        vol: Optional[VolatilityEstimate],
        regime: Optional[RegimeState]
    ) -> CompositeRiskAssessment:
        assessment = CompositeRiskAssessment(
            instrument=context.instrument,
            overall_score=1.0,
            risk_level=RiskLevel.CRITICAL,
            factors=(),
            trading_allowed=False,
            rejection_reasons=tuple(errors),
            volatility=vol.blended if vol is not None else 0.0,
            regime=regime.regime if regime is not None else VolatilityRegime.NORMAL,
            timestamp=context.timestamp
        )
        if self.enable_metrics:
            metrics.record_assessment(1.0, 'invalid_input')
        return assessment

    def score(
        self,
        context: PositionContext,
        vol: Optional[VolatilityEstimate],
        regime: Optional[RegimeState],
        portfolio: Optional[PortfolioSnapshot]
    ) -> CompositeRiskAssessment:
        """
        Score a trade against published snapshots.

        Args:
            context: Candidate or open trade
            vol: Published VolatilityEstimate for the instrument
            regime: Published RegimeState for the instrument
            portfolio: Published PortfolioSnapshot

        Returns:
            CompositeRiskAssessment (never raises for invalid inputs)
        """
        is_valid, errors = self.validator.validate_context(context)
        if not is_valid:
            return self._invalid_assessment(context, errors, vol, regime)

        warnings: List[str] = []
        if portfolio is None:
            portfolio = PortfolioSnapshot.empty(context.account_equity)
        if regime is None:
            warnings.append("No regime state; volatility ratio scored as neutral")

        inputs = ScoringInputs(
            context=context,
            volatility=self._resolve_volatility(vol, warnings),
            regime=regime,
            portfolio=portfolio,
            timestamp=self._resolve_timestamp(context, vol, portfolio)
        )
        if inputs.timestamp is None:
            warnings.append("No timestamp available; session and calendar risk not scored")

        factors = []
        for kind in RiskFactorKind:
            raw, score = self._handlers[kind](inputs)
            factors.append(RiskFactorScore(
                kind=kind,
                raw_value=raw,
                score=score,
                weight=self.config.weight_for(kind)
            ))

        overall = clamp01(sum(f.weighted_score for f in factors))
        level = self.risk_level(overall)

        # Hard limits
        reasons: List[str] = []
        position_ratio = self._position_ratio(inputs)
        if position_ratio > self.config.max_position_equity_ratio:
            reasons.append(
                f"Position notional {position_ratio:.1%} of equity exceeds limit "
                f"{self.config.max_position_equity_ratio:.1%}"
            )
        leverage = self._effective_leverage(inputs)
        if leverage > self.config.hard_max_leverage:
            reasons.append(
                f"Effective leverage {leverage:.2f} exceeds limit "
                f"{self.config.hard_max_leverage:.2f}"
            )
        if not portfolio.valid:
            reasons.append(
                "Portfolio snapshot invalid: " + "; ".join(portfolio.warnings or ("no detail",))
            )
        hard_limit_hit = bool(reasons)

        if level is RiskLevel.CRITICAL:
            reasons.insert(0, f"Overall risk score {overall:.3f} is critical")

        # Advisory warnings
        if context.target_price is not None:
            reward = (context.target_price - context.entry_price) * context.direction.sign
            reward_risk = reward / context.stop_distance
            if reward_risk < self.config.min_reward_risk:
                warnings.append(
                    f"Reward/risk {reward_risk:.2f} below {self.config.min_reward_risk:.2f}"
                )
        if regime is not None:
            if regime.regime is VolatilityRegime.SPIKE:
                warnings.append("Instrument is in a volatility spike regime")
            if regime.transitioning:
                warnings.append("Regime transition projected within horizon")

        trading_allowed = not reasons

        assessment = CompositeRiskAssessment(
            instrument=context.instrument,
            overall_score=overall,
            risk_level=level,
            factors=tuple(factors),
            trading_allowed=trading_allowed,
            warnings=tuple(warnings),
            rejection_reasons=tuple(reasons),
            volatility=inputs.volatility,
            regime=regime.regime if regime is not None else VolatilityRegime.NORMAL,
            timestamp=inputs.timestamp
        )

        if self.enable_metrics:
            blocked = None
            if level is RiskLevel.CRITICAL:
                blocked = 'critical_score'
            elif hard_limit_hit:
                blocked = 'hard_limit'
            metrics.record_assessment(overall, blocked)

        if not trading_allowed:
            logger.info(
                f"Trading blocked for {context.instrument}: score={overall:.3f} "
                f"({level.value}), reasons={reasons}"
            )
        else:
            logger.debug(
                f"Risk assessment {context.instrument}: score={overall:.3f} ({level.value})"
            )

        return assessment

    def get_state(self) -> Dict:
        """Get current state for monitoring."""
        return {
            'factor_weights': dict(self.config.factor_weights),
            'level_thresholds': tuple(self.config.level_thresholds),
            'max_position_equity_ratio': self.config.max_position_equity_ratio,
            'hard_max_leverage': self.config.hard_max_leverage
        }
