"""
VOLRISK - Configuration
========================

One versioned configuration dataclass per component, passed at construction.
`VolRiskConfig` aggregates them and can be built from a plain dictionary
(e.g. the YAML document loaded by ConfigManager).

Version: 1.0
"""

from dataclasses import dataclass, field, fields, is_dataclass
from typing import Tuple, Dict, Optional, Any, List

from .risk_types import (
    ConfigurationError,
    RiskFactorKind,
    RiskLevel,
    SizingCombination,
    SizingMethod,
    VolatilityRegime,
)

CONFIG_VERSION = 1


@dataclass
class VolatilityEstimatorConfig:
    """Configuration for the Volatility Estimator."""

    version: int = CONFIG_VERSION

    # Rolling window of bars per instrument
    window_capacity: int = 100

    # Annualization (trading periods per year)
    periods_per_year: int = 252

    # Reliability floor (number of returns)
    min_samples: int = 10

    # EWMA decay
    ewma_lambda: float = 0.94

    # GARCH(1,1) fixed parameters
    garch_omega: float = 1e-6
    garch_alpha: float = 0.09
    garch_beta: float = 0.90

    # Short/long windows feeding regime anticipation
    short_window: int = 5
    long_window: int = 20

    # Blend weights (renormalized over valid estimators)
    blend_weights: Dict[str, float] = field(default_factory=lambda: {
        'historical': 0.15,
        'ewma': 0.30,
        'garch': 0.30,
        'parkinson': 0.125,
        'garman_klass': 0.125,
    })

    def validate(self) -> List[str]:
        errors = []
        if self.window_capacity < 2:
            errors.append(f"window_capacity must be >= 2, got {self.window_capacity}")
        if self.periods_per_year <= 0:
            errors.append(f"periods_per_year must be > 0, got {self.periods_per_year}")
        if self.min_samples < 1:
            errors.append(f"min_samples must be >= 1, got {self.min_samples}")
        if not 0.0 < self.ewma_lambda < 1.0:
            errors.append(f"ewma_lambda must be in (0, 1), got {self.ewma_lambda}")
        if self.garch_omega <= 0 or self.garch_alpha < 0 or self.garch_beta < 0:
            errors.append("garch parameters must be omega > 0, alpha >= 0, beta >= 0")
        if self.garch_alpha + self.garch_beta >= 1.0:
            errors.append(
                f"garch alpha + beta must be < 1, got {self.garch_alpha + self.garch_beta}"
            )
        if not 2 <= self.short_window < self.long_window:
            errors.append(
                f"windows must satisfy 2 <= short < long, got "
                f"{self.short_window}/{self.long_window}"
            )
        unknown = set(self.blend_weights) - {
            'historical', 'ewma', 'garch', 'parkinson', 'garman_klass'
        }
        if unknown:
            errors.append(f"Unknown blend estimators: {sorted(unknown)}")
        if any(w < 0 for w in self.blend_weights.values()):
            errors.append("blend weights must be non-negative")
        if sum(self.blend_weights.values()) <= 0:
            errors.append("blend weights must not all be zero")
        return errors


@dataclass
class RegimeClassifierConfig:
    """Configuration for the Regime Classifier."""

    version: int = CONFIG_VERSION

    # Trailing volatility history (one trading year)
    history_length: int = 252

    # Percentiles for the LOW/NORMAL/HIGH thresholds
    percentiles: Tuple[float, float, float] = (25.0, 75.0, 95.0)

    # Samples required before percentile thresholds replace the defaults
    min_history: int = 20
    default_thresholds: Tuple[float, float, float] = (0.10, 0.20, 0.35)

    # Fixed thresholds override percentile recomputation when set
    fixed_thresholds: Optional[Tuple[float, float, float]] = None

    # Minimum gap keeping thresholds strictly increasing
    min_threshold_gap: float = 1e-4

    # Samples ahead a trend must project a crossing to count as anticipated
    anticipation_horizon: int = 5

    # Windows behind the estimate's short/long volatilities (trend lag)
    trend_short_window: int = 5
    trend_long_window: int = 20

    @property
    def trend_lag(self) -> float:
        """Samples between the centers of the short and long windows."""
        return (self.trend_long_window - self.trend_short_window) / 2.0

    def validate(self) -> List[str]:
        errors = []
        if not 1 <= self.trend_short_window < self.trend_long_window:
            errors.append(
                f"trend windows must satisfy 1 <= short < long, got "
                f"{self.trend_short_window}/{self.trend_long_window}"
            )
        if self.history_length < 2:
            errors.append(f"history_length must be >= 2, got {self.history_length}")
        p = tuple(self.percentiles)
        if len(p) != 3 or not 0.0 <= p[0] < p[1] < p[2] <= 100.0:
            errors.append(f"percentiles must be strictly increasing in [0, 100], got {p}")
        if self.min_history < 2:
            errors.append(f"min_history must be >= 2, got {self.min_history}")
        for name in ('default_thresholds', 'fixed_thresholds'):
            t = getattr(self, name)
            if t is None:
                continue
            t = tuple(t)
            if len(t) != 3 or not 0.0 <= t[0] < t[1] < t[2]:
                errors.append(f"{name} must be three strictly increasing values, got {t}")
        if self.min_threshold_gap <= 0:
            errors.append(f"min_threshold_gap must be > 0, got {self.min_threshold_gap}")
        if self.anticipation_horizon < 1:
            errors.append(
                f"anticipation_horizon must be >= 1, got {self.anticipation_horizon}"
            )
        return errors


@dataclass
class PortfolioAggregatorConfig:
    """Configuration for the Portfolio Aggregator."""

    version: int = CONFIG_VERSION

    # Similarity heuristic for instrument pairs
    same_instrument_similarity: float = 1.0
    shared_base_similarity: float = 0.7
    shared_quote_similarity: float = 0.5
    cross_currency_similarity: float = 0.3

    # Opposite-direction pairs offset each other by this factor
    hedge_offset: float = 0.0

    def validate(self) -> List[str]:
        errors = []
        for f in ('same_instrument_similarity', 'shared_base_similarity',
                  'shared_quote_similarity', 'cross_currency_similarity', 'hedge_offset'):
            value = getattr(self, f)
            if not 0.0 <= value <= 1.0:
                errors.append(f"{f} must be in [0, 1], got {value}")
        return errors


@dataclass
class RiskScorerConfig:
    """Configuration for the Risk Scorer."""

    version: int = CONFIG_VERSION

    # Factor weights (must sum to 1)
    factor_weights: Dict[str, float] = field(default_factory=lambda: {
        'position_size': 0.25,
        'stop_distance': 0.20,
        'leverage': 0.15,
        'liquidity': 0.10,
        'volatility_ratio': 0.10,
        'correlation': 0.10,
        'calendar': 0.10,
    })

    # Risk level bucket thresholds (Low < 0.3, Medium < 0.5, High < 0.7)
    level_thresholds: Tuple[float, float, float] = (0.3, 0.5, 0.7)

    # Position size: notional / equity at which the factor saturates
    position_ratio_saturation: float = 0.5

    # Stop distance in multiples of per-period volatility
    stop_vol_ratio_tight: float = 0.5
    stop_vol_ratio_comfortable: float = 2.0
    stop_vol_ratio_saturation: float = 4.0

    # Effective leverage at which the factor saturates
    leverage_saturation: float = 1.0

    # Neutral annualized volatility used when the estimate is unreliable
    default_volatility: float = 0.15
    periods_per_year: int = 252

    # Session liquidity risk by UTC hour band
    session_overlap_risk: float = 0.0   # London/New York overlap 12-16
    session_main_risk: float = 0.2      # London 7-12, New York 16-21
    session_off_risk: float = 0.5       # Asian hours 21-7
    weekend_risk: float = 1.0

    # Calendar risk
    friday_close_risk: float = 0.8      # Friday from 20:00 UTC
    monday_open_risk: float = 0.5       # Monday before 02:00 UTC
    month_end_risk: float = 0.3
    transitioning_regime_penalty: float = 0.1

    # Hard limits (trading blocked regardless of score)
    max_position_equity_ratio: float = 0.5
    hard_max_leverage: float = 5.0

    # Reward/risk below this only warns
    min_reward_risk: float = 1.0

    def validate(self) -> List[str]:
        errors = []
        kinds = {k.value for k in RiskFactorKind}
        if set(self.factor_weights) != kinds:
            errors.append(
                f"factor_weights must name exactly {sorted(kinds)}, "
                f"got {sorted(self.factor_weights)}"
            )
        if any(w < 0 for w in self.factor_weights.values()):
            errors.append("factor weights must be non-negative")
        total = sum(self.factor_weights.values())
        if abs(total - 1.0) > 1e-6:
            errors.append(f"factor weights must sum to 1, got {total:.6f}")
        t = tuple(self.level_thresholds)
        if len(t) != 3 or not 0.0 < t[0] < t[1] < t[2] <= 1.0:
            errors.append(f"level_thresholds must be strictly increasing in (0, 1], got {t}")
        if not 0 < self.stop_vol_ratio_tight < self.stop_vol_ratio_comfortable \
                < self.stop_vol_ratio_saturation:
            errors.append("stop ratios must satisfy 0 < tight < comfortable < saturation")
        for f in ('position_ratio_saturation', 'leverage_saturation', 'default_volatility',
                  'max_position_equity_ratio', 'hard_max_leverage'):
            if getattr(self, f) <= 0:
                errors.append(f"{f} must be > 0, got {getattr(self, f)}")
        if self.periods_per_year <= 0:
            errors.append(f"periods_per_year must be > 0, got {self.periods_per_year}")
        return errors

    def weight_for(self, kind: RiskFactorKind) -> float:
        return self.factor_weights[kind.value]


@dataclass
class PositionSizingConfig:
    """Configuration for the Position Sizing Engine."""

    version: int = CONFIG_VERSION

    # Single method, or None to combine all candidates
    method: Optional[SizingMethod] = None
    combination: SizingCombination = SizingCombination.MOST_CONSERVATIVE

    # Fixed-fractional risk per trade
    risk_percent: float = 0.01

    # Kelly
    kelly_multiplier: float = 0.25      # Quarter Kelly
    kelly_min_samples: int = 30
    kelly_min_win_rate: float = 0.2
    kelly_max_win_rate: float = 0.8

    # Volatility targeting
    target_volatility: float = 0.15
    vol_multiplier_min: float = 0.1
    vol_multiplier_max: float = 4.0

    # Regime scaling
    regime_factors: Dict[VolatilityRegime, float] = field(default_factory=lambda: {
        VolatilityRegime.LOW: 1.5,
        VolatilityRegime.NORMAL: 1.0,
        VolatilityRegime.HIGH: 0.7,
        VolatilityRegime.SPIKE: 0.4,
    })

    # Scaling by assessed risk level
    risk_level_scaling: Dict[RiskLevel, float] = field(default_factory=lambda: {
        RiskLevel.LOW: 1.0,
        RiskLevel.MEDIUM: 0.8,
        RiskLevel.HIGH: 0.5,
        RiskLevel.CRITICAL: 0.0,
    })

    # Fraction of equity usable as margin when none is supplied
    max_margin_utilization: float = 1.0

    def validate(self) -> List[str]:
        errors = []
        if not 0.0 < self.risk_percent <= 1.0:
            errors.append(f"risk_percent must be in (0, 1], got {self.risk_percent}")
        if not 0.0 < self.kelly_multiplier <= 1.0:
            errors.append(f"kelly_multiplier must be in (0, 1], got {self.kelly_multiplier}")
        if self.kelly_min_samples < 1:
            errors.append(f"kelly_min_samples must be >= 1, got {self.kelly_min_samples}")
        if not 0.0 <= self.kelly_min_win_rate < self.kelly_max_win_rate <= 1.0:
            errors.append("kelly win-rate band must satisfy 0 <= min < max <= 1")
        if self.target_volatility <= 0:
            errors.append(f"target_volatility must be > 0, got {self.target_volatility}")
        if not 0.0 < self.vol_multiplier_min <= self.vol_multiplier_max:
            errors.append("volatility multiplier range must satisfy 0 < min <= max")
        if set(self.regime_factors) != set(VolatilityRegime):
            errors.append("regime_factors must cover every regime")
        if any(v < 0 for v in self.regime_factors.values()):
            errors.append("regime factors must be non-negative")
        if set(self.risk_level_scaling) != set(RiskLevel):
            errors.append("risk_level_scaling must cover every risk level")
        if any(not 0.0 <= v <= 1.0 for v in self.risk_level_scaling.values()):
            errors.append("risk level scaling values must be in [0, 1]")
        if not 0.0 < self.max_margin_utilization <= 1.0:
            errors.append(
                f"max_margin_utilization must be in (0, 1], got {self.max_margin_utilization}"
            )
        return errors


@dataclass
class VolRiskConfig:
    """Complete configuration for the volatility risk core."""

    volatility: VolatilityEstimatorConfig = field(default_factory=VolatilityEstimatorConfig)
    regime: RegimeClassifierConfig = field(default_factory=RegimeClassifierConfig)
    portfolio: PortfolioAggregatorConfig = field(default_factory=PortfolioAggregatorConfig)
    scoring: RiskScorerConfig = field(default_factory=RiskScorerConfig)
    sizing: PositionSizingConfig = field(default_factory=PositionSizingConfig)

    def validate(self) -> List[str]:
        errors = []
        for section in ('volatility', 'regime', 'portfolio', 'scoring', 'sizing'):
            errors.extend(f"{section}.{e}" for e in getattr(self, section).validate())
        # The regime trend lag must describe the windows the estimator uses
        windows = (self.volatility.short_window, self.volatility.long_window)
        trend_windows = (self.regime.trend_short_window, self.regime.trend_long_window)
        if windows != trend_windows:
            errors.append(
                f"regime trend windows {trend_windows[0]}/{trend_windows[1]} must match "
                f"volatility short/long windows {windows[0]}/{windows[1]}"
            )
        return errors

    def validate_or_raise(self) -> 'VolRiskConfig':
        errors = self.validate()
        if errors:
            raise ConfigurationError(errors)
        return self

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'VolRiskConfig':
        """
        Build a config from a nested dictionary.

        Missing sections and keys keep their defaults. Enum-valued fields
        accept their string values (e.g. sizing.method: "kelly").

        Raises:
            ConfigurationError: on unknown keys or invalid values
        """
        data = data or {}
        sections = {
            'volatility': VolatilityEstimatorConfig,
            'regime': RegimeClassifierConfig,
            'portfolio': PortfolioAggregatorConfig,
            'scoring': RiskScorerConfig,
            'sizing': PositionSizingConfig,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigurationError(f"Unknown config sections: {sorted(unknown)}")

        built = {}
        for name, section_cls in sections.items():
            built[name] = _build_section(section_cls, data.get(name) or {}, name)

        return cls(**built).validate_or_raise()


def _build_section(section_cls, values: Dict[str, Any], section_name: str):
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(f"Unknown keys in {section_name}: {sorted(unknown)}")

    kwargs = {}
    for key, value in values.items():
        kwargs[key] = _coerce(section_cls, key, value)
    return section_cls(**kwargs)


def _coerce(section_cls, key: str, value: Any) -> Any:
    try:
        if section_cls is PositionSizingConfig:
            if key == 'method':
                return SizingMethod(value) if value is not None else None
            if key == 'combination':
                return SizingCombination(value)
            if key == 'regime_factors':
                return {VolatilityRegime(k.lower()): float(v) for k, v in value.items()}
            if key == 'risk_level_scaling':
                return {RiskLevel(k.lower()): float(v) for k, v in value.items()}
    except (ValueError, AttributeError) as e:
        raise ConfigurationError(f"Invalid value for {key}: {value!r} ({e})")

    if key in ('percentiles', 'default_thresholds', 'fixed_thresholds', 'level_thresholds'):
        return tuple(value) if value is not None else None
    return value


def config_to_dict(config: VolRiskConfig) -> Dict[str, Any]:
    """Serialize a config to plain values (enums as strings)."""
    def convert(value):
        if is_dataclass(value):
            return {f.name: convert(getattr(value, f.name)) for f in fields(value)}
        if isinstance(value, dict):
            return {convert(k): convert(v) for k, v in value.items()}
        if isinstance(value, tuple):
            return list(value)
        if hasattr(value, 'value') and not isinstance(value, (int, float, str)):
            return value.value
        return value

    return convert(config)
