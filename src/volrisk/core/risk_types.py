"""
VOLRISK - Core Type Definitions
================================

Core data types, enums, and dataclasses for the volatility-adaptive risk
scoring and position sizing core.

All result types are frozen dataclasses: a snapshot is built wholesale and
published by reference, never mutated in place.

Version: 1.0
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Tuple, Sequence


# ============================================================================
# ENUMS
# ============================================================================

class VolatilityRegime(Enum):
    """
    Volatility regime of an instrument relative to its own history.

    Ordered from calmest to most volatile; `rank` gives the position in
    that ordering.
    """
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    SPIKE = "spike"

    @property
    def rank(self) -> int:
        return _REGIME_ORDER.index(self)

    @classmethod
    def from_rank(cls, rank: int) -> 'VolatilityRegime':
        rank = max(0, min(len(_REGIME_ORDER) - 1, rank))
        return _REGIME_ORDER[rank]

    @classmethod
    def from_string(cls, value: str) -> 'VolatilityRegime':
        """
        Convert a regime name (any case) to the enum.

        Args:
            value: Regime name, e.g. "SPIKE" or "spike"

        Returns:
            VolatilityRegime enum value (NORMAL for unknown names)
        """
        try:
            return cls(value.lower())
        except ValueError:
            return cls.NORMAL


_REGIME_ORDER = (
    VolatilityRegime.LOW,
    VolatilityRegime.NORMAL,
    VolatilityRegime.HIGH,
    VolatilityRegime.SPIKE,
)


class TradeDirection(Enum):
    """Direction of a candidate or open position."""
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is TradeDirection.LONG else -1


class RiskLevel(Enum):
    """Bucketed overall risk score."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskFactorKind(Enum):
    """Independent contributors to the composite risk score."""
    POSITION_SIZE = "position_size"
    STOP_DISTANCE = "stop_distance"
    LEVERAGE = "leverage"
    LIQUIDITY = "liquidity"
    VOLATILITY_RATIO = "volatility_ratio"
    CORRELATION = "correlation"
    CALENDAR = "calendar"


class SizingMethod(Enum):
    """Position sizing methods."""
    FIXED_FRACTIONAL = "fixed_fractional"
    KELLY = "kelly"
    VOLATILITY_TARGET = "volatility_target"
    REGIME_SCALED = "regime_scaled"


class SizingCombination(Enum):
    """How candidate sizes are combined when no single method is selected."""
    AVERAGE = "average"
    MOST_CONSERVATIVE = "most_conservative"


# ============================================================================
# DATACLASSES - MARKET DATA
# ============================================================================

@dataclass(frozen=True)
class PriceBar:
    """One OHLC observation supplied by the market-data feed."""
    instrument: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class VolatilityEstimate:
    """
    Blended volatility snapshot for one instrument.

    All volatilities are annualized decimals. `reliable` is False when fewer
    than the configured minimum number of returns was available; callers
    treat such a snapshot as a neutral default rather than an error.
    """
    instrument: str
    timestamp: Optional[datetime]
    historical: float
    ewma: float
    garch: float
    parkinson: float
    garman_klass: float
    blended: float
    sample_size: int
    reliable: bool

    # Trend inputs for regime anticipation
    short_term_volatility: float = 0.0
    long_term_volatility: float = 0.0

    @classmethod
    def empty(cls, instrument: str) -> 'VolatilityEstimate':
        """Estimate for an instrument with no usable bars yet."""
        return cls(
            instrument=instrument,
            timestamp=None,
            historical=0.0,
            ewma=0.0,
            garch=0.0,
            parkinson=0.0,
            garman_klass=0.0,
            blended=0.0,
            sample_size=0,
            reliable=False
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'instrument': self.instrument,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'historical': self.historical,
            'ewma': self.ewma,
            'garch': self.garch,
            'parkinson': self.parkinson,
            'garman_klass': self.garman_klass,
            'blended': self.blended,
            'sample_size': self.sample_size,
            'reliable': self.reliable,
            'short_term_volatility': self.short_term_volatility,
            'long_term_volatility': self.long_term_volatility
        }


# ============================================================================
# DATACLASSES - REGIME STATE
# ============================================================================

@dataclass(frozen=True)
class RegimeThresholds:
    """Three strictly increasing volatility thresholds (25th/75th/95th pct)."""
    low: float
    normal: float
    high: float

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.low, self.normal, self.high)

    def is_strictly_increasing(self) -> bool:
        return self.low < self.normal < self.high

    def bucket(self, volatility: float) -> VolatilityRegime:
        """Classify a volatility value against the thresholds."""
        if volatility < self.low:
            return VolatilityRegime.LOW
        if volatility < self.normal:
            return VolatilityRegime.NORMAL
        if volatility <= self.high:
            return VolatilityRegime.HIGH
        return VolatilityRegime.SPIKE


@dataclass(frozen=True)
class RegimeState:
    """Current volatility regime classification of one instrument."""
    instrument: str
    regime: VolatilityRegime
    thresholds: RegimeThresholds
    entered_at: Optional[datetime]
    days_in_regime: int
    transitioning: bool
    volatility: float = 0.0
    trend: float = 0.0          # Annualized vol change per sample

    @property
    def low_threshold(self) -> float:
        return self.thresholds.low

    @property
    def normal_threshold(self) -> float:
        return self.thresholds.normal

    @property
    def high_threshold(self) -> float:
        return self.thresholds.high

    def to_dict(self) -> Dict[str, Any]:
        return {
            'instrument': self.instrument,
            'regime': self.regime.value,
            'low_threshold': self.thresholds.low,
            'normal_threshold': self.thresholds.normal,
            'high_threshold': self.thresholds.high,
            'entered_at': self.entered_at.isoformat() if self.entered_at else None,
            'days_in_regime': self.days_in_regime,
            'transitioning': self.transitioning,
            'volatility': self.volatility,
            'trend': self.trend
        }


@dataclass(frozen=True)
class TransitionRecord:
    """Historical regime change. Append-only, never mutated."""
    instrument: str
    from_regime: VolatilityRegime
    to_regime: VolatilityRegime
    trigger_volatility: float
    timestamp: Optional[datetime]
    anticipated: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'instrument': self.instrument,
            'from': self.from_regime.value,
            'to': self.to_regime.value,
            'trigger_volatility': self.trigger_volatility,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'anticipated': self.anticipated
        }


# ============================================================================
# DATACLASSES - PORTFOLIO
# ============================================================================

@dataclass(frozen=True)
class OpenPosition:
    """One open position supplied by the caller."""
    instrument: str
    size: float
    direction: TradeDirection
    entry_price: float
    current_price: Optional[float] = None
    contract_size: float = 1.0

    @property
    def notional(self) -> float:
        price = self.current_price if self.current_price is not None else self.entry_price
        return abs(self.size) * price * self.contract_size


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Aggregated open-position risk picture. Swapped wholesale."""
    timestamp: Optional[datetime]
    total_exposure: float
    net_exposure: float
    concentration_index: float          # Herfindahl index [0, 1]
    correlation_risk: float             # [0, 1]
    leverage_ratio: float
    equity: float
    position_count: int = 0
    exposure_by_instrument: Dict[str, float] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()
    valid: bool = True                  # False when the inputs could not be aggregated

    @classmethod
    def empty(cls, equity: float = 0.0) -> 'PortfolioSnapshot':
        return cls(
            timestamp=None,
            total_exposure=0.0,
            net_exposure=0.0,
            concentration_index=0.0,
            correlation_risk=0.0,
            leverage_ratio=0.0,
            equity=equity
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'total_exposure': self.total_exposure,
            'net_exposure': self.net_exposure,
            'concentration_index': self.concentration_index,
            'correlation_risk': self.correlation_risk,
            'leverage_ratio': self.leverage_ratio,
            'equity': self.equity,
            'position_count': self.position_count,
            'exposure_by_instrument': dict(self.exposure_by_instrument),
            'warnings': list(self.warnings),
            'valid': self.valid
        }


# ============================================================================
# DATACLASSES - TRADE REQUESTS
# ============================================================================

@dataclass(frozen=True)
class TradeStatistics:
    """Historical trade performance used by the Kelly sizing method."""
    win_rate: float
    average_win: float
    average_loss: float                 # Positive magnitude
    sample_size: int


@dataclass(frozen=True)
class PositionContext:
    """
    One candidate or open trade to be scored and sized.

    Constructed per request by the caller and never retained by the core.
    When `timestamp` is None the timestamp of the published volatility
    estimate is used, so identical inputs always score identically.
    """
    instrument: str
    direction: TradeDirection
    requested_size: float
    entry_price: float
    stop_price: float
    account_equity: float
    target_price: Optional[float] = None
    open_positions: Sequence[OpenPosition] = ()
    contract_size: float = 1.0
    timestamp: Optional[datetime] = None
    trade_stats: Optional[TradeStatistics] = None

    @property
    def stop_distance(self) -> float:
        """Signed distance from entry to stop in the losing direction."""
        return (self.entry_price - self.stop_price) * self.direction.sign

    @property
    def notional(self) -> float:
        return abs(self.requested_size) * self.entry_price * self.contract_size


@dataclass(frozen=True)
class InstrumentConstraints:
    """Broker constraints on order size for one instrument."""
    instrument: str
    min_size: float
    max_size: float
    size_step: float
    per_unit_value: float               # Account currency per 1.0 price move per unit
    margin_per_unit: float = 0.0


# ============================================================================
# DATACLASSES - RESULTS
# ============================================================================

@dataclass(frozen=True)
class RiskFactorScore:
    """One named, weighted risk contributor."""
    kind: RiskFactorKind
    raw_value: float
    score: float                        # Normalized [0, 1]
    weight: float

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def weighted_score(self) -> float:
        return self.score * self.weight

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'raw_value': self.raw_value,
            'score': self.score,
            'weight': self.weight
        }


@dataclass(frozen=True)
class CompositeRiskAssessment:
    """Result of scoring a PositionContext."""
    instrument: str
    overall_score: float
    risk_level: RiskLevel
    factors: Tuple[RiskFactorScore, ...]
    trading_allowed: bool
    warnings: Tuple[str, ...] = ()
    rejection_reasons: Tuple[str, ...] = ()
    volatility: float = 0.0
    regime: VolatilityRegime = VolatilityRegime.NORMAL
    timestamp: Optional[datetime] = None

    def factor(self, kind: RiskFactorKind) -> Optional[RiskFactorScore]:
        for factor in self.factors:
            if factor.kind is kind:
                return factor
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'instrument': self.instrument,
            'overall_score': self.overall_score,
            'risk_level': self.risk_level.value,
            'factors': [f.to_dict() for f in self.factors],
            'trading_allowed': self.trading_allowed,
            'warnings': list(self.warnings),
            'rejection_reasons': list(self.rejection_reasons),
            'volatility': self.volatility,
            'regime': self.regime.value,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None
        }


@dataclass(frozen=True)
class SizingRecommendation:
    """Result of sizing a trade."""
    instrument: str
    method: Optional[SizingMethod]      # None when candidates were combined
    raw_size: float
    clamped_size: float
    dollar_risk: float
    percent_risk: float
    margin_required: float
    rejected: bool
    reasons: Tuple[str, ...] = ()
    candidates: Dict[SizingMethod, float] = field(default_factory=dict)  # Validated per method
    kelly_fraction: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'instrument': self.instrument,
            'method': self.method.value if self.method else 'combined',
            'raw_size': self.raw_size,
            'clamped_size': self.clamped_size,
            'dollar_risk': self.dollar_risk,
            'percent_risk': self.percent_risk,
            'margin_required': self.margin_required,
            'rejected': self.rejected,
            'reasons': list(self.reasons),
            'candidates': {m.value: s for m, s in self.candidates.items()},
            'kelly_fraction': self.kelly_fraction
        }


# ============================================================================
# EXCEPTIONS
# ============================================================================

class VolRiskError(Exception):
    """Base class for volrisk errors."""
    pass


class ConfigurationError(VolRiskError):
    """Raised when configuration is invalid."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class InvalidInputError(VolRiskError, ValueError):
    """Raised by explicit validate-or-raise helpers for rejected inputs."""

    def __init__(self, reasons):
        if isinstance(reasons, str):
            reasons = [reasons]
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons))
