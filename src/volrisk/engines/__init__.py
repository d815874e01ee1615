"""Risk engines - volatility, regime, scoring and sizing"""

# Slow path
from .volatility_estimator import VolatilityEstimator
from .regime_classifier import RegimeClassifier

# Hot path
from .risk_scorer import RiskScorer
from .kelly import kelly_fraction, fractional_kelly, KellyTracker
from .position_sizer import PositionSizer

# Main Engine
from .risk_engine import RiskEngine, RefreshCycleResult, build_components
