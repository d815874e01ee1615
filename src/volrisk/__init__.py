"""
VOLRISK - Volatility-Adaptive Risk Core
========================================

Rolling volatility estimation, regime classification, composite risk
scoring and position sizing for trading systems.

Version: 1.0
"""

from .core import *
from .portfolio import PortfolioAggregator
from .engines import (
    VolatilityEstimator,
    RegimeClassifier,
    RiskScorer,
    PositionSizer,
    KellyTracker,
    RiskEngine,
    RefreshCycleResult
)

__version__ = "1.0.0"
