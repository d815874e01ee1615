"""Core modules for the volatility risk core"""
from .risk_types import *
from .config_manager import ConfigManager

from .risk_config import (
    VolatilityEstimatorConfig,
    RegimeClassifierConfig,
    PortfolioAggregatorConfig,
    RiskScorerConfig,
    PositionSizingConfig,
    VolRiskConfig,
    config_to_dict
)
from .input_validator import InputValidator
from .snapshot_registry import (
    PortfolioRef,
    PublishedState,
    RiskStateRegistry,
    SnapshotRef,
    SnapshotRegistry,
    TransitionLog,
)
