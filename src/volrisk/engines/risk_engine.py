"""
VOLRISK - Risk Engine
======================

Complete volatility-adaptive risk core.

Slow path (background refresh, seconds to minutes):
1. Volatility estimation per instrument
2. Regime classification with transition log
3. Portfolio aggregation

Hot path (per trade, read-only against published snapshots):
4. Composite risk scoring
5. Position sizing

A refresh cycle computes every instrument first and publishes all results
together under one generation number, so readers never observe a half
refreshed cycle and a slower, older cycle cannot overwrite a newer one.

Version: 1.0
"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple
import logging

from ..core.config_manager import ConfigManager
from ..core.risk_config import VolRiskConfig
from ..core.risk_types import (
    CompositeRiskAssessment,
    InstrumentConstraints,
    OpenPosition,
    PortfolioSnapshot,
    PositionContext,
    PriceBar,
    RegimeState,
    SizingMethod,
    SizingRecommendation,
    TransitionRecord,
    VolatilityEstimate,
)
from ..core.snapshot_registry import RiskStateRegistry
from ..core import risk_metrics as metrics
from ..portfolio.portfolio_aggregator import PortfolioAggregator
from .volatility_estimator import VolatilityEstimator
from .regime_classifier import RegimeClassifier
from .risk_scorer import RiskScorer
from .position_sizer import PositionSizer
from .kelly import KellyTracker

logger = logging.getLogger(__name__)


class EngineComponents(NamedTuple):
    """One consistent set of components built from a single config."""
    config: VolRiskConfig
    estimator: VolatilityEstimator
    classifier: RegimeClassifier
    aggregator: PortfolioAggregator
    scorer: RiskScorer
    sizer: PositionSizer


class RefreshCycleResult(NamedTuple):
    """Outcome of one slow-path refresh cycle."""
    generation: int
    published: bool
    estimates: Dict[str, VolatilityEstimate]
    regimes: Dict[str, RegimeState]
    transitions: List[TransitionRecord]
    portfolio: Optional[PortfolioSnapshot]


def build_components(config: VolRiskConfig, enable_metrics: bool = False) -> EngineComponents:
    """Build all components from one validated config."""
    config.validate_or_raise()
    return EngineComponents(
        config=config,
        estimator=VolatilityEstimator(config.volatility, enable_metrics=enable_metrics),
        classifier=RegimeClassifier(config.regime, enable_metrics=enable_metrics),
        aggregator=PortfolioAggregator(config.portfolio),
        scorer=RiskScorer(config.scoring, enable_metrics=enable_metrics),
        sizer=PositionSizer(config.sizing, enable_metrics=enable_metrics)
    )


class RiskEngine:
    """
    Volatility-adaptive risk scoring and position sizing engine.

    All per-instrument state lives in the RiskStateRegistry, which the
    caller may supply and share. Components are replaced as a whole on a
    config change; hot-path calls take one consistent set at entry.
    """

    def __init__(
        self,
        config: VolRiskConfig = None,
        registry: RiskStateRegistry = None,
        config_path: Optional[str] = None,
        enable_hot_reload: bool = False,
        enable_metrics: bool = False
    ):
        """
        Initialize risk engine.

        Args:
            config: VolRiskConfig (ignored when config_path is given)
            registry: Caller-owned state registry (created if None)
            config_path: YAML config file managed by a ConfigManager
            enable_hot_reload: Watch config_path for changes
            enable_metrics: Record Prometheus metrics
        """
        self.enable_metrics = enable_metrics
        self.config_manager: Optional[ConfigManager] = None

        if config_path is not None:
            self.config_manager = ConfigManager(config_path)
            config = self.config_manager.config
            self.config_manager.register_callback(self._on_config_change)
            if enable_hot_reload:
                self.config_manager.start_watcher()
        elif config is None:
            config = VolRiskConfig()

        self._components = build_components(config, enable_metrics)

        if registry is None:
            registry = RiskStateRegistry(
                window_capacity=config.volatility.window_capacity,
                history_length=config.regime.history_length
            )
        self.registry = registry

        self._kelly_trackers: Dict[str, KellyTracker] = {}

        # Statistics
        self.cycles_run = 0
        self.cycles_discarded = 0
        self.trades_scored = 0
        self.trades_blocked = 0
        self.trades_sized = 0
        self.sizings_rejected = 0
        self.config_swaps = 0

        logger.info(
            f"RiskEngine initialized (hot_reload={enable_hot_reload and config_path is not None}, "
            f"metrics={enable_metrics})"
        )

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def config(self) -> VolRiskConfig:
        return self._components.config

    @property
    def estimator(self) -> VolatilityEstimator:
        return self._components.estimator

    @property
    def classifier(self) -> RegimeClassifier:
        return self._components.classifier

    @property
    def aggregator(self) -> PortfolioAggregator:
        return self._components.aggregator

    @property
    def scorer(self) -> RiskScorer:
        return self._components.scorer

    @property
    def sizer(self) -> PositionSizer:
        return self._components.sizer

    def update_config(self, config: VolRiskConfig):
        """
        Replace all components with ones built from `config`.

        Raises:
            ConfigurationError: if the config is invalid (nothing is replaced)
        """
        components = build_components(config, self.enable_metrics)
        old = self._components.config
        self._components = components
        self.config_swaps += 1

        if config.volatility.window_capacity != old.volatility.window_capacity or \
                config.regime.history_length != old.regime.history_length:
            logger.warning(
                "Window capacity and history length changes apply to the registry "
                "only when it is recreated"
            )
        logger.info("RiskEngine components rebuilt from new config")

    def _on_config_change(self, old_config: VolRiskConfig, new_config: VolRiskConfig):
        self.update_config(new_config)

    # ------------------------------------------------------------------
    # Slow path
    # ------------------------------------------------------------------

    def refresh_volatility(
        self,
        instrument: str,
        bars: Optional[Iterable[PriceBar]] = None
    ) -> VolatilityEstimate:
        """Append bars, recompute and publish the instrument's estimate."""
        return self._components.estimator.refresh(instrument, self.registry, bars)

    def classify_regime(
        self,
        instrument: str,
        estimate: Optional[VolatilityEstimate] = None
    ) -> RegimeState:
        """
        Classify the instrument's regime and publish it.

        Args:
            instrument: Instrument id
            estimate: Estimate to classify (defaults to the published one)
        """
        if estimate is None:
            estimate = self.registry.volatility.get(instrument)
        if estimate is None:
            estimate = VolatilityEstimate.empty(instrument)
        return self._components.classifier.classify(estimate, self.registry)

    def aggregate_portfolio(
        self,
        positions: Sequence[OpenPosition],
        equity: float,
        timestamp: Optional[datetime] = None
    ) -> PortfolioSnapshot:
        """Aggregate open positions and publish the portfolio snapshot."""
        return self._components.aggregator.refresh(positions, equity, self.registry, timestamp)

    def run_refresh_cycle(
        self,
        bars_by_instrument: Mapping[str, Iterable[PriceBar]],
        positions: Optional[Sequence[OpenPosition]] = None,
        equity: Optional[float] = None,
        timestamp: Optional[datetime] = None
    ) -> RefreshCycleResult:
        """
        Run one complete slow-path cycle and publish it atomically.

        Args:
            bars_by_instrument: New bars per instrument (may be empty lists)
            positions: Open positions (portfolio untouched when None)
            equity: Account equity (required with positions)
            timestamp: Portfolio snapshot time

        Returns:
            RefreshCycleResult (published=False if a newer cycle won)
        """
        components = self._components
        generation = self.registry.begin_cycle()

        estimates: Dict[str, VolatilityEstimate] = {}
        regimes: Dict[str, RegimeState] = {}
        transitions: List[TransitionRecord] = []

        for instrument, bars in bars_by_instrument.items():
            estimate = components.estimator.refresh(
                instrument, self.registry, bars, publish=False
            )
            state, record = components.classifier.evaluate(estimate, self.registry)
            estimates[instrument] = estimate
            regimes[instrument] = state
            if record is not None:
                transitions.append(record)

        portfolio = None
        if positions is not None:
            if equity is None:
                raise ValueError("equity is required when positions are given")
            portfolio = components.aggregator.aggregate(positions, equity, timestamp)

        published = self.registry.publish_cycle(
            generation, estimates, regimes, transitions, portfolio
        )

        self.cycles_run += 1
        if not published:
            self.cycles_discarded += 1
        elif self.enable_metrics:
            for instrument, state in regimes.items():
                metrics.record_regime_metrics(instrument, state.regime.rank)
            for record in transitions:
                metrics.record_transition(
                    record.from_regime.value, record.to_regime.value, record.anticipated
                )

        logger.info(
            f"Refresh cycle {generation}: {len(estimates)} instruments, "
            f"{len(transitions)} transitions, published={published}"
        )

        return RefreshCycleResult(
            generation=generation,
            published=published,
            estimates=estimates,
            regimes=regimes,
            transitions=transitions,
            portfolio=portfolio
        )

    # ------------------------------------------------------------------
    # Hot path
    # ------------------------------------------------------------------

    def score_trade(
        self,
        context: PositionContext,
        components: Optional[EngineComponents] = None
    ) -> CompositeRiskAssessment:
        """Score a trade against one consistent view of the published state."""
        if components is None:
            components = self._components
        state = self.registry.snapshot()
        instrument = context.instrument
        assessment = components.scorer.score(
            context,
            state.volatility.get(instrument),
            state.regimes.get(instrument),
            state.portfolio
        )
        self.trades_scored += 1
        if not assessment.trading_allowed:
            self.trades_blocked += 1
        return assessment

    def size_trade(
        self,
        context: PositionContext,
        constraints: InstrumentConstraints,
        assessment: Optional[CompositeRiskAssessment] = None,
        account_equity: Optional[float] = None,
        available_margin: Optional[float] = None,
        method: Optional[SizingMethod] = None,
        components: Optional[EngineComponents] = None
    ) -> SizingRecommendation:
        """
        Size a trade.

        Args:
            context: Trade to size
            constraints: Instrument constraints
            assessment: Prior assessment (scored now when None)
            account_equity: Equity (defaults to context.account_equity)
            available_margin: Available margin (default from config)
            method: Force a single sizing method
            components: Component set to use (defaults to the current one)

        Returns:
            SizingRecommendation
        """
        if components is None:
            components = self._components
        if context.trade_stats is None and context.instrument in self._kelly_trackers:
            context = replace(
                context, trade_stats=self._kelly_trackers[context.instrument].statistics()
            )
        if assessment is None:
            assessment = self.score_trade(context, components)
        if account_equity is None:
            account_equity = context.account_equity

        recommendation = components.sizer.size(
            context, assessment, constraints, account_equity,
            method=method, available_margin=available_margin
        )
        self.trades_sized += 1
        if recommendation.rejected:
            self.sizings_rejected += 1
        return recommendation

    def evaluate_trade(
        self,
        context: PositionContext,
        constraints: InstrumentConstraints,
        available_margin: Optional[float] = None
    ) -> Tuple[CompositeRiskAssessment, SizingRecommendation]:
        """Score and size a trade in one call, with one component set."""
        components = self._components
        assessment = self.score_trade(context, components)
        recommendation = self.size_trade(
            context, constraints, assessment,
            available_margin=available_margin, components=components
        )
        return assessment, recommendation

    # ------------------------------------------------------------------
    # Trade history
    # ------------------------------------------------------------------

    def record_trade_result(self, instrument: str, pnl: float):
        """Feed a closed trade into the instrument's Kelly statistics."""
        if instrument not in self._kelly_trackers:
            self._kelly_trackers[instrument] = KellyTracker()
        self._kelly_trackers[instrument].record_trade(pnl)

    def get_kelly_tracker(self, instrument: str) -> Optional[KellyTracker]:
        return self._kelly_trackers.get(instrument)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def get_transitions(
        self,
        instrument: Optional[str] = None,
        last: Optional[int] = None
    ) -> List[TransitionRecord]:
        """Transition log, optionally filtered by instrument and trimmed."""
        if instrument is not None:
            records = self.registry.transitions.for_instrument(instrument)
        else:
            records = self.registry.transitions.all()
        if last is not None:
            records = records[-last:] if last > 0 else []
        return records

    def get_statistics(self) -> Dict:
        """Get engine statistics."""
        components = self._components
        stats = {
            'cycles_run': self.cycles_run,
            'cycles_discarded': self.cycles_discarded,
            'trades_scored': self.trades_scored,
            'trades_blocked': self.trades_blocked,
            'block_rate': self.trades_blocked / max(1, self.trades_scored),
            'trades_sized': self.trades_sized,
            'sizings_rejected': self.sizings_rejected,
            'config_swaps': self.config_swaps,
            'registry': self.registry.get_state(),
            'estimator': components.estimator.get_state(),
            'classifier': components.classifier.get_state(),
            'aggregator': components.aggregator.get_state(),
            'scorer': components.scorer.get_state(),
            'sizer': components.sizer.get_state()
        }
        if self.config_manager is not None:
            stats['config_manager'] = self.config_manager.get_state()
        return stats

    def reset_statistics(self):
        """Reset engine statistics."""
        self.cycles_run = 0
        self.cycles_discarded = 0
        self.trades_scored = 0
        self.trades_blocked = 0
        self.trades_sized = 0
        self.sizings_rejected = 0

    def shutdown(self):
        """Stop the config watcher if running."""
        if self.config_manager is not None:
            self.config_manager.stop_watcher()
