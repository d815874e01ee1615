"""
VOLRISK - Prometheus Metrics Module
====================================

Prometheus metrics for the risk core:
- Volatility refreshes and blended volatility
- Regime state and transitions
- Risk scores and blocked trades
- Sizing decisions, rejections and Kelly fractions
- Configuration reloads

Version: 1.0
"""

from prometheus_client import Counter, Gauge, Histogram
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# VOLATILITY METRICS
# ============================================================================

volrisk_volatility_refreshes = Counter(
    'volrisk_volatility_refreshes_total',
    'Volatility estimate refreshes',
    ['reliable']  # true, false
)

volrisk_blended_volatility = Gauge(
    'volrisk_blended_volatility',
    'Latest blended annualized volatility',
    ['instrument']
)

volrisk_rejected_bars = Counter(
    'volrisk_rejected_bars_total',
    'Price bars rejected by validation',
    ['instrument']
)


# ============================================================================
# REGIME METRICS
# ============================================================================

volrisk_current_regime = Gauge(
    'volrisk_current_regime',
    'Current volatility regime rank (0=low, 1=normal, 2=high, 3=spike)',
    ['instrument']
)

volrisk_regime_transitions = Counter(
    'volrisk_regime_transitions_total',
    'Regime transitions',
    ['from_regime', 'to_regime', 'anticipated']
)


# ============================================================================
# RISK SCORING METRICS
# ============================================================================

volrisk_risk_score = Histogram(
    'volrisk_risk_score',
    'Composite risk score of assessed trades',
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

volrisk_trades_blocked = Counter(
    'volrisk_trades_blocked_total',
    'Trades with trading_allowed = False',
    ['reason']  # critical_score, hard_limit, invalid_input
)


# ============================================================================
# SIZING METRICS
# ============================================================================

volrisk_sizing_decisions = Counter(
    'volrisk_sizing_decisions_total',
    'Sizing recommendations produced',
    ['method', 'rejected']
)

volrisk_kelly_fraction = Histogram(
    'volrisk_kelly_fraction',
    'Fractional Kelly applied to sizing',
    buckets=[0.0, 0.025, 0.05, 0.1, 0.15, 0.2, 0.25, 0.5, 1.0]
)


# ============================================================================
# CONFIGURATION METRICS
# ============================================================================

volrisk_config_reloads = Counter(
    'volrisk_config_reloads_total',
    'Configuration reload attempts',
    ['status']  # success, error
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_volatility_metrics(instrument: str, blended: float, reliable: bool):
    """Record volatility refresh metrics."""
    volrisk_volatility_refreshes.labels(reliable=str(reliable).lower()).inc()
    volrisk_blended_volatility.labels(instrument=instrument).set(blended)


def record_rejected_bars(instrument: str, count: int):
    if count > 0:
        volrisk_rejected_bars.labels(instrument=instrument).inc(count)


def record_regime_metrics(instrument: str, regime_rank: int):
    volrisk_current_regime.labels(instrument=instrument).set(regime_rank)


def record_transition(from_regime: str, to_regime: str, anticipated: bool):
    volrisk_regime_transitions.labels(
        from_regime=from_regime,
        to_regime=to_regime,
        anticipated=str(anticipated).lower()
    ).inc()


def record_assessment(overall_score: float, blocked_reason: str = None):
    """Record risk scoring metrics."""
    volrisk_risk_score.observe(overall_score)
    if blocked_reason is not None:
        volrisk_trades_blocked.labels(reason=blocked_reason).inc()


def record_sizing(method: str, rejected: bool, kelly_fraction: float):
    """Record sizing decision metrics."""
    volrisk_sizing_decisions.labels(method=method, rejected=str(rejected).lower()).inc()
    volrisk_kelly_fraction.observe(kelly_fraction)


def record_config_reload(status: str):
    volrisk_config_reloads.labels(status=status).inc()
