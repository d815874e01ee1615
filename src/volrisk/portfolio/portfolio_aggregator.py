"""
VOLRISK - Portfolio Aggregator
===============================

Aggregates an externally supplied open-position list into an immutable
PortfolioSnapshot:

- Total (gross) and net notional exposure
- Herfindahl concentration over per-instrument exposure shares
- Correlation risk: exposure-weighted average of a pairwise
  currency/instrument similarity heuristic (no covariance matrix)
- Leverage = total exposure / equity

Runs on the slow path and is published by reference swap.

Version: 1.0
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import math

from ..core.risk_config import PortfolioAggregatorConfig
from ..core.risk_types import ConfigurationError, OpenPosition, PortfolioSnapshot
from ..core.snapshot_registry import RiskStateRegistry

logger = logging.getLogger(__name__)

_SEPARATORS = ('/', '-', '_', '.')


def split_instrument(instrument: str) -> Tuple[str, Optional[str]]:
    """
    Split an instrument id into (base, quote).

    "EUR/USD", "EUR-USD", "EUR_USD" and "EURUSD" all give ("EUR", "USD").
    Ids that are not currency pairs give (id, None).
    """
    symbol = instrument.upper()
    for sep in _SEPARATORS:
        if sep in symbol:
            parts = [p for p in symbol.split(sep) if p]
            if len(parts) == 2:
                return parts[0], parts[1]
            return symbol, None
    if len(symbol) == 6 and symbol.isalpha():
        return symbol[:3], symbol[3:]
    return symbol, None


def currency_exposure_signs(position: OpenPosition) -> Dict[str, int]:
    """Sign of the exposure a position carries in each of its currencies."""
    base, quote = split_instrument(position.instrument)
    sign = position.direction.sign
    signs = {base: sign}
    if quote is not None and quote != base:
        signs[quote] = -sign
    return signs


class PortfolioAggregator:
    """
    Computes portfolio exposure, concentration and correlation risk.

    Pure with respect to its inputs; `refresh` additionally publishes the
    snapshot into the caller-owned registry.
    """

    def __init__(self, config: PortfolioAggregatorConfig = None):
        """
        Initialize portfolio aggregator.

        Args:
            config: PortfolioAggregatorConfig with similarity parameters
        """
        if config is None:
            config = PortfolioAggregatorConfig()
        errors = config.validate()
        if errors:
            raise ConfigurationError(errors)

        self.config = config
        self.total_aggregations = 0

    def pair_similarity(self, a: OpenPosition, b: OpenPosition) -> float:
        """
        Similarity heuristic for a pair of positions in [0, 1].

        Pairs whose shared currency exposure points the same way count in
        full; offsetting exposure is scaled by `hedge_offset`.
        """
        cfg = self.config
        base_a, quote_a = split_instrument(a.instrument)
        base_b, quote_b = split_instrument(b.instrument)

        if a.instrument.upper() == b.instrument.upper():
            similarity = cfg.same_instrument_similarity
        elif base_a == base_b:
            similarity = cfg.shared_base_similarity
        elif quote_a is not None and quote_a == quote_b:
            similarity = cfg.shared_quote_similarity
        elif {base_a, quote_a} & {base_b, quote_b} - {None}:
            similarity = cfg.cross_currency_similarity
        else:
            return 0.0

        signs_a = currency_exposure_signs(a)
        signs_b = currency_exposure_signs(b)
        shared = set(signs_a) & set(signs_b)
        aligned = sum(signs_a[c] * signs_b[c] for c in shared)

        if aligned > 0:
            return similarity
        return similarity * cfg.hedge_offset

    def correlation_risk(self, positions: Sequence[OpenPosition], total: float) -> float:
        """Exposure-weighted average pairwise similarity."""
        if len(positions) < 2 or total <= 0:
            return 0.0

        weights = [p.notional / total for p in positions]
        numerator = 0.0
        denominator = 0.0
        for i in range(len(positions)):
            for j in range(i + 1, len(positions)):
                w = weights[i] * weights[j]
                numerator += w * self.pair_similarity(positions[i], positions[j])
                denominator += w

        if denominator <= 0:
            return 0.0
        return min(1.0, max(0.0, numerator / denominator))

    def aggregate(
        self,
        positions: Sequence[OpenPosition],
        equity: float,
        timestamp: Optional[datetime] = None
    ) -> PortfolioSnapshot:
        """
        Build a PortfolioSnapshot from open positions.

        Args:
            positions: Open positions (read-only, owned by the caller)
            equity: Account equity
            timestamp: Snapshot time (defaults to now, UTC)

        Returns:
            PortfolioSnapshot
        """
        self.total_aggregations += 1
        warnings: List[str] = []

        usable = []
        for position in positions:
            if position.size == 0 or position.entry_price <= 0:
                warnings.append(f"Ignoring position {position.instrument}: zero size or price")
                continue
            usable.append(position)

        exposure_by_instrument: Dict[str, float] = {}
        total = 0.0
        net = 0.0
        for position in usable:
            notional = position.notional
            total += notional
            net += notional * position.direction.sign
            exposure_by_instrument[position.instrument] = (
                exposure_by_instrument.get(position.instrument, 0.0) + notional
            )

        if total > 0:
            concentration = sum((e / total) ** 2 for e in exposure_by_instrument.values())
        else:
            concentration = 0.0

        valid = math.isfinite(equity) and equity > 0
        if valid:
            leverage = total / equity
        else:
            leverage = 0.0
            warnings.append(f"Invalid equity {equity}; leverage not computed")

        snapshot = PortfolioSnapshot(
            timestamp=timestamp or datetime.now(timezone.utc),
            total_exposure=total,
            net_exposure=net,
            concentration_index=min(1.0, concentration),
            correlation_risk=self.correlation_risk(usable, total),
            leverage_ratio=leverage,
            equity=equity,
            position_count=len(usable),
            exposure_by_instrument=exposure_by_instrument,
            warnings=tuple(warnings),
            valid=valid
        )

        for warning in warnings:
            logger.warning(warning)

        logger.debug(
            f"Portfolio aggregated: {len(usable)} positions, exposure={total:,.2f}, "
            f"HHI={snapshot.concentration_index:.3f}, corr={snapshot.correlation_risk:.3f}, "
            f"leverage={leverage:.2f}"
        )

        return snapshot

    def refresh(
        self,
        positions: Sequence[OpenPosition],
        equity: float,
        registry: RiskStateRegistry,
        timestamp: Optional[datetime] = None
    ) -> PortfolioSnapshot:
        """Aggregate and publish the snapshot."""
        snapshot = self.aggregate(positions, equity, timestamp)
        registry.portfolio.publish(snapshot)
        return snapshot

    def get_state(self) -> Dict:
        """Get current state for monitoring."""
        return {
            'total_aggregations': self.total_aggregations,
            'shared_base_similarity': self.config.shared_base_similarity,
            'shared_quote_similarity': self.config.shared_quote_similarity,
            'cross_currency_similarity': self.config.cross_currency_similarity,
            'hedge_offset': self.config.hedge_offset
        }
