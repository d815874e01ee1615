"""
VOLRISK - Fractional Kelly
===========================

Kelly criterion from historical trade statistics, used only in a
conservatively scaled (fractional) form.

    kelly = (b·p − q) / b     b = average win / average loss, q = 1 − p

The fraction used for sizing is clamped to [0, 1] and scaled by the
fractional-Kelly multiplier, so it always lies in [0, multiplier].

Version: 1.0
"""

from typing import Tuple, Dict, Optional
import math
import logging

from ..core.risk_types import TradeStatistics

logger = logging.getLogger(__name__)


def kelly_fraction(win_rate: float, payoff_ratio: float) -> float:
    """
    Raw (full) Kelly fraction.

    Args:
        win_rate: Probability of a winning trade p
        payoff_ratio: Average win / average loss b (must be > 0)

    Returns:
        (b·p − q) / b, may be negative or above 1
    """
    if payoff_ratio <= 0:
        raise ValueError(f"payoff_ratio must be > 0, got {payoff_ratio}")
    return (payoff_ratio * win_rate - (1.0 - win_rate)) / payoff_ratio


def fractional_kelly(
    stats: Optional[TradeStatistics],
    multiplier: float = 0.25,
    min_samples: int = 30,
    min_win_rate: float = 0.2,
    max_win_rate: float = 0.8
) -> Tuple[float, Optional[str]]:
    """
    Fractional Kelly with trust checks.

    Args:
        stats: Historical trade statistics (None when unavailable)
        multiplier: Fractional-Kelly multiplier (cap)
        min_samples: Minimum trades before Kelly is trusted
        min_win_rate: Lower bound of the plausible win-rate band
        max_win_rate: Upper bound of the plausible win-rate band

    Returns:
        Tuple of (fraction in [0, multiplier], skip_reason or None).
        When a skip reason is returned the fraction is 0.0 and the caller
        falls back to fixed-fractional sizing.
    """
    if stats is None:
        return 0.0, "no trade statistics"
    if stats.sample_size < min_samples:
        return 0.0, f"sample size {stats.sample_size} below {min_samples}"
    if not (math.isfinite(stats.win_rate) and min_win_rate <= stats.win_rate <= max_win_rate):
        return 0.0, (
            f"win rate {stats.win_rate:.2f} outside [{min_win_rate:.2f}, {max_win_rate:.2f}]"
        )
    if not (math.isfinite(stats.average_loss) and stats.average_loss > 0):
        return 0.0, "zero average loss"
    if not (math.isfinite(stats.average_win) and stats.average_win > 0):
        return 0.0, "zero average win"

    raw = kelly_fraction(stats.win_rate, stats.average_win / stats.average_loss)
    fraction = min(1.0, max(0.0, raw)) * multiplier

    logger.debug(
        f"Kelly: p={stats.win_rate:.3f}, b={stats.average_win / stats.average_loss:.3f}, "
        f"raw={raw:.4f}, applied={fraction:.4f}"
    )
    return fraction, None


class KellyTracker:
    """
    Tracks closed-trade outcomes and produces TradeStatistics.

    Breakeven trades count toward the sample but neither side of the
    win/loss averages.
    """

    def __init__(self):
        self.total_trades = 0
        self.winning_trades = 0
        self.losing_trades = 0
        self.gross_win = 0.0
        self.gross_loss = 0.0

    def record_trade(self, pnl: float):
        """
        Record a closed trade.

        Args:
            pnl: Realized profit (positive) or loss (negative)
        """
        if not math.isfinite(pnl):
            logger.warning(f"Ignoring non-finite trade pnl: {pnl}")
            return

        self.total_trades += 1
        if pnl > 0:
            self.winning_trades += 1
            self.gross_win += pnl
        elif pnl < 0:
            self.losing_trades += 1
            self.gross_loss += -pnl

        logger.debug(
            f"Trade recorded: pnl={pnl:.2f}, trades={self.total_trades}, "
            f"win_rate={self.win_rate:.3f}"
        )

    @property
    def win_rate(self) -> float:
        return self.winning_trades / max(1, self.total_trades)

    def statistics(self) -> TradeStatistics:
        """Current statistics for the Kelly sizing method."""
        return TradeStatistics(
            win_rate=self.win_rate,
            average_win=self.gross_win / self.winning_trades if self.winning_trades else 0.0,
            average_loss=self.gross_loss / self.losing_trades if self.losing_trades else 0.0,
            sample_size=self.total_trades
        )

    def reset(self):
        """Forget all recorded trades (for recalibration)."""
        self.total_trades = 0
        self.winning_trades = 0
        self.losing_trades = 0
        self.gross_win = 0.0
        self.gross_loss = 0.0
        logger.info("Kelly trade history reset")

    def get_state(self) -> Dict:
        """Get current state for monitoring."""
        stats = self.statistics()
        return {
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'win_rate': stats.win_rate,
            'average_win': stats.average_win,
            'average_loss': stats.average_loss
        }
