"""
VOLRISK - Snapshot Registry
============================

Caller-owned registry of published snapshots, keyed by instrument id.

Everything the hot path reads (volatility estimates, regime states and the
portfolio snapshot) lives in one immutable PublishedState behind a single
reference. Every publish builds a new PublishedState and swaps that
reference, so a reader that takes the state once sees one consistent
cycle without taking a lock. Writers (the slow path) serialize on a lock.
A cycle publish carries a generation number; a cycle that finishes after a
newer one has already been published is discarded.

Version: 1.0
"""

from collections import deque
from threading import Lock
from types import MappingProxyType
from typing import Callable, Dict, Generic, Iterable, List, Mapping, NamedTuple, Optional, TypeVar, Deque
import itertools
import logging

from .risk_types import (
    PortfolioSnapshot,
    PriceBar,
    RegimeState,
    TransitionRecord,
    VolatilityEstimate,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class PublishedState(NamedTuple):
    """One consistent view of everything published for the hot path."""
    generation: int
    volatility: Mapping[str, VolatilityEstimate]
    regimes: Mapping[str, RegimeState]
    portfolio: PortfolioSnapshot

    @classmethod
    def empty(cls) -> 'PublishedState':
        return cls(0, MappingProxyType({}), MappingProxyType({}), PortfolioSnapshot.empty())


class SnapshotRef(Generic[T]):
    """Single immutable snapshot with atomic reference swap."""

    def __init__(self, initial: T):
        self._snapshot = initial
        self._lock = Lock()

    def get(self) -> T:
        return self._snapshot

    def publish(self, snapshot: T):
        with self._lock:
            self._snapshot = snapshot

    def update(self, change: Callable[[T], T]) -> T:
        """Swap in `change(current)`; writers never lose each other's updates."""
        with self._lock:
            self._snapshot = change(self._snapshot)
            return self._snapshot


def _merged(current: Mapping[str, T], snapshots: Mapping[str, T]) -> Mapping[str, T]:
    updated = dict(current)
    updated.update(snapshots)
    return MappingProxyType(updated)


class SnapshotRegistry(Generic[T]):
    """
    Per-instrument snapshots stored in one field of a PublishedState.

    `name` is the field ('volatility' or 'regimes'). Registries sharing a
    state reference publish into the same PublishedState.
    """

    def __init__(self, name: str, state: Optional[SnapshotRef[PublishedState]] = None):
        if name not in ('volatility', 'regimes'):
            raise ValueError(f"Unknown snapshot field: {name}")
        self.name = name
        self._state = state if state is not None else SnapshotRef(PublishedState.empty())
        self.publish_count = 0

    def _view(self) -> Mapping[str, T]:
        return getattr(self._state.get(), self.name)

    def get(self, instrument: str) -> Optional[T]:
        """Latest published snapshot (lock-free read)."""
        return self._view().get(instrument)

    def publish(self, instrument: str, snapshot: T):
        """Replace one instrument's snapshot."""
        self.publish_many({instrument: snapshot})

    def publish_many(self, snapshots: Mapping[str, T]):
        """Replace several snapshots in a single swap."""
        if not snapshots:
            return
        self._state.update(
            lambda state: state._replace(**{self.name: _merged(getattr(state, self.name), snapshots)})
        )
        self.publish_count += 1

    def instruments(self) -> List[str]:
        return list(self._view().keys())

    def all(self) -> Dict[str, T]:
        """Stable view of every published snapshot."""
        return dict(self._view())

    def __contains__(self, instrument: str) -> bool:
        return instrument in self._view()

    def __len__(self) -> int:
        return len(self._view())


class PortfolioRef:
    """The portfolio field of a PublishedState."""

    def __init__(self, state: SnapshotRef[PublishedState]):
        self._state = state

    def get(self) -> PortfolioSnapshot:
        return self._state.get().portfolio

    def publish(self, snapshot: PortfolioSnapshot):
        self._state.update(lambda state: state._replace(portfolio=snapshot))


class TransitionLog:
    """Append-only log of regime transitions."""

    def __init__(self):
        self._records: List[TransitionRecord] = []
        self._lock = Lock()

    def append(self, record: TransitionRecord):
        with self._lock:
            self._records.append(record)

    def extend(self, records: Iterable[TransitionRecord]):
        with self._lock:
            self._records.extend(records)

    def all(self) -> List[TransitionRecord]:
        with self._lock:
            return list(self._records)

    def for_instrument(self, instrument: str) -> List[TransitionRecord]:
        with self._lock:
            return [r for r in self._records if r.instrument == instrument]

    def last(self, n: int = 10) -> List[TransitionRecord]:
        with self._lock:
            return list(self._records[-n:]) if n > 0 else []

    def __len__(self) -> int:
        return len(self._records)


class RiskStateRegistry:
    """
    All mutable per-instrument state of the risk core, owned by the caller.

    Hot-path readers take `snapshot()` once per call. Bar windows
    and volatility histories are slow-path working state and are only
    touched by the estimator and classifier.
    """

    def __init__(self, window_capacity: int = 100, history_length: int = 252):
        self.window_capacity = window_capacity
        self.history_length = history_length

        # Published state (read on the hot path) and its per-field views
        self.published: SnapshotRef[PublishedState] = SnapshotRef(PublishedState.empty())
        self.volatility: SnapshotRegistry[VolatilityEstimate] = SnapshotRegistry('volatility', self.published)
        self.regimes: SnapshotRegistry[RegimeState] = SnapshotRegistry('regimes', self.published)
        self.portfolio = PortfolioRef(self.published)
        self.transitions = TransitionLog()

        # Slow-path working state
        self._windows: Dict[str, Deque[PriceBar]] = {}
        self._vol_history: Dict[str, Deque[float]] = {}

        # Cycle generations
        self._generation = itertools.count(1)
        self._published_generation = 0
        self._cycle_lock = Lock()

    def window(self, instrument: str) -> Deque[PriceBar]:
        """Rolling bar window of an instrument (created on first use)."""
        if instrument not in self._windows:
            self._windows[instrument] = deque(maxlen=self.window_capacity)
        return self._windows[instrument]

    def volatility_history(self, instrument: str) -> Deque[float]:
        """Trailing blended-volatility history of an instrument."""
        if instrument not in self._vol_history:
            self._vol_history[instrument] = deque(maxlen=self.history_length)
        return self._vol_history[instrument]

    def snapshot(self) -> PublishedState:
        """Everything currently published, as one consistent view."""
        return self.published.get()

    def begin_cycle(self) -> int:
        """Reserve a generation number for a slow-path cycle."""
        return next(self._generation)

    def publish_cycle(
        self,
        generation: int,
        estimates: Dict[str, VolatilityEstimate],
        regimes: Dict[str, RegimeState],
        transitions: List[TransitionRecord],
        portfolio: Optional[PortfolioSnapshot] = None
    ) -> bool:
        """
        Publish the results of one complete slow-path cycle in a single swap.

        Returns:
            True if published, False if a newer cycle was already published
        """
        with self._cycle_lock:
            if generation <= self._published_generation:
                logger.info(
                    f"Discarding superseded cycle {generation} "
                    f"(published: {self._published_generation})"
                )
                return False

            def apply(state: PublishedState) -> PublishedState:
                return PublishedState(
                    generation=generation,
                    volatility=_merged(state.volatility, estimates),
                    regimes=_merged(state.regimes, regimes),
                    portfolio=state.portfolio if portfolio is None else portfolio
                )

            self.published.update(apply)
            self.transitions.extend(transitions)
            self._published_generation = generation

        logger.debug(
            f"Published cycle {generation}: {len(estimates)} estimates, "
            f"{len(regimes)} regimes, {len(transitions)} transitions"
        )
        return True

    @property
    def published_generation(self) -> int:
        return self._published_generation

    def get_state(self) -> Dict:
        """Get current state for monitoring."""
        return {
            'instruments': sorted(set(self._windows) | set(self.volatility.instruments())),
            'volatility_snapshots': len(self.volatility),
            'regime_snapshots': len(self.regimes),
            'transitions': len(self.transitions),
            'published_generation': self._published_generation,
            'portfolio_positions': self.portfolio.get().position_count
        }
