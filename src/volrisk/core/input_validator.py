"""
VOLRISK - Input Validator
==========================

Validates caller-supplied inputs at the call boundary, before any
computation is performed. Validation returns the list of problems found;
the engines turn a non-empty list into a non-tradable assessment or a
rejected sizing recommendation.

Version: 1.0
"""

import math
import logging
from typing import Tuple, List, Optional

from .risk_types import (
    InstrumentConstraints,
    InvalidInputError,
    PositionContext,
    PriceBar,
    TradeDirection,
)

logger = logging.getLogger(__name__)


def _finite(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


class InputValidator:
    """Validates trade contexts, instrument constraints and price bars."""

    def validate_context(self, context: PositionContext) -> Tuple[bool, List[str]]:
        """
        Validate a PositionContext.

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = []

        if not context.instrument:
            errors.append("Missing instrument")

        if not isinstance(context.direction, TradeDirection):
            errors.append(f"Invalid direction: {context.direction!r}")

        for name in ('requested_size', 'entry_price', 'stop_price',
                     'account_equity', 'contract_size'):
            if not _finite(getattr(context, name)):
                errors.append(f"{name} is not a finite number: {getattr(context, name)!r}")

        if errors:
            logger.warning(f"Context validation failed: {errors}")
            return False, errors

        if context.requested_size <= 0:
            errors.append(f"Requested size must be > 0, got {context.requested_size}")

        if context.entry_price <= 0:
            errors.append(f"Entry price must be > 0, got {context.entry_price}")

        if context.stop_price <= 0:
            errors.append(f"Stop price must be > 0, got {context.stop_price}")

        if context.account_equity <= 0:
            errors.append(f"Account equity must be > 0, got {context.account_equity}")

        if context.contract_size <= 0:
            errors.append(f"Contract size must be > 0, got {context.contract_size}")

        if context.stop_distance <= 0:
            errors.append(
                f"Non-positive stop distance: stop {context.stop_price} is not on the "
                f"losing side of entry {context.entry_price} for a "
                f"{context.direction.value} trade"
            )

        if context.target_price is not None:
            if not _finite(context.target_price) or context.target_price <= 0:
                errors.append(f"Target price must be > 0, got {context.target_price}")
            elif (context.target_price - context.entry_price) * context.direction.sign <= 0:
                errors.append(
                    f"Target {context.target_price} is not on the winning side of "
                    f"entry {context.entry_price}"
                )

        if errors:
            logger.warning(f"Context validation failed for {context.instrument}: {errors}")

        return len(errors) == 0, errors

    def validate_constraints(
        self,
        constraints: InstrumentConstraints
    ) -> Tuple[bool, List[str]]:
        """Validate broker constraints for an instrument."""
        errors = []

        for name in ('min_size', 'max_size', 'size_step', 'per_unit_value', 'margin_per_unit'):
            if not _finite(getattr(constraints, name)):
                errors.append(f"{name} is not a finite number: {getattr(constraints, name)!r}")
        if errors:
            return False, errors

        if constraints.size_step <= 0:
            errors.append(f"Size step must be > 0, got {constraints.size_step}")
        if constraints.min_size <= 0:
            errors.append(f"Minimum size must be > 0, got {constraints.min_size}")
        if constraints.max_size < constraints.min_size:
            errors.append(
                f"Maximum size {constraints.max_size} below minimum {constraints.min_size}"
            )
        if constraints.per_unit_value <= 0:
            errors.append(f"Per-unit value must be > 0, got {constraints.per_unit_value}")
        if constraints.margin_per_unit < 0:
            errors.append(f"Margin per unit must be >= 0, got {constraints.margin_per_unit}")

        if errors:
            logger.warning(f"Constraint validation failed for {constraints.instrument}: {errors}")

        return len(errors) == 0, errors

    def validate_bar(
        self,
        bar: PriceBar,
        previous: Optional[PriceBar] = None
    ) -> Tuple[bool, List[str]]:
        """
        Validate a price bar, optionally against the previous stored bar.

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = []

        prices = (bar.open, bar.high, bar.low, bar.close)
        if not all(_finite(p) for p in prices):
            return False, [f"Non-finite price in bar at {bar.timestamp}"]

        if min(prices) <= 0:
            errors.append(f"Non-positive price in bar at {bar.timestamp}")
        if bar.high < bar.low:
            errors.append(f"High {bar.high} below low {bar.low}")
        elif not (bar.low <= bar.open <= bar.high and bar.low <= bar.close <= bar.high):
            errors.append(f"Open/close outside high-low range at {bar.timestamp}")

        if previous is not None and bar.timestamp <= previous.timestamp:
            errors.append(
                f"Bar at {bar.timestamp} is not newer than last stored bar "
                f"at {previous.timestamp}"
            )

        return len(errors) == 0, errors

    def validate_or_raise(self, context: PositionContext) -> PositionContext:
        """
        Validate a context and raise on failure.

        Raises:
            InvalidInputError: with every reason found
        """
        is_valid, errors = self.validate_context(context)
        if not is_valid:
            raise InvalidInputError(errors)
        return context
