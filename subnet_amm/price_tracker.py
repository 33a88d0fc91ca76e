"""
Moving-average price tracker.

Blends the instantaneous pool price into an exponentially weighted moving
average. The weight of a new observation depends on how many ticks have
passed since the previous blend, so the effective half-life stays at
halving_period ticks no matter how irregularly refreshes happen.
"""
import logging

from subnet_amm.amm_state import PoolState
from subnet_amm.fixed_point import PRECISION, checked_add, checked_mul

logger = logging.getLogger(__name__)

HALVING_PERIOD = 1000


class PriceTracker:
    """Maintains current_price and moving_average_price on a PoolState."""

    def __init__(self, halving_period: int = HALVING_PERIOD):
        if halving_period <= 0:
            raise ValueError("halving_period must be positive")
        self.halving_period = halving_period

    def alpha(self, elapsed: int) -> int:
        """Fixed-point weight given to the newest observation."""
        return checked_mul(elapsed, PRECISION) // (elapsed + self.halving_period)

    def blend(self, average: int, price: int, elapsed: int) -> int:
        """
        One EWMA step.

        The observed price is capped at parity before blending, which bounds
        how far a single extreme swap can move the average.
        """
        alpha = self.alpha(elapsed)
        capped = min(price, PRECISION)
        weighted = checked_add(checked_mul(alpha, capped),
                               checked_mul(PRECISION - alpha, average))
        return weighted // PRECISION

    def refresh(self, state: PoolState, height: int) -> bool:
        """
        Recompute the instantaneous price and blend it into the average.

        Args:
            state: Pool state to update in place
            height: Current sequence counter (block height)

        Returns:
            True if the moving average changed position (first observation or
            a blend), False for a no-op.
        """
        state.current_price = state.spot_price

        if state.moving_average_price is None:
            if state.quote_reserve_in == 0:
                return False
            state.moving_average_price = state.current_price
            state.last_price_update_height = height
            logger.debug(f"Pool {state.netuid}: moving average initialised at {state.current_price}")
            return True

        elapsed = height - state.last_price_update_height
        if elapsed <= 0:
            return False

        previous = state.moving_average_price
        state.moving_average_price = self.blend(previous, state.current_price, elapsed)
        state.last_price_update_height = height
        logger.debug(
            f"Pool {state.netuid}: moving average {previous} -> {state.moving_average_price} "
            f"(elapsed={elapsed}, price={state.current_price})"
        )
        return True
