"""
Pricing engine for subnet pools.

Pure functions over a PoolState. A swap that cannot be executed is reported
as a rejected SwapQuote (amount_out == 0 with a reason) rather than raised,
so callers can preview a trade before committing to it.

FixedRatio:       output = input
ConstantProduct:  (x + dx) * (y - dy) = k, with the new output-side reserve
                  truncated (k // new input-side reserve)

k is the reserve product anchored at the last liquidity change, so every
swap lands on the same curve and a round trip can never return more than
was put in.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from subnet_amm.amm_state import Mechanism, PoolState
from subnet_amm.fixed_point import BASIS_POINTS, checked_add, mul_div


class Direction(str, Enum):
    BASE_TO_QUOTE = "base_to_quote"
    QUOTE_TO_BASE = "quote_to_base"


# Rejection reasons
ZERO_INPUT = "zero input"
NO_LIQUIDITY = "no liquidity"
INSUFFICIENT_RESERVE = "output exceeds available reserve"
BELOW_FLOOR = "would breach minimum pool liquidity"


@dataclass(frozen=True)
class SwapQuote:
    """Result of pricing one swap."""
    direction: Direction
    amount_in: int
    amount_out: int
    rejection: Optional[str] = None

    @property
    def executable(self) -> bool:
        return self.rejection is None

    @classmethod
    def rejected(cls, direction: Direction, amount_in: int, reason: str) -> 'SwapQuote':
        return cls(direction, amount_in, 0, reason)


@dataclass(frozen=True)
class SlippageReport:
    """
    Spot-price output versus the output the pool would actually pay.

    A trade the pool would refuse carries the refusal reason, actual_out 0
    and slippage_bps 0.
    """
    expected_out: int
    actual_out: int
    slippage_bps: int
    rejection: Optional[str] = None

    @property
    def executable(self) -> bool:
        return self.rejection is None


def _reserves_for(state: PoolState, direction: Direction) -> tuple[int, int]:
    """(input-side reserve, output-side reserve) for a direction."""
    if direction is Direction.BASE_TO_QUOTE:
        return state.base_reserve, state.quote_reserve_in
    return state.quote_reserve_in, state.base_reserve


def _constant_product_output(k: int, reserve_in: int, reserve_out: int, amount_in: int,
                             floor: int) -> tuple[int, Optional[str]]:
    new_reserve_in = checked_add(reserve_in, amount_in)
    new_reserve_out = k // new_reserve_in
    if new_reserve_out < floor:
        return 0, BELOW_FLOOR
    return reserve_out - new_reserve_out, None


def quote_swap(state: PoolState, direction: Direction, amount_in: int) -> SwapQuote:
    """
    Price a swap of amount_in in the given direction.

    Returns:
        SwapQuote; when not executable its amount_out is 0 and rejection says why.
    """
    direction = Direction(direction)
    if amount_in <= 0:
        return SwapQuote.rejected(direction, amount_in, ZERO_INPUT)

    reserve_in, reserve_out = _reserves_for(state, direction)
    floor = state.minimum_pool_liquidity

    if state.mechanism is Mechanism.CONSTANT_PRODUCT:
        if reserve_in == 0 or reserve_out == 0:
            return SwapQuote.rejected(direction, amount_in, NO_LIQUIDITY)
        amount_out, reason = _constant_product_output(
            state.invariant_k, reserve_in, reserve_out, amount_in, floor)
        if reason:
            return SwapQuote.rejected(direction, amount_in, reason)
    else:
        amount_out = amount_in

    # Final guard shared by both mechanisms
    if amount_out > reserve_out:
        return SwapQuote.rejected(direction, amount_in, INSUFFICIENT_RESERVE)
    if reserve_out - amount_out < floor:
        return SwapQuote.rejected(direction, amount_in, BELOW_FLOOR)
    if amount_out <= 0:
        return SwapQuote.rejected(direction, amount_in, NO_LIQUIDITY)

    return SwapQuote(direction, amount_in, amount_out)


def quote_for_base_input(state: PoolState, amount_in: int) -> SwapQuote:
    """Quote tokens paid out for amount_in base tokens."""
    return quote_swap(state, Direction.BASE_TO_QUOTE, amount_in)


def quote_for_quote_input(state: PoolState, amount_in: int) -> SwapQuote:
    """Base tokens paid out for amount_in quote tokens."""
    return quote_swap(state, Direction.QUOTE_TO_BASE, amount_in)


def calculate_slippage(state: PoolState, direction: Direction, amount_in: int) -> SlippageReport:
    """
    Compare the proportional output at the current spot price with the
    output the pricing engine would actually pay.

    Slippage is reported in basis points of the expected output. Trades the
    pool would reject come back with executable False and the reason.
    """
    direction = Direction(direction)
    reserve_in, reserve_out = _reserves_for(state, direction)

    if amount_in <= 0:
        return SlippageReport(0, 0, 0, ZERO_INPUT)
    if reserve_in == 0:
        return SlippageReport(0, 0, 0, NO_LIQUIDITY)

    if state.mechanism is Mechanism.CONSTANT_PRODUCT:
        expected = mul_div(amount_in, reserve_out, reserve_in)
    else:
        expected = amount_in

    quote = quote_swap(state, direction, amount_in)
    if not quote.executable:
        return SlippageReport(expected, 0, 0, quote.rejection)

    actual = quote.amount_out
    if expected == 0:
        return SlippageReport(0, actual, 0)

    slippage = mul_div(max(expected - actual, 0), BASIS_POINTS, expected)
    return SlippageReport(expected, actual, slippage)
