"""
Subnet exchange pool: the swap executor and liquidity guard.

One SubnetPool owns the state of one subnet's base/quote pool. Every
state-changing entry point:

- holds a non-reentrant lock for its whole duration
- validates and authorizes before touching state
- computes the new state on a copy
- moves tokens, then commits the copy and publishes its events

so a failure at any step leaves the pool exactly as it was.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from subnet_amm.amm_state import Mechanism, PoolState
from subnet_amm.auth import SwapOrder
from subnet_amm.controller import ControllerHandle, check_issued_handles, require_controller
from subnet_amm.crypto import derive_pool_address, is_zero_address
from subnet_amm.errors import (
    AuthorizationError,
    LiquidityError,
    PoolError,
    ReentrancyError,
    SlippageError,
    TransferError,
    ValidationError,
)
from subnet_amm.events import (
    EventLog,
    LiquidityInjected,
    LiquidityWithdrawn,
    PoolEvent,
    PriceUpdated,
    ReservesUpdated,
    SwapExecuted,
)
from subnet_amm.fixed_point import BASIS_POINTS, PRECISION, checked_sub, mul_div, to_decimal
from subnet_amm.price_tracker import HALVING_PERIOD, PriceTracker
from subnet_amm.pricing import Direction, SlippageReport, SwapQuote, calculate_slippage, quote_swap
from subnet_amm.token import TokenAccount

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Trade size tiers, as basis points of the input-side reserve
MEDIUM_TRADE_BPS = 500
LARGE_TRADE_BPS = 1000
VERY_LARGE_TRADE_BPS = 2000


class TradeSize(str, Enum):
    NORMAL = "normal"
    MEDIUM = "medium"
    LARGE = "large"
    VERY_LARGE = "very_large"


@dataclass(frozen=True)
class TradeWarning:
    size: TradeSize
    impact_bps: int
    message: str

    @property
    def is_large(self) -> bool:
        return self.size in (TradeSize.LARGE, TradeSize.VERY_LARGE)


@dataclass(frozen=True)
class PoolHealth:
    healthy: bool
    base_reserve: int
    quote_reserve_in: int
    minimum_pool_liquidity: int
    issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReserveCheck:
    """Recorded reserves versus the balances the token ledgers hold for the pool."""
    consistent: bool
    recorded_base: int
    actual_base: int
    recorded_quote: int
    actual_quote: int
    issues: tuple[str, ...] = ()


class BlockCounter:
    """Minimal height source for pools driven outside a chain."""

    def __init__(self, height: int = 0):
        self.height = height

    def advance(self, blocks: int = 1) -> int:
        if blocks < 0:
            raise ValueError("Height cannot go backwards")
        self.height += blocks
        return self.height

    def __call__(self) -> int:
        return self.height


class SubnetPool:
    """
    Exchange pool between the network base token and one subnet's quote token.

    Controller-only: inject_liquidity, withdraw_liquidity, unlocked by the
    ControllerHandle objects the pool was constructed with.
    Public: swap_base_for_quote, swap_quote_for_base (signed SwapOrder),
    refresh_moving_average_price and the read-only getters.

    A pool built without handles is read-only for liquidity.
    """

    def __init__(self, state: PoolState, base_token: TokenAccount, quote_token: TokenAccount,
                 height_provider: Callable[[], int],
                 controller_handles=(),
                 halving_period: int = HALVING_PERIOD,
                 trade_tiers_bps: tuple[int, int, int] = (MEDIUM_TRADE_BPS, LARGE_TRADE_BPS,
                                                          VERY_LARGE_TRADE_BPS),
                 event_log: Optional[EventLog] = None,
                 store=None):
        if base_token is quote_token:
            raise ValidationError("Base and quote assets must differ")
        medium, large, very_large = trade_tiers_bps
        if not 0 < medium <= large <= very_large:
            raise ValidationError(f"Invalid trade size tiers: {trade_tiers_bps}")

        self._controller_handles = check_issued_handles(state, controller_handles)
        self.state = state
        self.base_token = base_token
        self.quote_token = quote_token
        self.height_provider = height_provider
        self.tracker = PriceTracker(halving_period)
        self.trade_tiers_bps = trade_tiers_bps
        self.event_log = event_log if event_log is not None else EventLog()
        self.store = store
        self._lock = threading.Lock()

    @classmethod
    def create(cls, netuid: int, mechanism, minimum_pool_liquidity: int,
               controller: ControllerHandle, owner_contract: ControllerHandle,
               creator_address: bytes,
               base_token: TokenAccount, quote_token: TokenAccount,
               height_provider: Callable[[], int], **kwargs) -> 'SubnetPool':
        """
        Create an empty pool.

        Args:
            controller: Handle of the controller; its address is recorded
            owner_contract: Handle of the owner contract; its address is recorded
            creator_address: Recorded for provenance only

        Raises:
            ValidationError: on invalid mechanism, negative floor, missing
                handles, handles for the pool's own address or identical assets
        """
        if not 0 <= netuid < 2 ** 16:
            raise ValidationError(f"Invalid netuid: {netuid}")
        for handle in (controller, owner_contract):
            if not isinstance(handle, ControllerHandle):
                raise ValidationError("Controller and owner contract need ControllerHandle objects")
        pool_address = derive_pool_address(netuid)
        if pool_address in (controller.address, owner_contract.address):
            raise ValidationError("The pool cannot control itself")
        if minimum_pool_liquidity < 0:
            raise ValidationError("Minimum pool liquidity cannot be negative")

        state = PoolState({
            'netuid': netuid,
            'mechanism': Mechanism.parse(mechanism),
            'minimum_pool_liquidity': minimum_pool_liquidity,
            'controller_address': controller.address,
            'owner_contract_address': owner_contract.address,
            'creator_address': creator_address,
            'pool_address': pool_address,
            'created_height': height_provider(),
        })
        pool = cls(state, base_token, quote_token, height_provider,
                   controller_handles=(controller, owner_contract), **kwargs)
        if pool.store is not None:
            pool.store.save(state)
        logger.info(f"Pool {netuid} created: {state.mechanism.name}, floor={minimum_pool_liquidity}")
        return pool

    @property
    def netuid(self) -> int:
        return self.state.netuid

    @property
    def pool_address(self) -> bytes:
        return self.state.pool_address

    # ==========================================================================
    # LOCKING & SETTLEMENT
    # ==========================================================================

    @contextmanager
    def _non_reentrant(self, operation: str):
        if not self._lock.acquire(blocking=False):
            raise ReentrancyError(f"Pool {self.netuid} is locked; {operation} rejected")
        try:
            yield
        except PoolError as e:
            logger.warning(f"Pool {self.netuid}: {operation} failed: {e}")
            raise
        finally:
            self._lock.release()

    def _call_token(self, token: TokenAccount, method: str, *args):
        try:
            ok = getattr(token, method)(*args)
        except PoolError:
            raise
        except Exception as e:
            raise TransferError(f"{token.symbol} {method} raised: {e}") from e
        if not ok:
            raise TransferError(f"{token.symbol} {method} of {args[-1]} failed")

    def _settle(self, pulls: list, pushes: list) -> list:
        """
        Pull tokens into the pool, then push tokens out of it.

        Returns the completed legs so a later failure can unwind them. If a
        leg fails, the legs already done are unwound before re-raising.
        """
        completed = []
        try:
            for token, source, amount in pulls:
                if amount:
                    self._call_token(token, 'transfer_from', self.pool_address, source,
                                     self.pool_address, amount)
                    completed.append(('pull', token, source, amount))
            for token, to, amount in pushes:
                if amount:
                    self._call_token(token, 'transfer', self.pool_address, to, amount)
                    completed.append(('push', token, to, amount))
        except PoolError:
            self._unwind(completed)
            raise
        return completed

    def _unwind(self, completed: list):
        for leg, token, party, amount in reversed(completed):
            try:
                if leg == 'pull':
                    self._call_token(token, 'transfer', self.pool_address, party, amount)
                else:
                    self._call_token(token, 'transfer_from', self.pool_address, party,
                                     self.pool_address, amount)
            except PoolError as e:
                logger.error(
                    f"Pool {self.netuid}: could not unwind {leg} of {amount} {token.symbol} "
                    f"({e}); run verify_reserves"
                )
                raise TransferError(f"Unwind of {leg} failed: {e}") from e

    def _commit(self, state: PoolState, events: list[PoolEvent], completed: list):
        if self.store is not None:
            try:
                self.store.save(state)
            except Exception:
                self._unwind(completed)
                raise
        self.state = state
        self.event_log.publish(events)

    @staticmethod
    def _prices(state: PoolState) -> tuple:
        return state.current_price, state.moving_average_price

    def _state_events(self, state: PoolState, height: int, prices_before: tuple) -> list[PoolEvent]:
        events = [ReservesUpdated(state.netuid, height, *state.reserves())]
        if self._prices(state) != prices_before:
            events.append(PriceUpdated(state.netuid, height, *self._prices(state)))
        return events

    # ==========================================================================
    # VALIDATION
    # ==========================================================================

    @staticmethod
    def _check_amount(amount, name: str, allow_zero: bool = False):
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError(f"{name} must be an integer")
        if amount < 0 or (amount == 0 and not allow_zero):
            raise ValidationError(f"{name} must be positive")

    def _check_party(self, address, name: str):
        """Reject zero addresses and the pool's own custody address as counterparties."""
        if not isinstance(address, bytes) or is_zero_address(address):
            raise ValidationError(f"{name} cannot be the zero address")
        if address == self.pool_address:
            raise ValidationError(f"{name} cannot be the pool itself")

    def _check_pair(self, base_amount, quote_amount):
        self._check_amount(base_amount, "base_amount", allow_zero=True)
        self._check_amount(quote_amount, "quote_amount", allow_zero=True)
        if base_amount == 0 and quote_amount == 0:
            raise ValidationError("At least one amount must be non-zero")

    # ==========================================================================
    # CONTROLLER OPERATIONS
    # ==========================================================================

    def inject_liquidity(self, handle: ControllerHandle, base_amount: int, quote_amount: int):
        """
        Add reserves. Tokens are pulled from the controller's accounts.

        Raises:
            ValidationError: both amounts zero or malformed
            AuthorizationError: handle was not issued to this pool
            TransferError: a token pull failed
        """
        with self._non_reentrant("inject_liquidity"):
            self._check_pair(base_amount, quote_amount)
            provider = require_controller(self.state, handle, self._controller_handles)
            self._check_party(provider, "provider")

            height = self.height_provider()
            state = self.state.copy()
            prices_before = self._prices(state)
            state.base_reserve += base_amount
            state.quote_reserve_in += quote_amount
            state.anchor_invariant()
            self.tracker.refresh(state, height)

            events = [LiquidityInjected(state.netuid, height, provider, base_amount, quote_amount)]
            events += self._state_events(state, height, prices_before)

            completed = self._settle(
                pulls=[(self.base_token, provider, base_amount),
                       (self.quote_token, provider, quote_amount)],
                pushes=[],
            )
            self._commit(state, events, completed)

        logger.info(
            f"Pool {self.netuid}: injected {base_amount} base / {quote_amount} quote, "
            f"reserves {state.base_reserve}/{state.quote_reserve_in}"
        )

    def withdraw_liquidity(self, handle: ControllerHandle, base_amount: int, quote_amount: int,
                           recipient: bytes):
        """
        Remove reserves, never below the liquidity floor.

        Raises:
            ValidationError: both amounts zero, malformed, or a zero or pool recipient
            AuthorizationError: handle was not issued to this pool
            LiquidityError: amount above the reserve, or remaining reserve below the floor
            TransferError: a token push failed
        """
        with self._non_reentrant("withdraw_liquidity"):
            self._check_pair(base_amount, quote_amount)
            self._check_party(recipient, "recipient")
            require_controller(self.state, handle, self._controller_handles)

            height = self.height_provider()
            state = self.state.copy()
            prices_before = self._prices(state)
            floor = state.minimum_pool_liquidity
            for name, amount, reserve in (("base", base_amount, state.base_reserve),
                                          ("quote", quote_amount, state.quote_reserve_in)):
                if amount == 0:
                    continue
                if amount > reserve:
                    raise LiquidityError(f"Insufficient {name} reserve: {amount} > {reserve}")
                if reserve - amount < floor:
                    raise LiquidityError(
                        f"Withdrawal would leave {name} reserve at {reserve - amount}, "
                        f"below minimum {floor}"
                    )

            state.base_reserve -= base_amount
            state.quote_reserve_in -= quote_amount
            state.anchor_invariant()
            self.tracker.refresh(state, height)

            events = [LiquidityWithdrawn(state.netuid, height, recipient, base_amount, quote_amount)]
            events += self._state_events(state, height, prices_before)

            completed = self._settle(
                pulls=[],
                pushes=[(self.base_token, recipient, base_amount),
                        (self.quote_token, recipient, quote_amount)],
            )
            self._commit(state, events, completed)

        logger.info(
            f"Pool {self.netuid}: withdrew {base_amount} base / {quote_amount} quote "
            f"to {recipient.hex()[:8]}, reserves {state.base_reserve}/{state.quote_reserve_in}"
        )

    # ==========================================================================
    # PUBLIC OPERATIONS
    # ==========================================================================

    def swap_base_for_quote(self, order: SwapOrder) -> int:
        """Sell order.amount_in base tokens for quote tokens. Returns the quote amount paid out."""
        return self._swap(Direction.BASE_TO_QUOTE, order)

    def swap_quote_for_base(self, order: SwapOrder) -> int:
        """Sell order.amount_in quote tokens for base tokens. Returns the base amount paid out."""
        return self._swap(Direction.QUOTE_TO_BASE, order)

    def nonce_of(self, address: bytes) -> int:
        """Next swap order nonce the pool accepts from an account."""
        return self.state.nonce_of(address)

    def _authenticate(self, direction: Direction, order: SwapOrder) -> bytes:
        """
        Check a swap order is signed by its sender and meant for this call.

        Returns:
            The sender's account address, which pays the input tokens.
        """
        if not order.verify_signature():
            raise AuthorizationError("Invalid swap order signature")
        if order.netuid != self.netuid:
            raise ValidationError(f"Order is for pool {order.netuid}, not {self.netuid}")
        if order.direction != direction.value:
            raise ValidationError(f"Order direction {order.direction} does not match {direction.value}")

        caller = order.sender
        self._check_party(caller, "caller")
        expected = self.state.nonce_of(caller)
        if order.nonce != expected:
            raise ValidationError(f"Invalid nonce. Expected {expected}, got {order.nonce}")
        return caller

    def _swap(self, direction: Direction, order: SwapOrder) -> int:
        with self._non_reentrant(f"swap {direction.value}"):
            if not isinstance(order, SwapOrder):
                raise AuthorizationError("Signed swap order required")
            amount_in, min_amount_out = order.amount_in, order.min_amount_out
            recipient = order.recipient
            self._check_amount(amount_in, "amount_in")
            self._check_amount(min_amount_out, "min_amount_out", allow_zero=True)
            self._check_party(recipient, "recipient")
            caller = self._authenticate(direction, order)

            height = self.height_provider()
            state = self.state.copy()
            prices_before = self._prices(state)

            quote = quote_swap(state, direction, amount_in)
            if not quote.executable:
                raise LiquidityError(f"Swap not executable: {quote.rejection}")
            amount_out = quote.amount_out
            if amount_out < min_amount_out:
                raise SlippageError(amount_out, min_amount_out)

            pre_trade_price = state.spot_price
            if direction is Direction.BASE_TO_QUOTE:
                token_in, token_out = self.base_token, self.quote_token
                state.base_reserve += amount_in
                state.quote_reserve_in = checked_sub(state.quote_reserve_in, amount_out)
                state.quote_reserve_out += amount_out
                base_equivalent = amount_in
            else:
                token_in, token_out = self.quote_token, self.base_token
                state.quote_reserve_in += amount_in
                state.base_reserve = checked_sub(state.base_reserve, amount_out)
                state.quote_reserve_out = max(0, state.quote_reserve_out - amount_in)
                base_equivalent = mul_div(amount_in, pre_trade_price, PRECISION)

            # Only a committed swap uses up the nonce; a failed order can be resubmitted
            state.consume_nonce(caller)
            state.stats.record(caller, base_equivalent)
            self.tracker.refresh(state, height)

            events = [SwapExecuted(state.netuid, height, caller, recipient, direction.value,
                                   amount_in, amount_out, state.current_price)]
            events += self._state_events(state, height, prices_before)

            completed = self._settle(
                pulls=[(token_in, caller, amount_in)],
                pushes=[(token_out, recipient, amount_out)],
            )
            self._commit(state, events, completed)

        logger.info(
            f"Pool {self.netuid} swap: {amount_in} -> {amount_out} ({direction.value}), "
            f"price: {to_decimal(state.current_price)}, "
            f"ema: {to_decimal(state.moving_average_price or 0)}"
        )
        return amount_out

    def refresh_moving_average_price(self) -> Optional[int]:
        """Blend the current price into the moving average if the height advanced."""
        with self._non_reentrant("refresh_moving_average_price"):
            height = self.height_provider()
            state = self.state.copy()
            prices_before = self._prices(state)
            if self.tracker.refresh(state, height):
                events = []
                if self._prices(state) != prices_before:
                    events.append(PriceUpdated(state.netuid, height, *self._prices(state)))
                self._commit(state, events, [])
            return self.state.moving_average_price

    # ==========================================================================
    # READ-ONLY
    # ==========================================================================

    def get_swap_preview(self, direction, amount_in: int) -> SwapQuote:
        return quote_swap(self.state, Direction(direction), amount_in)

    def calculate_slippage(self, direction, amount_in: int) -> SlippageReport:
        return calculate_slippage(self.state, Direction(direction), amount_in)

    def check_large_trade_warning(self, direction, amount_in: int) -> TradeWarning:
        """Classify a prospective trade by its size relative to the input-side reserve."""
        direction = Direction(direction)
        if direction is Direction.BASE_TO_QUOTE:
            reserve = self.state.base_reserve
        else:
            reserve = self.state.quote_reserve_in

        if reserve == 0:
            return TradeWarning(TradeSize.VERY_LARGE, BASIS_POINTS, "Pool has no liquidity")

        impact = mul_div(max(amount_in, 0), BASIS_POINTS, reserve)
        medium, large, very_large = self.trade_tiers_bps
        if impact >= very_large:
            size, message = TradeSize.VERY_LARGE, "Very large trade, high price impact"
        elif impact >= large:
            size, message = TradeSize.LARGE, "Large trade, significant price impact"
        elif impact >= medium:
            size, message = TradeSize.MEDIUM, "Medium trade, moderate price impact"
        else:
            size, message = TradeSize.NORMAL, "Normal trade size"
        return TradeWarning(size, impact, message)

    def get_pool_health(self) -> PoolHealth:
        state = self.state
        issues = []
        if state.base_reserve < state.minimum_pool_liquidity:
            issues.append(f"base reserve {state.base_reserve} below minimum")
        if state.quote_reserve_in < state.minimum_pool_liquidity:
            issues.append(f"quote reserve {state.quote_reserve_in} below minimum")
        return PoolHealth(not issues, state.base_reserve, state.quote_reserve_in,
                          state.minimum_pool_liquidity, tuple(issues))

    def get_pool_info(self) -> dict:
        state = self.state
        return {
            'netuid': state.netuid,
            'mechanism': state.mechanism.name,
            'base_reserve': state.base_reserve,
            'quote_reserve_in': state.quote_reserve_in,
            'quote_reserve_out': state.quote_reserve_out,
            'current_price': state.current_price,
            'moving_average_price': state.moving_average_price,
            'last_price_update_height': state.last_price_update_height,
            'minimum_pool_liquidity': state.minimum_pool_liquidity,
            'pool_address': state.pool_address.hex(),
            'controller_address': state.controller_address.hex(),
            'owner_contract_address': state.owner_contract_address.hex(),
            'creator_address': state.creator_address.hex(),
            'created_height': state.created_height,
        }

    def get_statistics(self) -> dict:
        stats = self.state.stats
        return {
            'total_volume': stats.total_volume,
            'swap_count': stats.swap_count,
            'participants': len(stats.participant_volume),
            'current_price': self.state.current_price,
            'moving_average_price': self.state.moving_average_price,
            'constant_product_k': self.get_constant_product_k(),
        }

    def get_user_stats(self, address: bytes) -> dict:
        stats = self.state.stats
        volume = stats.volume_of(address)
        share = mul_div(volume, BASIS_POINTS, stats.total_volume) if stats.total_volume else 0
        return {
            'volume': volume,
            'swap_count': stats.swaps_of(address),
            'share_bps': share,
        }

    def verify_reserves(self) -> ReserveCheck:
        """
        Compare recorded reserves with what the token ledgers hold for the pool.

        Advisory only: mismatches are reported and logged, never corrected.
        """
        state = self.state
        actual_base = self.base_token.balance_of(self.pool_address)
        actual_quote = self.quote_token.balance_of(self.pool_address)

        issues = []
        if actual_base != state.base_reserve:
            issues.append(f"base: recorded {state.base_reserve}, held {actual_base}")
        if actual_quote != state.quote_reserve_in:
            issues.append(f"quote: recorded {state.quote_reserve_in}, held {actual_quote}")
        for issue in issues:
            logger.warning(f"Pool {self.netuid} reserve mismatch, {issue}")

        return ReserveCheck(not issues, state.base_reserve, actual_base,
                            state.quote_reserve_in, actual_quote, tuple(issues))

    def get_constant_product_k(self) -> int:
        return self.state.constant_product

    def __repr__(self) -> str:
        return f"SubnetPool({self.state!r})"
