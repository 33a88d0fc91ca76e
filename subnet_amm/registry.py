"""
Pool registry: creates and tracks one exchange pool per subnet.

The registry plays the role of the pool factory invoked at subnet
registration. It holds the two ControllerHandle objects its pools are
built with; only those objects unlock liquidity changes on them.
"""
import logging
from typing import Callable, Optional

from subnet_amm.amm_state import Mechanism
from subnet_amm.config import PoolConfig
from subnet_amm.controller import ControllerHandle
from subnet_amm.crypto import is_zero_address
from subnet_amm.errors import ValidationError
from subnet_amm.events import EventLog
from subnet_amm.pool import SubnetPool
from subnet_amm.store import PoolStore
from subnet_amm.token import TokenAccount

logger = logging.getLogger(__name__)


class PoolRegistry:
    """Keyed store of SubnetPool instances indexed by netuid."""

    def __init__(self, base_token: TokenAccount, controller_address: bytes,
                 owner_contract_address: bytes, height_provider: Callable[[], int],
                 config: Optional[PoolConfig] = None, store: Optional[PoolStore] = None,
                 event_log: Optional[EventLog] = None):
        if is_zero_address(controller_address) or is_zero_address(owner_contract_address):
            raise ValidationError("Controller and owner contract addresses must be non-zero")

        self.base_token = base_token
        self.controller_address = controller_address
        self.owner_contract_address = owner_contract_address
        self.height_provider = height_provider
        self.config = config or PoolConfig()
        self.store = store
        self.event_log = event_log if event_log is not None else EventLog()
        self._pools: dict[int, SubnetPool] = {}

        self._controller_handle = ControllerHandle(controller_address)
        self._owner_handle = ControllerHandle(owner_contract_address)

    def controller_handle(self) -> ControllerHandle:
        return self._controller_handle

    def owner_handle(self) -> ControllerHandle:
        return self._owner_handle

    def _pool_kwargs(self) -> dict:
        return {
            'halving_period': self.config.halving_period,
            'trade_tiers_bps': self.config.trade_tiers_bps,
            'event_log': self.event_log,
            'store': self.store,
        }

    def create_pool(self, netuid: int, quote_token: TokenAccount, creator: bytes,
                    mechanism=None, minimum_pool_liquidity: Optional[int] = None,
                    initial_base: int = 0, initial_quote: int = 0) -> SubnetPool:
        """
        Create the pool for a subnet, optionally seeding it with liquidity.

        Initial liquidity is pulled from the controller's token accounts, so
        the controller must have approved the pool address beforehand.

        Raises:
            ValidationError: duplicate netuid, identical assets, invalid
                mechanism or floor
        """
        if netuid in self._pools or (self.store is not None and self.store.exists(netuid)):
            raise ValidationError(f"Pool for subnet {netuid} already exists")
        if quote_token is self.base_token:
            raise ValidationError("Base and quote assets must differ")

        mechanism = Mechanism.parse(self.config.mechanism if mechanism is None else mechanism)
        if minimum_pool_liquidity is None:
            minimum_pool_liquidity = self.config.minimum_pool_liquidity

        pool = SubnetPool.create(
            netuid, mechanism, minimum_pool_liquidity,
            controller=self._controller_handle,
            owner_contract=self._owner_handle,
            creator_address=creator,
            base_token=self.base_token,
            quote_token=quote_token,
            height_provider=self.height_provider,
            **self._pool_kwargs(),
        )
        self._pools[netuid] = pool

        if initial_base or initial_quote:
            pool.inject_liquidity(self.controller_handle(), initial_base, initial_quote)

        logger.info(f"Registered pool for subnet {netuid} (creator {creator.hex()[:8]})")
        return pool

    def _handles_for(self, state) -> tuple:
        """Handles of this registry that the stored pool recognizes."""
        return tuple(h for h in (self._controller_handle, self._owner_handle)
                     if h.address in (state.controller_address, state.owner_contract_address))

    def load_pools(self, quote_tokens: dict[int, TokenAccount]) -> list[SubnetPool]:
        """
        Restore persisted pools.

        Args:
            quote_tokens: Quote token account for each persisted netuid
        """
        if self.store is None:
            raise ValidationError("Registry has no store to load from")

        loaded = []
        for state in self.store.load_all():
            if state.netuid in self._pools:
                continue
            if state.netuid not in quote_tokens:
                raise ValidationError(f"No quote token supplied for subnet {state.netuid}")
            pool = SubnetPool(state, self.base_token, quote_tokens[state.netuid],
                              self.height_provider,
                              controller_handles=self._handles_for(state),
                              **self._pool_kwargs())
            self._pools[state.netuid] = pool
            loaded.append(pool)
        logger.info(f"Loaded {len(loaded)} pools from store")
        return loaded

    def get_pool(self, netuid: int) -> SubnetPool:
        try:
            return self._pools[netuid]
        except KeyError:
            raise ValidationError(f"No pool for subnet {netuid}") from None

    def has_pool(self, netuid: int) -> bool:
        return netuid in self._pools

    def all_pools(self) -> list[SubnetPool]:
        return [self._pools[netuid] for netuid in sorted(self._pools)]

    @property
    def pool_count(self) -> int:
        return len(self._pools)
