"""
Test pool creation and lookup through the registry.
"""
import shutil
import tempfile

import pytest

from subnet_amm.amm_state import Mechanism
from subnet_amm.config import PoolConfig
from subnet_amm.crypto import derive_pool_address, new_address
from subnet_amm.db import DB
from subnet_amm.controller import ControllerHandle
from subnet_amm.errors import AuthorizationError, ValidationError
from subnet_amm.events import LiquidityInjected
from subnet_amm.pool import BlockCounter
from subnet_amm.registry import PoolRegistry
from subnet_amm.store import PoolStore
from subnet_amm.token import TokenLedger


@pytest.fixture
def base_token():
    return TokenLedger("BASE")


@pytest.fixture
def registry(base_token):
    return PoolRegistry(base_token, new_address(), new_address(), BlockCounter(5),
                        config=PoolConfig(minimum_pool_liquidity=100))


@pytest.fixture
def store():
    temp_dir = tempfile.mkdtemp()
    db = DB(temp_dir)
    yield PoolStore(db)
    db.close()
    shutil.rmtree(temp_dir)


def approve_seed(registry, quote_token, netuid, amount):
    controller = registry.controller_address
    pool_address = derive_pool_address(netuid)
    for token in (registry.base_token, quote_token):
        token.mint(controller, amount)
        token.approve(controller, pool_address, amount)


class TestPoolRegistry:

    def test_create_pool_uses_config_defaults(self, registry):
        pool = registry.create_pool(3, TokenLedger("Q3"), new_address())
        assert pool.state.mechanism is Mechanism.CONSTANT_PRODUCT
        assert pool.state.minimum_pool_liquidity == 100
        assert registry.get_pool(3) is pool
        assert registry.has_pool(3)

    def test_mechanism_override(self, registry):
        pool = registry.create_pool(4, TokenLedger("Q4"), new_address(), mechanism="stable")
        assert pool.state.mechanism is Mechanism.FIXED_RATIO

    def test_creator_is_not_the_controller(self, registry):
        creator = new_address()
        pool = registry.create_pool(5, TokenLedger("Q5"), creator)
        assert pool.state.creator_address == creator
        assert pool.state.controller_address == registry.controller_address

    def test_create_with_initial_liquidity(self, registry):
        quote = TokenLedger("Q6")
        approve_seed(registry, quote, 6, 50_000)

        pool = registry.create_pool(6, quote, new_address(),
                                    initial_base=50_000, initial_quote=25_000)
        assert pool.state.reserves() == (50_000, 25_000, 0)
        assert pool.verify_reserves().consistent
        assert len(registry.event_log.of_type(LiquidityInjected)) == 1

    def test_duplicate_netuid_rejected(self, registry):
        registry.create_pool(7, TokenLedger("Q7"), new_address())
        with pytest.raises(ValidationError, match="already exists"):
            registry.create_pool(7, TokenLedger("Q7b"), new_address())

    def test_base_token_as_quote_rejected(self, registry, base_token):
        with pytest.raises(ValidationError, match="must differ"):
            registry.create_pool(8, base_token, new_address())
        assert not registry.has_pool(8)

    def test_unknown_pool(self, registry):
        with pytest.raises(ValidationError, match="No pool"):
            registry.get_pool(99)

    def test_all_pools_sorted(self, registry):
        for netuid in (12, 2, 9):
            registry.create_pool(netuid, TokenLedger(f"Q{netuid}"), new_address())
        assert [p.netuid for p in registry.all_pools()] == [2, 9, 12]
        assert registry.pool_count == 3

    def test_pools_share_event_log(self, registry):
        a = registry.create_pool(1, TokenLedger("QA"), new_address())
        b = registry.create_pool(2, TokenLedger("QB"), new_address())
        assert a.event_log is b.event_log is registry.event_log

    def test_handles_are_stable(self, registry):
        assert registry.controller_handle() is registry.controller_handle()
        assert registry.owner_handle().address == registry.owner_contract_address

    def test_only_issued_handles_unlock_pools(self, registry):
        quote = TokenLedger("Q11")
        approve_seed(registry, quote, 11, 20_000)
        pool = registry.create_pool(11, quote, new_address(),
                                    initial_base=10_000, initial_quote=10_000)

        pool.inject_liquidity(registry.controller_handle(), 10_000, 10_000)
        with pytest.raises(AuthorizationError, match="not issued"):
            pool.inject_liquidity(ControllerHandle(registry.controller_address), 1, 1)
        assert pool.state.reserves() == (20_000, 20_000, 0)

    def test_zero_controller_rejected(self, base_token):
        with pytest.raises(ValidationError):
            PoolRegistry(base_token, b'\x00' * 20, new_address(), BlockCounter())


class TestRegistryPersistence:

    def test_reload_pools_from_store(self, base_token, store):
        controller, owner = new_address(), new_address()
        registry = PoolRegistry(base_token, controller, owner, BlockCounter(), store=store)
        quote = TokenLedger("Q1")
        approve_seed(registry, quote, 1, 10_000)
        registry.create_pool(1, quote, new_address(), initial_base=10_000, initial_quote=10_000)

        reloaded = PoolRegistry(base_token, controller, owner, BlockCounter(), store=store)
        pools = reloaded.load_pools({1: quote})

        assert len(pools) == 1
        assert pools[0].state.reserves() == (10_000, 10_000, 0)
        assert pools[0].verify_reserves().consistent

        # The reloaded pool accepts the reloading registry's handle
        approve_seed(reloaded, quote, 1, 1000)
        pools[0].inject_liquidity(reloaded.controller_handle(), 1000, 1000)
        assert pools[0].state.reserves() == (11_000, 11_000, 0)

    def test_duplicate_detected_in_store(self, base_token, store):
        controller, owner = new_address(), new_address()
        PoolRegistry(base_token, controller, owner, BlockCounter(), store=store) \
            .create_pool(2, TokenLedger("Q2"), new_address())

        fresh = PoolRegistry(base_token, controller, owner, BlockCounter(), store=store)
        with pytest.raises(ValidationError, match="already exists"):
            fresh.create_pool(2, TokenLedger("Q2"), new_address())

    def test_load_requires_quote_token(self, base_token, store):
        controller, owner = new_address(), new_address()
        PoolRegistry(base_token, controller, owner, BlockCounter(), store=store) \
            .create_pool(3, TokenLedger("Q3"), new_address())

        fresh = PoolRegistry(base_token, controller, owner, BlockCounter(), store=store)
        with pytest.raises(ValidationError, match="No quote token"):
            fresh.load_pools({})

    def test_load_without_store(self, registry):
        with pytest.raises(ValidationError):
            registry.load_pools({})
