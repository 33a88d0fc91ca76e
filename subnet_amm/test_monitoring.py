"""
Test Prometheus metrics exported for registered pools.
"""
import pytest
import requests

from subnet_amm.auth import Signer
from subnet_amm.config import MonitoringConfig
from subnet_amm.crypto import derive_pool_address, new_address
from subnet_amm.monitoring import PoolMonitor, start_monitor
from subnet_amm.pool import BlockCounter
from subnet_amm.pricing import Direction
from subnet_amm.registry import PoolRegistry
from subnet_amm.token import TokenLedger


@pytest.fixture
def seeded_registry():
    base = TokenLedger("BASE")
    registry = PoolRegistry(base, new_address(), new_address(), BlockCounter(1))
    quote = TokenLedger("Q1")
    controller = registry.controller_address
    for token in (base, quote):
        token.mint(controller, 100_000)
        token.approve(controller, derive_pool_address(1), 100_000)
    return registry, quote


class TestPoolMonitor:

    def test_update_sets_pool_gauges(self, seeded_registry):
        registry, quote = seeded_registry
        monitor = PoolMonitor(registry)
        registry.create_pool(1, quote, new_address(), initial_base=100_000, initial_quote=100_000)

        monitor.update()
        labels = {'netuid': '1'}
        assert monitor.sample('amm_pool_count') == 1
        assert monitor.sample('amm_base_reserve', labels) == 100_000
        assert monitor.sample('amm_current_price', labels) == 1.0
        assert monitor.sample('amm_pool_healthy', labels) == 1
        assert monitor.sample('system_memory_percent') is not None

    def test_swaps_counted_from_events(self, seeded_registry):
        registry, quote = seeded_registry
        monitor = PoolMonitor(registry)
        pool = registry.create_pool(1, quote, new_address(), initial_base=50_000,
                                    initial_quote=50_000)
        trader = Signer()
        registry.base_token.mint(trader.address, 1000)
        registry.base_token.approve(trader.address, pool.pool_address, 1000)

        pool.swap_base_for_quote(trader.swap_order(pool, Direction.BASE_TO_QUOTE, 400))
        pool.swap_base_for_quote(trader.swap_order(pool, Direction.BASE_TO_QUOTE, 600))

        labels = {'netuid': '1', 'direction': 'base_to_quote'}
        assert monitor.sample('amm_swaps_total', labels) == 2
        assert monitor.sample('amm_swap_input_total', labels) == 1000
        assert monitor.sample('amm_liquidity_operations_total',
                              {'netuid': '1', 'kind': 'inject'}) == 1

    def test_unset_metric_is_none(self, seeded_registry):
        monitor = PoolMonitor(seeded_registry[0])
        assert monitor.sample('amm_base_reserve', {'netuid': '42'}) is None

    def test_monitors_are_isolated(self, seeded_registry):
        registry, _ = seeded_registry
        # Each monitor owns its own CollectorRegistry, so this must not clash
        PoolMonitor(registry)
        PoolMonitor(registry)


class TestMetricsServer:

    def test_serves_metrics_on_ephemeral_port(self, seeded_registry):
        registry, quote = seeded_registry
        registry.create_pool(1, quote, new_address(), initial_base=100_000, initial_quote=100_000)
        monitor = PoolMonitor(registry, port=0)
        monitor.start_server()
        try:
            assert monitor.port != 0
            monitor.update()
            response = requests.get(f"http://127.0.0.1:{monitor.port}/metrics", timeout=5)
            assert response.status_code == 200
            assert 'amm_pool_count 1.0' in response.text
            assert 'amm_base_reserve{netuid="1"}' in response.text
        finally:
            monitor.stop_server()

        assert monitor.server is None
        assert monitor.thread is None
        with pytest.raises(requests.ConnectionError):
            requests.get(f"http://127.0.0.1:{monitor.port}/metrics", timeout=5)

    def test_stop_without_start_is_noop(self, seeded_registry):
        monitor = PoolMonitor(seeded_registry[0])
        monitor.stop_server()
        assert monitor.server is None

    def test_start_monitor_from_config(self, seeded_registry):
        registry, _ = seeded_registry
        monitor = start_monitor(registry, MonitoringConfig(enabled=True, port=0))
        try:
            assert monitor.sample('amm_pool_count') == 0
            response = requests.get(f"http://127.0.0.1:{monitor.port}/metrics", timeout=5)
            assert 'amm_pool_count 0.0' in response.text
        finally:
            monitor.stop_server()

    def test_start_monitor_disabled(self, seeded_registry):
        assert start_monitor(seeded_registry[0], MonitoringConfig(enabled=False)) is None
