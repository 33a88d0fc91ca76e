# subnet_amm/monitoring.py
import time
import psutil
import socket
from prometheus_client import Counter, Gauge, CollectorRegistry
from prometheus_client.exposition import make_wsgi_app
from wsgiref.simple_server import make_server, WSGIServer
from socketserver import ThreadingMixIn
import threading
import logging
from typing import Optional

from subnet_amm.events import LiquidityInjected, LiquidityWithdrawn, PoolEvent, SwapExecuted
from subnet_amm.fixed_point import to_decimal

logger = logging.getLogger(__name__)


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """A WSGI server that runs in a separate thread to not block the pools."""
    allow_reuse_address = True
    daemon_threads = True


class PoolMonitor:
    """
    Prometheus metrics for the pools of a registry.

    Gauges are refreshed by update(); counters are fed from the shared
    event log, so they only ever count committed operations.
    """

    def __init__(self, registry, host="127.0.0.1", port=9090):
        self.pool_registry = registry
        self.host = host
        self.port = port
        self.server = None
        self.thread = None

        # Isolated registry so several monitors can coexist in one process
        self.registry = CollectorRegistry()

        labels = ['netuid']
        self.base_reserve = Gauge('amm_base_reserve', 'Base token reserve', labels, registry=self.registry)
        self.quote_reserve = Gauge('amm_quote_reserve', 'Quote token reserve held by the pool', labels, registry=self.registry)
        self.quote_outstanding = Gauge('amm_quote_outstanding', 'Quote tokens put into circulation by swaps', labels, registry=self.registry)
        self.amm_k = Gauge('amm_invariant_k', 'Constant product k', labels, registry=self.registry)
        self.current_price = Gauge('amm_current_price', 'Instantaneous price, base per quote', labels, registry=self.registry)
        self.moving_price = Gauge('amm_moving_average_price', 'Moving average price, base per quote', labels, registry=self.registry)
        self.healthy = Gauge('amm_pool_healthy', '1 if both reserves are above the floor', labels, registry=self.registry)
        self.pool_count = Gauge('amm_pool_count', 'Number of registered pools', registry=self.registry)
        self.swaps = Counter('amm_swaps_total', 'Committed swaps', ['netuid', 'direction'], registry=self.registry)
        self.volume = Counter('amm_swap_input_total', 'Swap input amounts', ['netuid', 'direction'], registry=self.registry)
        self.liquidity_ops = Counter('amm_liquidity_operations_total', 'Committed liquidity changes', ['netuid', 'kind'], registry=self.registry)
        self.cpu_usage = Gauge('system_cpu_percent', 'Current CPU usage percent', registry=self.registry)
        self.memory_usage = Gauge('system_memory_percent', 'Current memory usage percent', registry=self.registry)

        self.pool_registry.event_log.subscribe(self.record_event)

    def start_server(self):
        """Manually creates and starts the Prometheus HTTP server with retry logic."""
        app = make_wsgi_app(self.registry)

        max_retries = 5
        retry_delay = 2

        for attempt in range(max_retries):
            try:
                self.server = make_server(self.host, self.port, app, ThreadingWSGIServer)
                self.server.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                # Port 0 binds an ephemeral port
                self.port = self.server.server_port

                self.thread = threading.Thread(target=self.server.serve_forever)
                self.thread.daemon = True
                self.thread.start()
                logger.info(f"Prometheus server started on http://{self.host}:{self.port}")
                return
            except OSError as e:
                if e.errno == 98:  # Address already in use
                    if attempt < max_retries - 1:
                        logger.warning(f"Port {self.port} in use, retrying in {retry_delay}s (attempt {attempt+1}/{max_retries})...")
                        time.sleep(retry_delay)
                    else:
                        logger.error(f"Failed to bind to port {self.port} after {max_retries} attempts")
                        raise
                else:
                    raise

    def stop_server(self):
        """Stops the HTTP server."""
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
            self.thread.join(timeout=5)
            self.thread = None
            logger.info("Prometheus server stopped.")

    def update(self):
        pools = self.pool_registry.all_pools()
        self.pool_count.set(len(pools))

        for pool in pools:
            state = pool.state
            netuid = str(state.netuid)
            self.base_reserve.labels(netuid=netuid).set(state.base_reserve)
            self.quote_reserve.labels(netuid=netuid).set(state.quote_reserve_in)
            self.quote_outstanding.labels(netuid=netuid).set(state.quote_reserve_out)
            self.amm_k.labels(netuid=netuid).set(state.constant_product)
            self.current_price.labels(netuid=netuid).set(float(to_decimal(state.current_price)))
            if state.moving_average_price is not None:
                self.moving_price.labels(netuid=netuid).set(float(to_decimal(state.moving_average_price)))
            self.healthy.labels(netuid=netuid).set(1 if state.is_healthy else 0)

        self.cpu_usage.set(psutil.cpu_percent())
        self.memory_usage.set(psutil.virtual_memory().percent)

    def record_event(self, event: PoolEvent):
        netuid = str(event.netuid)
        if isinstance(event, SwapExecuted):
            self.swaps.labels(netuid=netuid, direction=event.direction).inc()
            self.volume.labels(netuid=netuid, direction=event.direction).inc(event.amount_in)
        elif isinstance(event, LiquidityInjected):
            self.liquidity_ops.labels(netuid=netuid, kind='inject').inc()
        elif isinstance(event, LiquidityWithdrawn):
            self.liquidity_ops.labels(netuid=netuid, kind='withdraw').inc()

    def sample(self, name: str, labels: dict = None) -> Optional[float]:
        """Current value of a metric sample, or None if it was never set."""
        return self.registry.get_sample_value(name, labels or {})


def start_monitor(registry, config) -> Optional[PoolMonitor]:
    """
    Start the metrics endpoint described by a MonitoringConfig.

    Returns:
        The running monitor with gauges populated, or None when monitoring is disabled.
    """
    if not config.enabled:
        logger.info("Monitoring disabled")
        return None
    monitor = PoolMonitor(registry, host=config.host, port=config.port)
    monitor.start_server()
    monitor.update()
    return monitor
