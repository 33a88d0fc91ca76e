"""
Subnet AMM command line tool.

Creates pool records in a LevelDB store and inspects them offline: pool
info, swap previews, slippage and trade-size classification. `serve`
loads the stored pools and exposes their metrics over HTTP. Nothing here
moves tokens; liquidity and swaps go through a live SubnetPool.
"""
import argparse
import json
import logging
import sys
import time

from subnet_amm.config import Config
from subnet_amm.controller import ControllerHandle
from subnet_amm.db import DB
from subnet_amm.errors import PoolError
from subnet_amm.fixed_point import to_decimal
from subnet_amm.monitoring import start_monitor
from subnet_amm.pool import BlockCounter, SubnetPool
from subnet_amm.pricing import Direction
from subnet_amm.registry import PoolRegistry
from subnet_amm.store import PoolStore
from subnet_amm.token import TokenLedger

logger = logging.getLogger(__name__)


def _open_store(config: Config) -> PoolStore:
    db_config = config.database
    db = DB(db_config.path,
            write_buffer_size=db_config.write_buffer_size,
            max_open_files=db_config.max_open_files,
            compression=db_config.compression or None)
    return PoolStore(db)


def _offline_pool(store: PoolStore, config: Config, netuid: int) -> SubnetPool:
    state = store.load(netuid)
    if state is None:
        raise PoolError(f"No pool stored for subnet {netuid}")
    return SubnetPool(state, TokenLedger("BASE"), TokenLedger("QUOTE"),
                      height_provider=lambda: state.last_price_update_height,
                      halving_period=config.pool.halving_period,
                      trade_tiers_bps=config.pool.trade_tiers_bps)


def cmd_init_config(args, config: Config):
    config.to_file(args.output)
    print(f"Wrote default configuration to {args.output}")


def cmd_create(args, config: Config):
    store = _open_store(config)
    try:
        if store.exists(args.netuid):
            raise PoolError(f"Pool for subnet {args.netuid} already exists")
        SubnetPool.create(
            args.netuid,
            args.mechanism or config.pool.mechanism,
            config.pool.minimum_pool_liquidity if args.floor is None else args.floor,
            controller=ControllerHandle(bytes.fromhex(args.controller)),
            owner_contract=ControllerHandle(bytes.fromhex(args.owner)),
            creator_address=bytes.fromhex(args.creator),
            base_token=TokenLedger("BASE"),
            quote_token=TokenLedger("QUOTE"),
            height_provider=lambda: args.height,
            store=store,
        )
    finally:
        store.db.close()
    print(f"Created pool for subnet {args.netuid}")


def cmd_info(args, config: Config):
    store = _open_store(config)
    try:
        pool = _offline_pool(store, config, args.netuid)
        info = pool.get_pool_info()
        info['health'] = pool.get_pool_health().healthy
        info['statistics'] = pool.get_statistics()
    finally:
        store.db.close()
    print(json.dumps(info, indent=2, default=str))


def cmd_preview(args, config: Config):
    store = _open_store(config)
    try:
        pool = _offline_pool(store, config, args.netuid)
        quote = pool.get_swap_preview(args.direction, args.amount)
        slippage = pool.calculate_slippage(args.direction, args.amount)
        warning = pool.check_large_trade_warning(args.direction, args.amount)
    finally:
        store.db.close()

    print(json.dumps({
        'direction': quote.direction.value,
        'amount_in': quote.amount_in,
        'amount_out': quote.amount_out,
        'executable': quote.executable,
        'rejection': quote.rejection,
        'slippage_bps': slippage.slippage_bps,
        'slippage_executable': slippage.executable,
        'trade_size': warning.size.value,
        'trade_impact_bps': warning.impact_bps,
        'spot_price': str(to_decimal(pool.state.spot_price)),
    }, indent=2))


def cmd_serve(args, config: Config):
    if not config.monitoring.enabled:
        raise PoolError("Monitoring is disabled in the configuration")

    store = _open_store(config)
    monitor = None
    try:
        registry = PoolRegistry(TokenLedger("BASE"), bytes.fromhex(args.controller),
                                bytes.fromhex(args.owner), BlockCounter(),
                                config=config.pool, store=store)
        registry.load_pools({netuid: TokenLedger(f"QUOTE{netuid}") for netuid in store.netuids()})
        monitor = start_monitor(registry, config.monitoring)
        print(f"Serving metrics for {registry.pool_count} pools on "
              f"http://{monitor.host}:{monitor.port}/metrics", flush=True)

        iteration = 0
        while not args.iterations or iteration < args.iterations:
            time.sleep(args.interval)
            monitor.update()
            iteration += 1
    except KeyboardInterrupt:
        logger.info("Shutting down metrics server")
    finally:
        if monitor is not None:
            monitor.stop_server()
        store.db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="subnet-amm", description="Subnet AMM pool tool")
    parser.add_argument("--config", help="Path to JSON configuration file")
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init-config", help="Write the default configuration")
    init.add_argument("output")
    init.set_defaults(func=cmd_init_config)

    create = sub.add_parser("create", help="Create an empty pool record")
    create.add_argument("--netuid", type=int, required=True)
    create.add_argument("--mechanism", help="fixed_ratio or constant_product")
    create.add_argument("--floor", type=int, help="Minimum pool liquidity")
    create.add_argument("--controller", required=True, help="Controller address (hex)")
    create.add_argument("--owner", required=True, help="Owner contract address (hex)")
    create.add_argument("--creator", required=True, help="Creator address (hex)")
    create.add_argument("--height", type=int, default=0)
    create.set_defaults(func=cmd_create)

    info = sub.add_parser("info", help="Show a stored pool")
    info.add_argument("--netuid", type=int, required=True)
    info.set_defaults(func=cmd_info)

    preview = sub.add_parser("preview", help="Preview a swap against a stored pool")
    preview.add_argument("--netuid", type=int, required=True)
    preview.add_argument("--direction", choices=[d.value for d in Direction], required=True)
    preview.add_argument("--amount", type=int, required=True)
    preview.set_defaults(func=cmd_preview)

    serve = sub.add_parser("serve", help="Expose metrics for the stored pools")
    serve.add_argument("--controller", required=True, help="Controller address (hex)")
    serve.add_argument("--owner", required=True, help="Owner contract address (hex)")
    serve.add_argument("--interval", type=float, default=15.0, help="Seconds between gauge refreshes")
    serve.add_argument("--iterations", type=int, default=0, help="Refreshes before exiting, 0 to run until interrupted")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = Config.from_file(args.config) if args.config else Config.default()
    try:
        args.func(args, config)
    except (PoolError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
