"""
Persistence of pool records: one msgpack record per subnet id.

Integers are stored as decimal strings because reserve products and
fixed-point prices routinely exceed msgpack's 64-bit integer range.
"""
import logging
from typing import Optional

import msgpack

from subnet_amm.amm_state import PoolState
from subnet_amm.db import DB

logger = logging.getLogger(__name__)

POOL_PREFIX = b"POOL:"


def pool_key(netuid: int) -> bytes:
    return POOL_PREFIX + netuid.to_bytes(2, 'big')


def _encode(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    return value


class PoolStore:
    """Reads and writes PoolState records in a DB."""

    def __init__(self, db: DB):
        self.db = db

    def save(self, state: PoolState):
        encoded = msgpack.packb(_encode(state.to_dict()), use_bin_type=True)
        self.db.put(pool_key(state.netuid), encoded)
        logger.debug(f"Pool {state.netuid} persisted ({len(encoded)} bytes)")

    def exists(self, netuid: int) -> bool:
        return self.db.exists(pool_key(netuid))

    def load(self, netuid: int) -> Optional[PoolState]:
        raw = self.db.get(pool_key(netuid))
        if raw is None:
            return None
        return PoolState(msgpack.unpackb(raw, raw=False))

    def load_all(self) -> list[PoolState]:
        states = []
        for _, raw in self.db.iterate_prefix(POOL_PREFIX):
            states.append(PoolState(msgpack.unpackb(raw, raw=False)))
        return states

    def netuids(self) -> list[int]:
        return [int.from_bytes(key[len(POOL_PREFIX):], 'big')
                for key, _ in self.db.iterate_prefix(POOL_PREFIX)]
