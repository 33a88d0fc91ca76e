"""
Subnet AMM pool state.

Holds the reserve ledger, the price fields maintained by the price tracker,
the authorized addresses and the volume statistics of one subnet pool.
"""
from decimal import Decimal
from enum import IntEnum
from typing import Optional

from subnet_amm.errors import ValidationError
from subnet_amm.fixed_point import checked_mul, ratio, to_decimal


class Mechanism(IntEnum):
    """Pricing rule chosen when the pool is created."""
    FIXED_RATIO = 0
    CONSTANT_PRODUCT = 1

    @classmethod
    def parse(cls, value) -> 'Mechanism':
        """Accept a Mechanism, its int value or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value)
        if isinstance(value, str):
            key = value.strip().upper().replace('_', '').replace('-', '')
            if key in _MECHANISM_ALIASES:
                return cls[_MECHANISM_ALIASES[key]]
            raise ValidationError(f"Invalid mechanism: {value!r}")
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                raise ValidationError(f"Invalid mechanism: {value!r}") from None
        raise ValidationError(f"Invalid mechanism: {value!r}")


_MECHANISM_ALIASES = {
    'FIXEDRATIO': 'FIXED_RATIO',
    'STABLE': 'FIXED_RATIO',
    'CONSTANTPRODUCT': 'CONSTANT_PRODUCT',
    'DYNAMIC': 'CONSTANT_PRODUCT',
}


class VolumeStats:
    """
    Cumulative trade volume, denominated in base-token equivalent units.

    total_volume always equals the sum of the per-participant volumes.
    """

    def __init__(self, data: dict = None):
        if data is None:
            data = {
                'total_volume': 0,
                'swap_count': 0,
                'participant_volume': {},
                'participant_swaps': {},
            }

        self.total_volume = int(data['total_volume'])
        self.swap_count = int(data['swap_count'])
        self.participant_volume = {k: int(v) for k, v in data['participant_volume'].items()}
        self.participant_swaps = {k: int(v) for k, v in data['participant_swaps'].items()}

    def to_dict(self) -> dict:
        return {
            'total_volume': self.total_volume,
            'swap_count': self.swap_count,
            'participant_volume': dict(self.participant_volume),
            'participant_swaps': dict(self.participant_swaps),
        }

    def record(self, participant: bytes, base_equivalent: int):
        """Add one trade of the given base-equivalent size."""
        key = participant.hex()
        self.total_volume += base_equivalent
        self.swap_count += 1
        self.participant_volume[key] = self.participant_volume.get(key, 0) + base_equivalent
        self.participant_swaps[key] = self.participant_swaps.get(key, 0) + 1

    def volume_of(self, participant: bytes) -> int:
        return self.participant_volume.get(participant.hex(), 0)

    def swaps_of(self, participant: bytes) -> int:
        return self.participant_swaps.get(participant.hex(), 0)

    def is_consistent(self) -> bool:
        return self.total_volume == sum(self.participant_volume.values())


class PoolState:
    """
    Represents the state of one subnet pool.

    base_reserve and quote_reserve_in are the reserves held by the pool and
    drive pricing. quote_reserve_out counts quote tokens put into circulation
    by swaps and is used for accounting only.

    Prices are fixed-point at 10^18 and expressed as base units per one quote
    unit.
    """

    def __init__(self, data: dict):
        """
        Initialize pool state.

        Args:
            data: Dict with pool identity, reserves, prices and statistics.
                Identity keys (netuid, mechanism, minimum_pool_liquidity and
                the addresses) are required; everything else defaults to an
                empty pool.
        """
        self.netuid = int(data['netuid'])
        self.mechanism = Mechanism.parse(data['mechanism'])
        self.minimum_pool_liquidity = int(data['minimum_pool_liquidity'])

        self.controller_address = bytes(data['controller_address'])
        self.owner_contract_address = bytes(data['owner_contract_address'])
        self.creator_address = bytes(data['creator_address'])
        self.pool_address = bytes(data['pool_address'])
        self.created_height = int(data.get('created_height', 0))

        self.base_reserve = int(data.get('base_reserve', 0))
        self.quote_reserve_in = int(data.get('quote_reserve_in', 0))
        self.quote_reserve_out = int(data.get('quote_reserve_out', 0))
        # Curve invariant, re-anchored on every liquidity change
        self.invariant_k = int(data.get('invariant_k', self.base_reserve * self.quote_reserve_in))

        self.current_price = int(data.get('current_price', 0))
        average = data.get('moving_average_price')
        self.moving_average_price: Optional[int] = None if average is None else int(average)
        self.last_price_update_height = int(data.get('last_price_update_height', 0))

        self.stats = VolumeStats(data.get('stats'))
        # Next expected swap order nonce per trader (address hex)
        self.nonces = {k: int(v) for k, v in data.get('nonces', {}).items()}

        if self.minimum_pool_liquidity < 0:
            raise ValidationError("Minimum pool liquidity cannot be negative")
        if min(self.base_reserve, self.quote_reserve_in, self.quote_reserve_out) < 0:
            raise ValidationError("Reserves cannot be negative")

    def to_dict(self) -> dict:
        """
        Convert to dict for storage.
        """
        return {
            'netuid': self.netuid,
            'mechanism': int(self.mechanism),
            'minimum_pool_liquidity': self.minimum_pool_liquidity,
            'controller_address': self.controller_address,
            'owner_contract_address': self.owner_contract_address,
            'creator_address': self.creator_address,
            'pool_address': self.pool_address,
            'created_height': self.created_height,
            'base_reserve': self.base_reserve,
            'quote_reserve_in': self.quote_reserve_in,
            'quote_reserve_out': self.quote_reserve_out,
            'invariant_k': self.invariant_k,
            'current_price': self.current_price,
            'moving_average_price': self.moving_average_price,
            'last_price_update_height': self.last_price_update_height,
            'stats': self.stats.to_dict(),
            'nonces': dict(self.nonces),
        }

    def copy(self) -> 'PoolState':
        return PoolState(self.to_dict())

    def nonce_of(self, address: bytes) -> int:
        return self.nonces.get(address.hex(), 0)

    def consume_nonce(self, address: bytes):
        key = address.hex()
        self.nonces[key] = self.nonces.get(key, 0) + 1

    @property
    def spot_price(self) -> int:
        """Instantaneous price derived from the reserves right now."""
        return ratio(self.base_reserve, self.quote_reserve_in)

    @property
    def constant_product(self) -> int:
        return self.base_reserve * self.quote_reserve_in

    def anchor_invariant(self):
        """Reset the pricing curve to the current reserves after a liquidity change."""
        self.invariant_k = checked_mul(self.base_reserve, self.quote_reserve_in)

    @property
    def is_empty(self) -> bool:
        return self.base_reserve == 0 and self.quote_reserve_in == 0

    @property
    def is_healthy(self) -> bool:
        """Both reserves at or above the liquidity floor."""
        return (self.base_reserve >= self.minimum_pool_liquidity and
                self.quote_reserve_in >= self.minimum_pool_liquidity)

    def reserves(self) -> tuple[int, int, int]:
        return self.base_reserve, self.quote_reserve_in, self.quote_reserve_out

    def __repr__(self) -> str:
        """String representation for debugging."""
        average = self.moving_average_price
        return (
            f"PoolState("
            f"netuid={self.netuid}, "
            f"mechanism={self.mechanism.name}, "
            f"base_reserve={self.base_reserve}, "
            f"quote_reserve_in={self.quote_reserve_in}, "
            f"quote_reserve_out={self.quote_reserve_out}, "
            f"price={to_decimal(self.current_price)}, "
            f"ema={Decimal('NaN') if average is None else to_decimal(average)})"
        )
