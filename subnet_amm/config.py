"""
Configuration management for the subnet AMM engine.
"""
import json
import os
from dataclasses import dataclass, asdict, field

from subnet_amm.amm_state import Mechanism
from subnet_amm.price_tracker import HALVING_PERIOD


@dataclass
class PoolConfig:
    """Defaults applied to newly created pools."""
    mechanism: str = "constant_product"
    minimum_pool_liquidity: int = 1000
    halving_period: int = HALVING_PERIOD  # ticks
    # Trade size tiers in basis points of the input-side reserve
    medium_trade_bps: int = 500
    large_trade_bps: int = 1000
    very_large_trade_bps: int = 2000

    def __post_init__(self):
        Mechanism.parse(self.mechanism)
        if self.minimum_pool_liquidity < 0:
            raise ValueError("minimum_pool_liquidity cannot be negative")
        if self.halving_period <= 0:
            raise ValueError("halving_period must be positive")

    @property
    def trade_tiers_bps(self) -> tuple[int, int, int]:
        return self.medium_trade_bps, self.large_trade_bps, self.very_large_trade_bps


@dataclass
class DatabaseConfig:
    """Database configuration."""
    path: str = "./subnet_amm_data"
    write_buffer_size: int = 4 * 1024 * 1024  # 4MB
    max_open_files: int = 1000
    compression: str = "snappy"


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9090


@dataclass
class Config:
    """Main configuration."""
    pool: PoolConfig = field(default_factory=PoolConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def default(cls) -> 'Config':
        """Create default configuration."""
        return cls(
            pool=PoolConfig(),
            database=DatabaseConfig(),
            monitoring=MonitoringConfig()
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        return cls(
            pool=PoolConfig(**data.get('pool', {})),
            database=DatabaseConfig(**data.get('database', {})),
            monitoring=MonitoringConfig(**data.get('monitoring', {}))
        )

    @classmethod
    def from_file(cls, path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    def to_file(self, path: str):
        """Save configuration to JSON file."""
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'pool': asdict(self.pool),
            'database': asdict(self.database),
            'monitoring': asdict(self.monitoring)
        }
