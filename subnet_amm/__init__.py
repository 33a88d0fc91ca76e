"""
Subnet AMM: per-subnet exchange pools between the network base token and
a subnet's quote token.
"""
from subnet_amm.amm_state import Mechanism, PoolState, VolumeStats
from subnet_amm.auth import Signer, SwapOrder
from subnet_amm.controller import ControllerHandle
from subnet_amm.errors import (
    ArithmeticOverflowError,
    AuthorizationError,
    LiquidityError,
    PoolError,
    ReentrancyError,
    SlippageError,
    TransferError,
    ValidationError,
)
from subnet_amm.events import EventLog
from subnet_amm.pool import BlockCounter, SubnetPool, TradeSize
from subnet_amm.pricing import Direction, SlippageReport, SwapQuote
from subnet_amm.token import TokenAccount, TokenLedger

__version__ = "0.1.0"
