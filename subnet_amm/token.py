"""
Fungible token accounts used by the pools.

The engine only depends on the TokenAccount interface. TokenLedger is a
simple in-memory implementation (balances plus allowances) used by the
registry tooling and the tests.
"""
import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class TokenAccount(Protocol):
    """Token interface the pool engine calls into."""

    symbol: str

    def balance_of(self, address: bytes) -> int:
        ...

    def transfer(self, sender: bytes, to: bytes, amount: int) -> bool:
        ...

    def transfer_from(self, spender: bytes, source: bytes, to: bytes, amount: int) -> bool:
        ...


class TokenLedger:
    """In-memory balances and allowances for one token."""

    def __init__(self, symbol: str):
        self.symbol = symbol
        self.balances: dict[bytes, int] = {}
        self.allowances: dict[tuple[bytes, bytes], int] = {}
        self.total_supply = 0

    def balance_of(self, address: bytes) -> int:
        return self.balances.get(address, 0)

    def allowance(self, owner: bytes, spender: bytes) -> int:
        return self.allowances.get((owner, spender), 0)

    def mint(self, to: bytes, amount: int):
        if amount < 0:
            raise ValueError("Cannot mint a negative amount")
        self.balances[to] = self.balance_of(to) + amount
        self.total_supply += amount

    def burn(self, source: bytes, amount: int):
        if amount < 0 or self.balance_of(source) < amount:
            raise ValueError(f"Cannot burn {amount} {self.symbol} from {source.hex()[:8]}")
        self.balances[source] -= amount
        self.total_supply -= amount

    def approve(self, owner: bytes, spender: bytes, amount: int):
        if amount < 0:
            raise ValueError("Allowance cannot be negative")
        self.allowances[(owner, spender)] = amount

    def transfer(self, sender: bytes, to: bytes, amount: int) -> bool:
        if amount < 0 or self.balance_of(sender) < amount:
            logger.debug(f"{self.symbol}: transfer of {amount} from {sender.hex()[:8]} refused")
            return False
        self._move(sender, to, amount)
        return True

    def transfer_from(self, spender: bytes, source: bytes, to: bytes, amount: int) -> bool:
        if source != spender and self.allowance(source, spender) < amount:
            logger.debug(f"{self.symbol}: allowance of {spender.hex()[:8]} too low for {amount}")
            return False
        if amount < 0 or self.balance_of(source) < amount:
            logger.debug(f"{self.symbol}: transfer_from of {amount} from {source.hex()[:8]} refused")
            return False
        if source != spender:
            self.allowances[(source, spender)] -= amount
        self._move(source, to, amount)
        return True

    def _move(self, source: bytes, to: bytes, amount: int):
        self.balances[source] = self.balance_of(source) - amount
        self.balances[to] = self.balance_of(to) + amount

    def __repr__(self) -> str:
        return f"TokenLedger(symbol={self.symbol}, supply={self.total_supply}, holders={len(self.balances)})"
