"""
Events emitted by pools for off-chain observers.

Events of one operation are buffered and only published once the operation
commits, in the order they were raised.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolEvent:
    netuid: int
    height: int

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        data = asdict(self)
        data['event'] = self.name
        return data


@dataclass(frozen=True)
class LiquidityInjected(PoolEvent):
    provider: bytes
    base_amount: int
    quote_amount: int


@dataclass(frozen=True)
class LiquidityWithdrawn(PoolEvent):
    recipient: bytes
    base_amount: int
    quote_amount: int


@dataclass(frozen=True)
class SwapExecuted(PoolEvent):
    trader: bytes
    recipient: bytes
    direction: str
    amount_in: int
    amount_out: int
    price: int


@dataclass(frozen=True)
class ReservesUpdated(PoolEvent):
    base_reserve: int
    quote_reserve_in: int
    quote_reserve_out: int


@dataclass(frozen=True)
class PriceUpdated(PoolEvent):
    current_price: int
    moving_average_price: Optional[int]


Listener = Callable[[PoolEvent], None]


class EventLog:
    """Ordered record of published events with optional listeners."""

    def __init__(self, keep_history: bool = True):
        self.keep_history = keep_history
        self.events: list[PoolEvent] = []
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener):
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener):
        self._listeners.remove(listener)

    def publish(self, events: list[PoolEvent]):
        for event in events:
            if self.keep_history:
                self.events.append(event)
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception as e:
                    # Listeners run after commit; they cannot undo the operation
                    logger.error(f"Event listener failed on {event.name}: {e}")

    def of_type(self, event_type: type) -> list[PoolEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self):
        self.events.clear()

    def __len__(self) -> int:
        return len(self.events)
