"""
events.py - Observable option book events

Events are plain immutable data emitted after an operation commits. They do
not affect behaviour; indexers and tests subscribe to them. The ledger's
transaction log remains the authoritative audit trail of asset movements.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict


ORDER_CREATED = "order_created"
ORDER_FILLED = "order_filled"
ORDER_CANCELED = "order_canceled"
OPTION_EXERCISED = "option_exercised"
OPTION_EXPIRED = "option_expired"
OPTION_CLOSED = "option_closed"

EVENT_TYPES = frozenset({
    ORDER_CREATED, ORDER_FILLED, ORDER_CANCELED,
    OPTION_EXERCISED, OPTION_EXPIRED, OPTION_CLOSED,
})


@dataclass(frozen=True, slots=True)
class OptionEvent:
    """
    Immutable record of a committed operation.

    Attributes:
        event_type: One of EVENT_TYPES
        option_id: Record the operation acted on
        timestamp: Clock value when the operation ran
        params: Principals and amounts as frozen tuple of (key, value) pairs
    """
    event_type: str
    option_id: int
    timestamp: datetime
    params: tuple = ()

    def __post_init__(self):
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"unknown event type {self.event_type!r}")

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    def __getitem__(self, key: str) -> Any:
        return self.params_dict[key]


def make_event(event_type: str, option_id: int, timestamp: datetime, **params: Any) -> OptionEvent:
    return OptionEvent(event_type, option_id, timestamp, tuple(sorted(params.items())))


# Listener type: called once per committed operation
EventListener = Callable[[OptionEvent], None]
