"""
registry.py - Option/Order Registry

An arena of OptionRecord snapshots keyed by integer id. Ids start at 1 and
strictly increase. Records are replaced, never deleted, once an operation
commits; only a creation that is rolled back removes its record again.

The registry also holds the per-record in-flight locks: an operation holds
the lock on its record for its whole duration, so a nested call on the same
record is rejected while other records stay usable.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set

from .core import OptionNotFound, StateGuardViolation
from .option import OptionRecord, OptionState, OrderType


class OptionRegistry:
    """Arena of option records with monotonic id assignment."""

    def __init__(self):
        self._records: Dict[int, OptionRecord] = {}
        self._next_id: int = 1
        self._in_flight: Set[int] = set()

    @property
    def next_id(self) -> int:
        """Id the next created record will receive."""
        return self._next_id

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, option_id: int) -> bool:
        return option_id in self._records

    def get(self, option_id: int) -> OptionRecord:
        """
        Raises:
            OptionNotFound: If no record has this id
        """
        try:
            return self._records[option_id]
        except KeyError:
            raise OptionNotFound(f"option {option_id} does not exist") from None

    def add(self, record: OptionRecord) -> None:
        """Register a newly created record under the next id."""
        if record.option_id != self._next_id:
            raise ValueError(
                f"record id {record.option_id} does not match next id {self._next_id}"
            )
        self._records[record.option_id] = record
        self._next_id += 1

    def put(self, record: OptionRecord) -> None:
        """Replace the snapshot of an existing record."""
        if record.option_id not in self._records:
            raise OptionNotFound(f"option {record.option_id} does not exist")
        self._records[record.option_id] = record

    def discard(self, option_id: int) -> None:
        """
        Undo add() for a creation that was rolled back.

        The id is handed out again only if no later record was created meanwhile.
        """
        self._records.pop(option_id, None)
        if option_id == self._next_id - 1:
            self._next_id -= 1

    def records(
        self,
        state: Optional[OptionState] = None,
        order_type: Optional[OrderType] = None,
    ) -> List[OptionRecord]:
        """Records in id order, optionally filtered by state and order type."""
        return [
            r for _, r in sorted(self._records.items())
            if (state is None or r.state is state)
            and (order_type is None or r.order_type is order_type)
        ]

    def is_locked(self, option_id: int) -> bool:
        """True while an operation on option_id is in flight."""
        return option_id in self._in_flight

    @contextmanager
    def lock(self, option_id: int) -> Iterator[None]:
        """
        Hold the in-flight lock on option_id for the duration of the block.

        Raises:
            StateGuardViolation: If an operation on option_id is already in flight
        """
        if self.is_locked(option_id):
            raise StateGuardViolation(f"option {option_id} has an operation in flight")
        self._in_flight.add(option_id)
        try:
            yield
        finally:
            self._in_flight.discard(option_id)
