"""
Member Counters

Counts per (column, group key) pair. Used for the number of members of a
group, the number of treated outliers and the number of values whose group
is unknown to the model.
"""

from typing import Dict, Iterable, List, Optional

from .grouping import GroupKey


class MemberCounter:
    """
    Map (column, group key) -> count.

    Counts are only ever incremented. Group keys are remembered in the
    order they were first seen so summaries are deterministic.
    """

    def __init__(self):
        self._counts: Dict[str, Dict[GroupKey, int]] = {}
        self._keys: Dict[GroupKey, None] = {}

    def increment(self, column: str, key: GroupKey, amount: int = 1) -> None:
        """
        Increment the count of a (column, key) pair.

        Args:
            column: Column name
            key: Group key
            amount: Non-negative increment
        """
        if amount < 0:
            raise ValueError(f"Counters cannot be decremented (amount={amount})")
        key = GroupKey(key)
        column_counts = self._counts.setdefault(column, {})
        column_counts[key] = column_counts.get(key, 0) + amount
        self._keys.setdefault(key, None)

    def register_key(self, key: GroupKey) -> None:
        """Record a group key in the key order without counting it."""
        self._keys.setdefault(GroupKey(key), None)

    def get(self, column: str, key: GroupKey) -> int:
        """Count of a (column, key) pair, 0 if never incremented."""
        return self._counts.get(column, {}).get(GroupKey(key), 0)

    def group_keys(self, column: Optional[str] = None) -> List[GroupKey]:
        """
        Observed group keys in first-seen order.

        Args:
            column: Restrict to keys observed for this column
        """
        if column is None:
            return list(self._keys)
        return list(self._counts.get(column, {}))

    def columns(self) -> List[str]:
        return list(self._counts)

    def items(self):
        """Iterate ((column, key), count) pairs."""
        for column, counts in self._counts.items():
            for key, count in counts.items():
                yield (column, key), count

    def total(self, column: Optional[str] = None) -> int:
        if column is not None:
            return sum(self._counts.get(column, {}).values())
        return sum(sum(c.values()) for c in self._counts.values())

    def is_empty(self) -> bool:
        return not self._keys

    def copy(self) -> 'MemberCounter':
        result = MemberCounter()
        for (column, key), count in self.items():
            result.increment(column, key, count)
        result._keys = dict(self._keys)
        return result

    @classmethod
    def merge(cls, counters: Iterable['MemberCounter']) -> 'MemberCounter':
        """
        Elementwise sum of counters.

        The inputs are left untouched. Key order follows the order of the
        counters, then first-seen order within each.
        """
        result = cls()
        for counter in counters:
            for key in counter._keys:
                result._keys.setdefault(key, None)
            for (column, key), count in counter.items():
                result.increment(column, key, count)
        return result

    def to_records(self) -> List[dict]:
        return [
            {'column': column, 'key': key, 'count': count}
            for (column, key), count in self.items()
        ]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MemberCounter):
            return NotImplemented
        return ({k: v for k, v in self.items() if v}
                == {k: v for k, v in other.items() if v})

    def __repr__(self) -> str:
        return f"MemberCounter(columns={self.columns()}, total={self.total()})"
