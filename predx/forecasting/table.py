"""
Predx table: an ordered, immutable collection of prediction records.

Each record pairs a row key (the descriptive fields, e.g. location and
target) and a variant tag with either a validated prediction value or the
text of the error that prevented building one. Tables are never mutated;
filtering returns a new table.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .classes import PredxValue


def key_text(value: Any) -> str:
    """Key values are held as text, with None as the empty string."""
    return "" if value is None else str(value)


@dataclass(frozen=True)
class PredxRecord:
    """
    One row of a predx table.

    Attributes:
        key: Row key fields as (field, value) pairs, in column order. Values
            are stored as text so that CSV and JSON encodings agree.
        predx_class: Variant tag as given in the input
        value: Validated prediction value, or None on failure
        error: Failure description, or None on success
    """

    key: Tuple[Tuple[str, Any], ...]
    predx_class: str
    value: Optional[PredxValue] = None
    error: Optional[str] = None

    def __post_init__(self):
        if (self.value is None) == (self.error is None):
            raise ValueError("PredxRecord needs exactly one of value or error")
        pairs = self.key.items() if isinstance(self.key, dict) else self.key
        object.__setattr__(self, "key", tuple((str(name), key_text(value)) for name, value in pairs))

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def fields(self) -> Dict[str, Any]:
        """Row key as a dict."""
        return dict(self.key)

    def get(self, field: str, default: Any = None) -> Any:
        return self.fields.get(field, default)


class PredxTable:
    """Ordered sequence of PredxRecords."""

    def __init__(self, records: Iterable[PredxRecord] = ()):
        self._records: Tuple[PredxRecord, ...] = tuple(records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[PredxRecord]:
        return iter(self._records)

    def __getitem__(self, index: int) -> PredxRecord:
        return self._records[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PredxTable):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"PredxTable({len(self)} records, {len(self.errors())} errors)"

    @property
    def records(self) -> Tuple[PredxRecord, ...]:
        return self._records

    @property
    def key_fields(self) -> List[str]:
        """Union of key field names, in first-seen order."""
        names: List[str] = []
        for record in self._records:
            for name, _ in record.key:
                if name not in names:
                    names.append(name)
        return names

    def valid(self) -> "PredxTable":
        """Records holding a prediction value."""
        return self.filter(lambda r: r.ok)

    def errors(self) -> "PredxTable":
        """Records holding an error."""
        return self.filter(lambda r: not r.ok)

    def filter(self, predicate: Callable[[PredxRecord], bool]) -> "PredxTable":
        return PredxTable(r for r in self._records if predicate(r))

    def same_records(self, other: "PredxTable") -> bool:
        """Compare as unordered collections of records."""
        return Counter(self._records) == Counter(other._records)

    def summary(self) -> Dict[str, Any]:
        """
        Count records per tag and failures.

        Returns:
            Dictionary with total, valid and error counts plus by_class
        """
        by_class = Counter(r.predx_class for r in self._records)
        n_errors = sum(1 for r in self._records if not r.ok)
        return {
            "total": len(self._records),
            "valid": len(self._records) - n_errors,
            "errors": n_errors,
            "by_class": dict(by_class),
        }
