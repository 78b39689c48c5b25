"""
Extraction records and the per-document field map.

A ``FieldMap`` is the unit merged across passes. Merging is monotone: a
record classified as a value is never replaced, and anything else is only
replaced by a record that ranks strictly higher.
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Classification(str, Enum):
    """Shape of an extracted value."""
    VALUE = "value"              # Short answer, accepted
    DESCRIPTION = "description"  # Definition or prose instead of an answer
    UNKNOWN = "unknown"          # Ambiguous, kept but re-queried


# Merge ranking: value > unknown > description > null
_RANK = {
    Classification.VALUE: 3,
    Classification.UNKNOWN: 2,
    Classification.DESCRIPTION: 1,
}


def rank_of(record: Optional["ExtractionRecord"]) -> int:
    """Merge rank of a record; null and empty records rank lowest."""
    if record is None or record.raw_value is None or record.classification is None:
        return 0
    return _RANK[record.classification]


@dataclass
class ExtractionRecord:
    """One field's extracted value together with where it came from."""
    field_name: str
    raw_value: Optional[str]
    origin_pass: int
    classification: Optional[Classification] = None

    # Diagnostics
    source: str = "engine"              # engine | rederived | rule:<name>
    matched_label: Optional[str] = None
    match_tier: Optional[str] = None
    rederived_from: Optional[str] = None

    @property
    def is_value(self) -> bool:
        return self.raw_value is not None and self.classification == Classification.VALUE

    @property
    def is_resolved(self) -> bool:
        return self.is_value

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data['classification'] = self.classification.value if self.classification else None
        return data


class FieldMap:
    """
    Ordered mapping of canonical field name to its current record.

    Each document owns its own map; maps are never shared between runs.
    """

    def __init__(self, entries: Iterable[Tuple[str, Optional[ExtractionRecord]]] = ()):
        self._entries: Dict[str, Optional[ExtractionRecord]] = {}
        for name, record in entries:
            self._entries[name] = record

    @classmethod
    def empty(cls, field_names: Iterable[str]) -> "FieldMap":
        return cls((name, None) for name in field_names)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __getitem__(self, name: str) -> Optional[ExtractionRecord]:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def items(self):
        return self._entries.items()

    @property
    def field_names(self) -> List[str]:
        return list(self._entries)

    def get(self, name: str) -> Optional[ExtractionRecord]:
        return self._entries.get(name)

    def set(self, name: str, record: Optional[ExtractionRecord]):
        if name not in self._entries:
            raise KeyError(f"Field '{name}' is not part of this field map")
        self._entries[name] = record

    def copy(self) -> "FieldMap":
        """Snapshot copy. Records are copied so later rewrites do not leak."""
        return FieldMap(
            (name, ExtractionRecord(**vars(record)) if record is not None else None)
            for name, record in self._entries.items()
        )

    def value_of(self, name: str) -> Optional[str]:
        record = self._entries.get(name)
        return record.raw_value if record is not None else None

    def values(self) -> Dict[str, Optional[str]]:
        return {name: self.value_of(name) for name in self._entries}

    def unresolved_fields(self) -> List[str]:
        """Fields that are null, unknown or description, in catalog order."""
        return [
            name for name, record in self._entries.items()
            if record is None or not record.is_value
        ]

    def resolved_fields(self) -> List[str]:
        return [
            name for name, record in self._entries.items()
            if record is not None and record.is_value
        ]

    def merge(self, partial: Dict[str, Optional[ExtractionRecord]]) -> List[str]:
        """
        Merge a pass's records into this map.

        A record is written only when the current entry is not a value and
        the incoming record ranks strictly higher.

        Returns:
            Names of the fields that changed
        """
        changed = []
        for name, incoming in partial.items():
            if name not in self._entries or incoming is None:
                continue
            current = self._entries[name]
            if current is not None and current.is_value:
                continue
            if rank_of(incoming) > rank_of(current):
                self._entries[name] = incoming
                changed.append(name)
                logger.debug(
                    f"Merged '{name}' from pass {incoming.origin_pass}: "
                    f"{incoming.classification.value if incoming.classification else None}"
                )
        return changed

    def to_dict(self) -> Dict[str, Optional[Dict[str, object]]]:
        return {
            name: record.to_dict() if record is not None else None
            for name, record in self._entries.items()
        }
