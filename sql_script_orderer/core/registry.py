"""Bucketed registry: identifiers grouped by ordering key, input order kept per bucket."""
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional

from sql_script_orderer.core.kinds import DEFAULT_KIND_TABLE, KindTable, OrderingKey
from sql_script_orderer.core.urn import Urn


class UrnBuckets:
    """Map of OrderingKey -> urns. Empty buckets are never stored."""

    def __init__(self, kind_table: KindTable = DEFAULT_KIND_TABLE) -> None:
        self.kind_table = kind_table
        self._buckets: Dict[OrderingKey, List[Urn]] = {}

    @classmethod
    def register(cls, urns: Iterable[Urn], kind_table: KindTable = DEFAULT_KIND_TABLE) -> "UrnBuckets":
        buckets = cls(kind_table)
        for urn in urns:
            buckets.add(urn)
        return buckets

    def add(self, urn: Urn) -> OrderingKey:
        key = self.kind_table.classify(urn)
        self._buckets.setdefault(key, []).append(urn)
        return key

    def get(self, kind: str) -> Optional[List[Urn]]:
        bucket = self._buckets.get(self.kind_table.key(kind))
        return list(bucket) if bucket else None

    def set(self, kind: str, urns: Iterable[Urn]) -> None:
        key = self.kind_table.key(kind)
        urns = list(urns)
        if urns:
            self._buckets[key] = urns
        else:
            self._buckets.pop(key, None)

    def extend(self, kind: str, urns: Iterable[Urn]) -> None:
        urns = list(urns)
        if urns:
            self._buckets.setdefault(self.kind_table.key(kind), []).extend(urns)

    def pop(self, kind: str) -> List[Urn]:
        return self._buckets.pop(self.kind_table.key(kind), [])

    def move(self, source: str, target: str) -> None:
        """Re-key a whole bucket, keeping its order."""
        urns = self.pop(source)
        self.extend(target, urns)

    def convert(self, kind: str, tag: str) -> None:
        """Replace each member of a bucket with its phase-tagged identifier."""
        bucket = self._buckets.get(self.kind_table.key(kind))
        if bucket:
            self._buckets[self.kind_table.key(kind)] = [urn.with_phase(tag) for urn in bucket]

    def tagged(self, kinds: Iterable[str], tag: str) -> List[Urn]:
        """Phase-tagged copies of the members of several buckets, in the given kind order."""
        result: List[Urn] = []
        for kind in kinds:
            result.extend(urn.with_phase(tag) for urn in (self.get(kind) or []))
        return result

    def __contains__(self, kind: str) -> bool:
        return self.kind_table.key(kind) in self._buckets

    def keys(self) -> List[OrderingKey]:
        return sorted(self._buckets)

    def items(self) -> Iterator:
        for key in self.keys():
            yield key, list(self._buckets[key])

    def count(self) -> int:
        return sum(len(b) for b in self._buckets.values())

    def as_dict(self) -> Dict[str, List[Urn]]:
        return {key.kind: list(urns) for key, urns in self.items()}
