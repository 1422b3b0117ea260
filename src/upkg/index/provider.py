"""Record lookup: direct name index, capability providers and tie-breaking.

Ties between several candidates are broken by a fixed order so results are
reproducible across runs:

1. exact architecture match
2. architecture-independent (``all``, ``noarch``, ``any``)
3. higher-priority origin repository (earlier in the adapter's repo list)
4. first seen in feed order
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from upkg.index.depends import Dialect, provided_name
from upkg.models import ARCH_INDEPENDENT, PackageRecord

logger = logging.getLogger(__name__)


class RecordSource(ABC):
    """Where the resolver looks names and capabilities up."""

    @abstractmethod
    def lookup(self, name: str) -> List[PackageRecord]:
        """Records whose package name is ``name``, in feed order."""

    @abstractmethod
    def providers(self, capability: str) -> List[PackageRecord]:
        """Records declaring ``capability`` in their provides, in feed order."""

    def best(self, candidates: Sequence[PackageRecord], arch: Optional[str] = None) -> Optional[PackageRecord]:
        """Pick one candidate by the fixed preference order."""
        return pick_preferred(candidates, arch, self.origin_priority)

    @property
    def origin_priority(self) -> Sequence[str]:
        return ()


def _arch_rank(record: PackageRecord, arch: Optional[str]) -> int:
    if arch and record.arch == arch:
        return 0
    if record.arch in ARCH_INDEPENDENT or not record.arch:
        return 1
    return 2


def pick_preferred(
    candidates: Sequence[PackageRecord],
    arch: Optional[str],
    origin_priority: Sequence[str] = (),
) -> Optional[PackageRecord]:
    """Apply exact arch > noarch > origin priority > first-seen.

    ``candidates`` must be in first-seen order; ``sorted`` is stable so the
    original position settles remaining ties.
    """
    if not candidates:
        return None
    order = {origin: i for i, origin in enumerate(origin_priority)}
    worst = len(order)

    def key(item):
        pos, record = item
        return (_arch_rank(record, arch), order.get(record.origin, worst), pos)

    return sorted(enumerate(candidates), key=key)[0][1]


class ProviderIndex(RecordSource):
    """Immutable snapshot built from one parser run.

    Holds a name index and a reverse capability index. Both keep records in
    the order they were added, which is the order of the configured
    repositories and then of each feed.
    """

    def __init__(
        self,
        records: Iterable[PackageRecord],
        dialect: Dialect,
        origin_priority: Sequence[str] = (),
    ):
        self._dialect = dialect
        self._origin_priority = tuple(origin_priority)
        self._records: List[PackageRecord] = []
        self._by_name: Dict[str, List[PackageRecord]] = {}
        self._by_capability: Dict[str, List[PackageRecord]] = {}
        for record in records:
            self._add(record)

    def _add(self, record: PackageRecord) -> None:
        self._records.append(record)
        self._by_name.setdefault(record.name, []).append(record)
        for token in record.provides:
            cap = provided_name(token, self._dialect)
            if not cap or cap == record.name:
                continue
            bucket = self._by_capability.setdefault(cap, [])
            if record not in bucket:
                bucket.append(record)

    @property
    def origin_priority(self) -> Sequence[str]:
        return self._origin_priority

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    def lookup(self, name: str) -> List[PackageRecord]:
        return list(self._by_name.get(name, ()))

    def providers(self, capability: str) -> List[PackageRecord]:
        return list(self._by_capability.get(capability, ()))

    def search(self, query: str, limit: int = 100) -> List[PackageRecord]:
        """Case-insensitive substring match on name, then description."""
        q = query.lower()
        by_name = [r for r in self._records if q in r.name.lower()]
        by_desc = [r for r in self._records if q not in r.name.lower() and q in r.description.lower()]
        return (by_name + by_desc)[:limit]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[PackageRecord]:
        return iter(self._records)

    def stats(self):
        return {
            "records": len(self._records),
            "names": len(self._by_name),
            "capabilities": len(self._by_capability),
        }


class LazyRecordSource(RecordSource):
    """Record source for API-backed ecosystems without a bulk index.

    ``fetch(name)`` returns the records for one name (usually zero or one)
    and is called at most once per name; results, including misses, are
    memoised for the lifetime of the source.
    """

    def __init__(
        self,
        fetch: Callable[[str], List[PackageRecord]],
        provider_lookup: Optional[Callable[[str], List[PackageRecord]]] = None,
    ):
        self._fetch = fetch
        self._provider_lookup = provider_lookup
        self._memo: Dict[str, List[PackageRecord]] = {}
        self._lock = threading.Lock()

    def lookup(self, name: str) -> List[PackageRecord]:
        with self._lock:
            if name in self._memo:
                return list(self._memo[name])
        records = list(self._fetch(name))
        with self._lock:
            self._memo[name] = records
        return list(records)

    def providers(self, capability: str) -> List[PackageRecord]:
        if self._provider_lookup is None:
            return []
        return list(self._provider_lookup(capability))

    def seed(self, record: PackageRecord, name: Optional[str] = None) -> None:
        """Register a record fetched elsewhere (e.g. by a pinned-version query).

        ``name`` adds the record under the name it was requested by as well,
        for ecosystems whose ids are case-insensitive.
        """
        with self._lock:
            for key in {record.name, name or record.name}:
                bucket = self._memo.setdefault(key, [])
                if record not in bucket:
                    bucket.insert(0, record)
