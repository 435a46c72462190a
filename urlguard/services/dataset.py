# urlguard/services/dataset.py
import copy
import logging
import time
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from ..errors import URLGuardError
from .url_normalizer import NormalizationError, URLNormalizer

logger = logging.getLogger(__name__)

LEGACY_LIST_KEY = "flagged_sites"


class Scope(str, Enum):
    EXACT = "exact"
    DOMAIN = "domain"


class Label(str, Enum):
    HARMFUL = "harmful"
    SAFE = "safe"


class InvalidEntryError(URLGuardError, ValueError):
    """Raised when a record cannot become a dataset entry"""


class EntryRecord(BaseModel):
    """On-disk / over-the-wire shape of one classified pattern"""
    pattern: str
    scope: Scope
    label: Label
    source: Optional[str] = None


@dataclass(frozen=True)
class Entry:
    pattern: str
    scope: Scope
    label: Label
    source: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Scope]:
        return (self.pattern, self.scope)

    def to_record(self) -> Dict[str, Any]:
        record = {
            "pattern": self.pattern,
            "scope": self.scope.value,
            "label": self.label.value,
        }
        if self.source is not None:
            record["source"] = self.source
        return record


@dataclass(frozen=True)
class RejectedRecord:
    index: int
    record: Any
    reason: str


def normalize_pattern(pattern: str, scope: Scope, normalizer: URLNormalizer) -> str:
    """
    Bring a stored pattern into the form the matcher looks up.
    Exact patterns become host[:port]path[?query]; domain patterns become the bare host.
    """
    try:
        url = normalizer.normalize(pattern)
    except NormalizationError as e:
        raise InvalidEntryError(f"{e.kind.value}: {e.message}")

    if scope == Scope.EXACT:
        return url.key

    if url.path or url.query or url.port is not None:
        raise InvalidEntryError(
            f"domain pattern {pattern!r} must be a bare host without path, query or port"
        )
    return url.host


def make_entry(record: EntryRecord, normalizer: URLNormalizer) -> Entry:
    return Entry(
        pattern=normalize_pattern(record.pattern, record.scope, normalizer),
        scope=record.scope,
        label=record.label,
        source=record.source,
    )


def parse_records(data: Any, normalizer: URLNormalizer) -> Tuple[List[Entry], List[RejectedRecord]]:
    """
    Validate decoded JSON into entries.
    Invalid records are quarantined rather than failing the whole load.
    Raises TypeError when the top-level shape is not recognised.
    """
    if isinstance(data, dict) and LEGACY_LIST_KEY in data:
        raw_records = _legacy_records(data[LEGACY_LIST_KEY])
    elif isinstance(data, list):
        raw_records = data
    else:
        raise TypeError(
            f"expected a JSON array of entries or an object with '{LEGACY_LIST_KEY}'"
        )

    entries: List[Entry] = []
    rejected: List[RejectedRecord] = []

    for index, raw in enumerate(raw_records):
        try:
            record = EntryRecord.model_validate(raw)
            entries.append(make_entry(record, normalizer))
        except ValidationError as e:
            reason = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}"
                for err in e.errors()
            )
            rejected.append(RejectedRecord(index, raw, reason))
        except InvalidEntryError as e:
            rejected.append(RejectedRecord(index, raw, str(e)))

    for item in rejected:
        logger.warning(f"Rejected dataset record #{item.index}: {item.reason}")

    return entries, rejected


def _legacy_records(sites: Any) -> List[Any]:
    # The old file format was a bare list of flagged URLs
    if not isinstance(sites, list):
        raise TypeError(f"'{LEGACY_LIST_KEY}' must be a list")
    return [
        {"pattern": site, "scope": Scope.EXACT.value, "label": Label.HARMFUL.value,
         "source": LEGACY_LIST_KEY}
        if isinstance(site, str) else site
        for site in sites
    ]


class Dataset:
    """
    Immutable collection of classified entries with lookup indexes.
    A new Dataset is built for every change; existing instances are never modified,
    so any reader holding one sees a consistent view.
    """

    def __init__(self,
                 entries: Iterable[Entry] = (),
                 rejected: Iterable[RejectedRecord] = (),
                 version: int = 0,
                 loaded_at: Optional[float] = None,
                 source_path: Optional[str] = None,
                 duplicates: int = 0):
        ordered: Dict[Tuple[str, Scope], Entry] = {}
        found = 0

        # Last write wins on (pattern, scope); position of the first occurrence is kept
        for entry in entries:
            if entry.key in ordered:
                found += 1
                previous = ordered[entry.key]
                logger.warning(
                    f"Duplicate {entry.scope.value} pattern {entry.pattern!r}: "
                    f"{previous.label.value} replaced by {entry.label.value}"
                )
            ordered[entry.key] = entry

        exact: Dict[str, Entry] = {}
        domains: Dict[str, Entry] = {}
        for (pattern, scope), entry in ordered.items():
            if scope == Scope.EXACT:
                exact[pattern] = entry
            else:
                domains[pattern] = entry

        self._entries = MappingProxyType(ordered)
        self.exact_index = MappingProxyType(exact)
        self.domain_index = MappingProxyType(domains)
        self.rejected: Tuple[RejectedRecord, ...] = tuple(rejected)
        # Includes duplicates already resolved in an earlier version
        self.duplicates = duplicates + found
        self.version = version
        self.loaded_at = loaded_at if loaded_at is not None else time.time()
        self.source_path = source_path

    @classmethod
    def empty(cls) -> "Dataset":
        return cls()

    def with_version(self, version: int) -> "Dataset":
        """Shallow copy sharing the (read-only) indexes, stamped with a new version"""
        clone = copy.copy(self)
        clone.version = version
        return clone

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries.values())

    def __contains__(self, key: Tuple[str, Scope]) -> bool:
        return key in self._entries

    def get(self, pattern: str, scope: Scope) -> Optional[Entry]:
        return self._entries.get((pattern, scope))

    def entry_set(self) -> frozenset:
        return frozenset(self._entries.values())

    def to_records(self) -> List[Dict[str, Any]]:
        return [entry.to_record() for entry in self]

    def __repr__(self) -> str:
        return (f"Dataset(version={self.version}, entries={len(self)}, "
                f"exact={len(self.exact_index)}, domain={len(self.domain_index)})")
