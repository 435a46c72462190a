# urlguard/services/matcher.py
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .dataset import Dataset, Entry, Label
from .url_normalizer import NormalizedURL


class Verdict(str, Enum):
    HARMFUL = "harmful"
    SAFE = "safe"
    UNKNOWN = "unknown"  # not in the dataset; distinct from an explicit safe label

    @classmethod
    def from_label(cls, label: Label) -> "Verdict":
        return cls(label.value)


class MatchType(str, Enum):
    EXACT = "exact"
    DOMAIN = "domain"


@dataclass(frozen=True)
class MatchResult:
    verdict: Verdict
    entry: Optional[Entry] = None
    match_type: Optional[MatchType] = None

    @property
    def matched_pattern(self) -> Optional[str]:
        return self.entry.pattern if self.entry else None


NO_MATCH = MatchResult(Verdict.UNKNOWN)


def match(dataset: Dataset, url: NormalizedURL) -> MatchResult:
    """
    Classify a normalized URL against one dataset snapshot.

    Precedence, first hit wins:
      1. exact URL entry for host[:port]path[?query]
      2. domain entry for the host or its nearest listed ancestor
      3. unknown
    An exact entry therefore overrides the domain it lives under, which lets
    operators allow-list a single page on a flagged domain.
    """
    entry = dataset.exact_index.get(url.key)
    if entry is not None:
        return MatchResult(Verdict.from_label(entry.label), entry, MatchType.EXACT)

    for domain in url.domain_ancestors():
        entry = dataset.domain_index.get(domain)
        if entry is not None:
            return MatchResult(Verdict.from_label(entry.label), entry, MatchType.DOMAIN)

    return NO_MATCH
