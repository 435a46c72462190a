# urlguard/services/classification_service.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .dataset_store import DatasetStore
from .matcher import MatchType, Verdict, match
from .url_normalizer import NormalizationError, NormalizationErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a check: either a verdict or the reason the URL was rejected"""
    url: str
    valid: bool
    verdict: Optional[Verdict] = None
    matched_pattern: Optional[str] = None
    match_type: Optional[MatchType] = None
    normalized_url: Optional[str] = None
    dataset_version: Optional[int] = None
    error_kind: Optional[NormalizationErrorKind] = None
    reason: Optional[str] = None

    @classmethod
    def invalid(cls, url: str, error: NormalizationError) -> "CheckResult":
        return cls(url=url, valid=False, error_kind=error.kind, reason=error.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "verdict": self.verdict.value if self.verdict else None,
            "matched_pattern": self.matched_pattern,
            "match_type": self.match_type.value if self.match_type else None,
            "normalized_url": self.normalized_url,
            "dataset_version": self.dataset_version,
        }


class ClassificationService:
    """
    Single entry point used by the HTTP layer: normalize, then match against
    one dataset snapshot. Holds no per-call state.
    """

    def __init__(self, store: DatasetStore):
        self.store = store

    def check(self, raw_url: str) -> CheckResult:
        try:
            url = self.store.normalizer.normalize(raw_url)
        except NormalizationError as e:
            logger.info(f"Rejected URL {raw_url!r}: {e.kind.value}")
            return CheckResult.invalid(raw_url, e)

        # One snapshot per check so the verdict comes from a single version
        snapshot = self.store.snapshot()
        result = match(snapshot, url)

        logger.debug(f"{url.url} -> {result.verdict.value} "
                     f"(version {snapshot.version}, pattern {result.matched_pattern})")

        return CheckResult(
            url=raw_url,
            valid=True,
            verdict=result.verdict,
            matched_pattern=result.matched_pattern,
            match_type=result.match_type,
            normalized_url=url.url,
            dataset_version=snapshot.version,
        )
