# test_classification.py
"""
Matching precedence and the check() entry point, including behaviour while
the dataset is being replaced concurrently.
"""

import concurrent.futures
import threading

import pytest

from urlguard.services.classification_service import ClassificationService
from urlguard.services.dataset import Dataset, Entry, Label, Scope
from urlguard.services.dataset_store import DatasetStore
from urlguard.services.matcher import MatchType, Verdict, match
from urlguard.services.url_normalizer import NormalizationErrorKind, normalize


def build_dataset(*entries):
    return Dataset(Entry(pattern, scope, label) for pattern, scope, label in entries)


class TestMatcher:

    @pytest.fixture
    def dataset(self):
        return build_dataset(
            ("evil.com", Scope.DOMAIN, Label.HARMFUL),
            ("evil.com/safe-page", Scope.EXACT, Label.SAFE),
            ("good.evil.com", Scope.DOMAIN, Label.SAFE),
            ("abc.in/login", Scope.EXACT, Label.HARMFUL),
        )

    def test_exact_beats_domain(self, dataset):
        result = match(dataset, normalize("http://evil.com/safe-page"))

        assert result.verdict == Verdict.SAFE
        assert result.match_type == MatchType.EXACT
        assert result.matched_pattern == "evil.com/safe-page"

    def test_domain_match(self, dataset):
        result = match(dataset, normalize("http://evil.com/other"))

        assert result.verdict == Verdict.HARMFUL
        assert result.match_type == MatchType.DOMAIN
        assert result.matched_pattern == "evil.com"

    def test_ancestor_walk(self, dataset):
        result = match(dataset, normalize("http://a.b.evil.com"))

        assert result.verdict == Verdict.HARMFUL
        assert result.matched_pattern == "evil.com"

    def test_nearest_ancestor_wins(self, dataset):
        result = match(dataset, normalize("https://x.good.evil.com/page"))

        assert result.verdict == Verdict.SAFE
        assert result.matched_pattern == "good.evil.com"

    def test_suffix_is_not_a_subdomain(self, dataset):
        assert match(dataset, normalize("http://notevil.com")).verdict == Verdict.UNKNOWN

    def test_exact_match_is_scheme_and_case_insensitive_on_host(self, dataset):
        assert match(dataset, normalize("HTTPS://ABC.in/login")).verdict == Verdict.HARMFUL
        # Path case matters
        assert match(dataset, normalize("http://abc.in/LOGIN")).verdict == Verdict.UNKNOWN

    def test_exact_match_requires_same_query(self, dataset):
        assert match(dataset, normalize("http://abc.in/login?next=/")).verdict == Verdict.UNKNOWN

    def test_unknown_is_not_safe(self, dataset):
        result = match(dataset, normalize("http://example.org"))

        assert result.verdict == Verdict.UNKNOWN
        assert result.verdict != Verdict.SAFE
        assert result.entry is None
        assert result.match_type is None


class TestClassificationService:

    @pytest.fixture
    def store(self):
        store = DatasetStore()
        store.replace(build_dataset(
            ("evil.com", Scope.DOMAIN, Label.HARMFUL),
            ("evil.com/safe-page", Scope.EXACT, Label.SAFE),
        ))
        return store

    @pytest.fixture
    def service(self, store):
        return ClassificationService(store)

    def test_precedence(self, service):
        assert service.check("http://evil.com/safe-page").verdict == Verdict.SAFE
        assert service.check("http://evil.com/other").verdict == Verdict.HARMFUL

    def test_result_fields(self, service):
        result = service.check("  HTTP://Sub.Evil.com/Login  ")

        assert result.valid
        assert result.url == "  HTTP://Sub.Evil.com/Login  "
        assert result.normalized_url == "http://sub.evil.com/Login"
        assert result.matched_pattern == "evil.com"
        assert result.match_type == MatchType.DOMAIN
        assert result.dataset_version == 1
        assert result.to_dict() == {
            "url": "  HTTP://Sub.Evil.com/Login  ",
            "verdict": "harmful",
            "matched_pattern": "evil.com",
            "match_type": "domain",
            "normalized_url": "http://sub.evil.com/Login",
            "dataset_version": 1,
        }

    @pytest.mark.parametrize("raw", [
        "http://evil.com", "example.org", "https://a.b.c.d/e?f=g", "10.0.0.1",
    ])
    def test_empty_dataset_gives_unknown(self, raw):
        service = ClassificationService(DatasetStore())

        result = service.check(raw)

        assert result.valid
        assert result.verdict == Verdict.UNKNOWN
        assert result.matched_pattern is None

    def test_blank_input_is_invalid(self, service):
        result = service.check("   ")

        assert not result.valid
        assert result.verdict is None
        assert result.error_kind == NormalizationErrorKind.EMPTY
        assert result.reason

    def test_bad_host_is_invalid(self, service):
        result = service.check("https://")

        assert not result.valid
        assert result.error_kind == NormalizationErrorKind.INVALID_HOST

    # =========================================================================
    # CONCURRENCY
    # =========================================================================

    def test_concurrent_replace_never_mixes_versions(self):
        """
        Odd versions flag the whole domain and allow the page; even versions do
        the opposite. A verdict is only consistent if it agrees with the version
        it reports.
        """
        flagged = build_dataset(
            ("evil.com", Scope.DOMAIN, Label.HARMFUL),
            ("evil.com/page", Scope.EXACT, Label.SAFE),
        )
        cleared = build_dataset(
            ("evil.com", Scope.DOMAIN, Label.SAFE),
            ("evil.com/page", Scope.EXACT, Label.HARMFUL),
        )
        store = DatasetStore()
        service = ClassificationService(store)
        writes = 400
        done = threading.Event()

        def writer():
            for i in range(1, writes + 1):
                store.replace(flagged if i % 2 else cleared)
            done.set()

        def reader():
            mismatches = []
            while not done.is_set():
                for url in ("http://evil.com/page", "http://x.evil.com/other"):
                    result = service.check(url)
                    version = result.dataset_version
                    if version == 0:
                        expected = Verdict.UNKNOWN
                    else:
                        page_flagged = url.endswith("/page")
                        odd = version % 2 == 1
                        harmful = odd != page_flagged
                        expected = Verdict.HARMFUL if harmful else Verdict.SAFE
                    if result.verdict != expected:
                        mismatches.append((url, version, result.verdict))
            return mismatches

        with concurrent.futures.ThreadPoolExecutor(max_workers=5) as executor:
            readers = [executor.submit(reader) for _ in range(4)]
            executor.submit(writer).result()
            results = [f.result() for f in readers]

        assert all(not mismatches for mismatches in results)
        assert store.snapshot().version == writes
