# urlguard/services/url_normalizer.py
import ipaddress
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Tuple
from urllib.parse import urlsplit

import idna

from ..errors import URLGuardError

logger = logging.getLogger(__name__)

SCHEME_RE = re.compile(r'^[a-zA-Z][a-zA-Z0-9+.\-]*://')
LABEL_RE = re.compile(r'^[a-z0-9_](?:[a-z0-9_\-]*[a-z0-9_])?$')

DEFAULT_PORTS = {'http': 80, 'https': 443}
# Stored exact patterns carry no scheme, so the key drops either web port
KEY_OMITTED_PORTS = frozenset(DEFAULT_PORTS.values())


class NormalizationErrorKind(str, Enum):
    EMPTY = "empty"
    INVALID_HOST = "invalid_host"


class NormalizationError(URLGuardError, ValueError):
    """Raised when a raw string cannot be turned into a comparable URL"""

    def __init__(self, kind: NormalizationErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass(frozen=True)
class NormalizedURL:
    """Canonical form of a URL used for dataset comparison."""
    original: str = field(compare=False)
    scheme: str
    host: str
    port: Optional[int]
    path: str
    query: str
    labels: Tuple[str, ...]  # reversed, TLD first

    @property
    def host_literal(self) -> str:
        return f"[{self.host}]" if ':' in self.host else self.host

    @property
    def netloc(self) -> str:
        if self.port is None:
            return self.host_literal
        return f"{self.host_literal}:{self.port}"

    @property
    def key(self) -> str:
        """Exact-match key: host[:port]path[?query], scheme-insensitive"""
        key = self.host_literal
        if self.port is not None and self.port not in KEY_OMITTED_PORTS:
            key += f":{self.port}"
        key += self.path
        if self.query:
            key += '?' + self.query
        return key

    @property
    def url(self) -> str:
        path = self.path + ('?' + self.query if self.query else '')
        return f"{self.scheme}://{self.netloc}{path}"

    def domain_ancestors(self) -> Iterator[str]:
        """Yield the host and its parent domains, most specific first."""
        for depth in range(len(self.labels), 0, -1):
            yield '.'.join(reversed(self.labels[:depth]))


class URLNormalizer:
    """
    URL canonicalization for dataset lookups.
    The same rules are applied to stored patterns at load time and to
    incoming URLs at query time, so keys compare directly.
    """

    def normalize(self, raw: str) -> NormalizedURL:
        if raw is None:
            raise NormalizationError(NormalizationErrorKind.EMPTY, "URL is empty")

        original = raw
        value = raw.strip()
        if not value:
            raise NormalizationError(NormalizationErrorKind.EMPTY, "URL is empty")

        # Assume http when no scheme is given
        if not SCHEME_RE.match(value):
            value = 'http://' + value

        parsed = urlsplit(value)
        scheme = parsed.scheme.lower()

        try:
            port = parsed.port
        except ValueError:
            raise NormalizationError(
                NormalizationErrorKind.INVALID_HOST,
                f"Malformed host {parsed.netloc!r} in {original.strip()!r}"
            )

        host = self._normalize_host(parsed.hostname or '', original)

        if port is not None and DEFAULT_PORTS.get(scheme) == port:
            port = None

        path = parsed.path
        if path == '/':
            path = ''

        return NormalizedURL(
            original=original,
            scheme=scheme,
            host=host,
            port=port,
            path=path,
            query=parsed.query,
            labels=self._labels(host),
        )

    def _normalize_host(self, hostname: str, original: str) -> str:
        host = hostname.lower().rstrip('.')
        if not host:
            raise NormalizationError(
                NormalizationErrorKind.INVALID_HOST,
                f"No host in {original.strip()!r}"
            )

        if self._is_ip(host):
            return host

        # Internationalized hosts are compared in their punycode form
        if not host.isascii():
            try:
                host = idna.encode(host, uts46=True).decode('ascii')
            except (idna.IDNAError, UnicodeError) as e:
                raise NormalizationError(
                    NormalizationErrorKind.INVALID_HOST,
                    f"Invalid international host {hostname!r}: {e}"
                )
            logger.debug(f"IDN host {hostname!r} encoded as {host!r}")

        for label in host.split('.'):
            if not label or len(label) > 63 or not LABEL_RE.match(label):
                raise NormalizationError(
                    NormalizationErrorKind.INVALID_HOST,
                    f"Invalid host {hostname!r}"
                )
        return host

    def _labels(self, host: str) -> Tuple[str, ...]:
        # An IP literal has no parent domains
        if self._is_ip(host):
            return (host,)
        return tuple(reversed(host.split('.')))

    @staticmethod
    def _is_ip(host: str) -> bool:
        try:
            ipaddress.ip_address(host)
            return True
        except ValueError:
            return False


_default_normalizer = URLNormalizer()


def normalize(raw: str) -> NormalizedURL:
    """Module-level shortcut using a shared normalizer"""
    return _default_normalizer.normalize(raw)
