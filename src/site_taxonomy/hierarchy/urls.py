from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from urllib.parse import SplitResult, parse_qsl, urlsplit

from ..errors import InvalidURLError

_DEFAULT_PORTS = {"http": 80, "https": 443}
_SEPARATORS_RE = re.compile(r"[-_]+")


@dataclass(frozen=True, slots=True)
class ParsedUrl:
    """URL split into the parts the hierarchy and similarity code compare."""

    scheme: str
    domain: str
    segments: tuple[str, ...]
    params: dict[str, str] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return "/" + "/".join(self.segments)


def _split(url: str) -> SplitResult:
    raw = (url or "").strip()
    try:
        parts = urlsplit(raw)
        _ = parts.port  # raises on a malformed port
    except ValueError as e:
        raise InvalidURLError(url, str(e)) from e
    if not parts.scheme or not parts.hostname:
        raise InvalidURLError(url, "missing scheme or host")
    return parts


def _netloc(parts: SplitResult) -> str:
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    scheme = parts.scheme.lower()
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        return f"{host}:{port}"
    return host


def normalize_url(url: str) -> str:
    """Canonical form used as the dedup key.

    Lower-cased, without query or fragment, and without a trailing slash
    except for the bare domain root.
    """
    parts = _split(url)
    path = parts.path.rstrip("/") or "/"
    return f"{parts.scheme}://{_netloc(parts)}{path}".lower()


def parse_url(url: str) -> ParsedUrl | None:
    """Best-effort parse; returns None instead of raising."""
    try:
        parts = _split(url)
    except InvalidURLError:
        return None
    segments = tuple(seg.lower() for seg in parts.path.split("/") if seg)
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    return ParsedUrl(
        scheme=parts.scheme.lower(),
        domain=_netloc(parts).lower(),
        segments=segments,
        params=params,
    )


def domain_root(parsed: ParsedUrl) -> str:
    return f"{parsed.scheme}://{parsed.domain}/"


def parent_candidates(parsed: ParsedUrl) -> list[str]:
    """Normalized prefixes of `parsed`, longest first.

    Excludes the URL itself and the domain root.
    """
    base = f"{parsed.scheme}://{parsed.domain}/"
    return [
        base + "/".join(parsed.segments[:i])
        for i in range(len(parsed.segments) - 1, 0, -1)
    ]


def node_id_for(normalized_url: str) -> str:
    # stable across runs and processes
    digest = hashlib.sha256(normalized_url.encode("utf-8")).hexdigest()
    return f"node_{digest[:12]}"


def slug_for(segments: tuple[str, ...] | list[str]) -> str:
    return segments[-1] if segments else "home"


def title_from_slug(slug: str) -> str:
    words = _SEPARATORS_RE.sub(" ", slug).split()
    return " ".join(w[:1].upper() + w[1:] for w in words)
