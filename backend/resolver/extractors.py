"""
Media-URL extractors for untrusted embed pages.

Every extractor is a pure function of (html, base_url). The resolver tries them
in DEFAULT_EXTRACTORS order and the first one yielding a valid absolute media URL
wins. Iframe discovery is separate: it returns the nested pages to visit next.
"""
from __future__ import annotations

import base64
import binascii
import html as html_lib
import re
from typing import Iterable, Optional, Protocol
from urllib.parse import urljoin, urlparse

from shared.models.enums import StreamKind

HLS_EXTENSIONS = (".m3u8", ".m3u")
MP4_EXTENSIONS = (".mp4",)

AD_HOST_MARKERS = (
    "doubleclick", "googlesyndication", "google-analytics", "googletagmanager",
    "googleads", "facebook", "adservice", "adsterra", "popads", "propellerads",
    "analytics", "histats",
)
# Matched as whole host labels so that uploads./downloads. hosts stay usable.
AD_HOST_LABELS = frozenset({"ads", "adserver"})

_MIN_URL_LEN = 10
_NOT_IN_URL = re.compile(r"""[\s"'<>{}]""")


# ── URL helpers ─────────────────────────────────────────────────────────

def normalize_url(raw: str, base_url: str) -> Optional[str]:
    """Make a scraped URL absolute against the page it was found on; None if not http(s)."""
    if not raw:
        return None
    candidate = html_lib.unescape(raw.strip()).replace("\\/", "/").replace("\\", "")
    if not candidate or candidate.startswith(("javascript:", "data:", "about:", "#")):
        return None
    if candidate.startswith("//"):
        scheme = urlparse(base_url).scheme or "https"
        candidate = f"{scheme}:{candidate}"
    absolute = urljoin(base_url, candidate)
    parsed = urlparse(absolute)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return absolute


def is_ad_host(url: str) -> bool:
    host = urlparse(url).netloc.lower()
    if any(label in AD_HOST_LABELS for label in host.split(".")):
        return True
    return any(marker in host for marker in AD_HOST_MARKERS)


def is_direct_media_url(url: str) -> bool:
    """True when the URL path itself ends in a known playlist or video extension."""
    path = urlparse(url).path.lower()
    return path.endswith(HLS_EXTENSIONS + MP4_EXTENSIONS)


def classify_kind(url: Optional[str]) -> StreamKind:
    if not url:
        return StreamKind.UNRESOLVED
    lowered = url.lower()
    if ".m3u8" in lowered or urlparse(lowered).path.endswith(".m3u"):
        return StreamKind.HLS
    if ".mp4" in lowered:
        return StreamKind.MP4
    return StreamKind.UNRESOLVED


def accept_candidate(raw: str, base_url: str) -> Optional[str]:
    """Normalize and keep a candidate only if it is a non-ad media URL."""
    if not raw or len(raw) < _MIN_URL_LEN or _NOT_IN_URL.search(raw):
        return None
    url = normalize_url(raw, base_url)
    if url is None or is_ad_host(url):
        return None
    if classify_kind(url) == StreamKind.UNRESOLVED:
        return None
    return url


def _first(candidates: Iterable[str], base_url: str) -> Optional[str]:
    for raw in candidates:
        url = accept_candidate(raw, base_url)
        if url is not None:
            return url
    return None


# ── Extractor capability ────────────────────────────────────────────────

class Extractor(Protocol):
    name: str

    def try_extract(self, html: str, base_url: str) -> Optional[str]:
        ...


class PlaylistUrlExtractor:
    """Literal playlist URLs anywhere in the page, absolute or quoted-relative."""

    name = "playlist_url"

    _ABSOLUTE = re.compile(r"""((?:https?:)?(?:\\?/){2}[^"'\s<>()]+?\.m3u8?(?:\?[^"'\s<>()]*)?)(?=["'\s<>()]|$)""", re.I)
    _QUOTED = re.compile(r"""["']([^"'\s<>]+?\.m3u8(?:\?[^"'\s<>]*)?)["']""", re.I)

    def try_extract(self, html: str, base_url: str) -> Optional[str]:
        found = _first((m.group(1) for m in self._ABSOLUTE.finditer(html)), base_url)
        if found:
            return found
        return _first((m.group(1) for m in self._QUOTED.finditer(html)), base_url)


class PlayerConfigExtractor:
    """
    Named player configuration keys: source=, src:, file:, playlist:, hls:,
    streamUrl:, video_url:, plus <source src=...> tags. HLS values beat MP4.
    """

    name = "player_config"

    _KEYS = r"(?:source|src|file|playlist|hls|stream_?url|video_?url|videoSrc)"
    _HLS = re.compile(_KEYS + r"""\s*[:=]\s*["']([^"']*\.m3u8[^"']*)["']""", re.I)
    _MP4 = re.compile(_KEYS + r"""\s*[:=]\s*["']([^"']*\.mp4[^"']*)["']""", re.I)
    _SOURCE_TAG = re.compile(r"""<source[^>]+src\s*=\s*["']([^"']+)["']""", re.I)

    def try_extract(self, html: str, base_url: str) -> Optional[str]:
        tag_values = [m.group(1) for m in self._SOURCE_TAG.finditer(html)]
        hls = [m.group(1) for m in self._HLS.finditer(html)]
        hls += [v for v in tag_values if classify_kind(v) == StreamKind.HLS]
        found = _first(hls, base_url)
        if found:
            return found
        mp4 = [m.group(1) for m in self._MP4.finditer(html)]
        mp4 += [v for v in tag_values if classify_kind(v) == StreamKind.MP4]
        return _first(mp4, base_url)


def _b64decode(payload: str) -> Optional[str]:
    text = payload.strip()
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.b64decode(padded, validate=True).decode("utf-8", errors="ignore")
    except (binascii.Error, ValueError):
        return None


class Base64PayloadExtractor:
    """
    Base64 blobs (data:...mpegurl;base64, atob('...'), "base64": "..."), decoded
    and re-checked: either the decoded text is itself a media URL or it contains one.
    """

    name = "base64_payload"

    _PATTERNS = (
        re.compile(r"data:application/(?:vnd\.apple\.mpegurl|x-mpegurl);base64,([A-Za-z0-9+/=]+)", re.I),
        re.compile(r"""atob\(\s*["']([A-Za-z0-9+/=]{16,})["']\s*\)""", re.I),
        re.compile(r"""base64["':\s]+["']([A-Za-z0-9+/=]{16,})["']""", re.I),
    )

    def __init__(self, inner: Iterable[Extractor] | None = None) -> None:
        self._inner = list(inner) if inner is not None else [PlaylistUrlExtractor(), PlayerConfigExtractor()]

    def try_extract(self, html: str, base_url: str) -> Optional[str]:
        for pattern in self._PATTERNS:
            for match in pattern.finditer(html):
                decoded = _b64decode(match.group(1))
                if not decoded:
                    continue
                direct = accept_candidate(decoded.strip(), base_url)
                if direct:
                    return direct
                for extractor in self._inner:
                    found = extractor.try_extract(decoded, base_url)
                    if found:
                        return found
        return None


class IframeExtractor:
    """Nested <iframe src=...> targets, normalized, de-duplicated, ad hosts removed."""

    name = "iframe"

    _IFRAME = re.compile(r"""<iframe[^>]+?src\s*=\s*["']([^"']+)["']""", re.I)

    def __init__(self, max_per_page: int = 5) -> None:
        self.max_per_page = max_per_page

    def extract_all(self, html: str, base_url: str) -> list[str]:
        out: list[str] = []
        for match in self._IFRAME.finditer(html):
            url = normalize_url(match.group(1), base_url)
            if url is None or is_ad_host(url) or url in out:
                continue
            out.append(url)
            if len(out) >= self.max_per_page:
                break
        return out


DEFAULT_EXTRACTORS: tuple[Extractor, ...] = (
    PlaylistUrlExtractor(),
    PlayerConfigExtractor(),
    Base64PayloadExtractor(),
)


def extract_media_url(
    html: str,
    base_url: str,
    extractors: Iterable[Extractor] = DEFAULT_EXTRACTORS,
) -> tuple[Optional[str], Optional[str]]:
    """Run extractors in order. Returns (url, extractor name) for the first hit."""
    for extractor in extractors:
        url = extractor.try_extract(html, base_url)
        if url:
            return url, extractor.name
    return None, None
