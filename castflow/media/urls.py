"""Classification and rewriting of attachment urls."""

import re
from dataclasses import dataclass
from urllib.parse import urlparse

CAST_URL_PATTERN = re.compile(r"^https?://(www\.)?warpcast\.com/[\w.-]+/0x[a-fA-F0-9]{8,40}$")
SHORT_CAST_URL_PATTERN = re.compile(r"/0x[a-fA-F0-9]{8}$")
FULL_CAST_HASH_PATTERN = re.compile(r"0x[a-fA-F0-9]{40}")
ZORA_URL_PATTERN = re.compile(
    r"zora\.co/collect/(?P<network>[a-z0-9_-]+):(?P<address>0x[a-fA-F0-9]{40})(?:/(?P<token_id>\d+))?"
)

IMAGEDELIVERY_HOST = "imagedelivery.net"
WRPCD_IMAGEDELIVERY_BASE = "https://wrpcd.net/cdn-cgi/imagedelivery"

VIDEO_EXTENSIONS = (".m3u8", ".mp4", ".mov", ".webm")


def _hostname(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def is_cast_url(url: str) -> bool:
    return bool(CAST_URL_PATTERN.match(url))


def is_short_cast_url(url: str) -> bool:
    """Whether a cast url carries only the 8 character short hash."""
    return bool(SHORT_CAST_URL_PATTERN.search(url))


def extract_cast_hash(url: str) -> str | None:
    match = FULL_CAST_HASH_PATTERN.search(url)
    return match.group(0).lower() if match else None


def is_zora_url(url: str) -> bool:
    host = _hostname(url)
    return host == "zora.co" or host.endswith(".zora.co")


def is_youtube_url(url: str) -> bool:
    host = _hostname(url)
    return host in ("youtube.com", "www.youtube.com", "m.youtube.com", "youtu.be")


def is_video_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    return path.endswith(VIDEO_EXTENSIONS)


def is_stream_url(url: str) -> bool:
    return urlparse(url).path.lower().endswith(".m3u8")


def is_allowed_domain(url: str, allowed_domains: list[str]) -> bool:
    """Whether the url's host is an allowed domain or a subdomain of one."""
    host = _hostname(url)
    if not host:
        return False
    return any(host == domain or host.endswith(f".{domain}") for domain in allowed_domains)


def to_wrpcd_url(url: str) -> str:
    """Serve Cloudflare image delivery urls through the Warpcast image proxy.

    The proxied variant ``rectcontain3`` replaces ``original`` so large
    uploads come back at a size the vision model accepts.
    """
    parsed = urlparse(url)
    if (parsed.hostname or "").lower() != IMAGEDELIVERY_HOST:
        return url
    path = parsed.path
    if path.endswith("/original"):
        path = path[: -len("/original")] + "/rectcontain3"
    return f"{WRPCD_IMAGEDELIVERY_BASE}{path}"


@dataclass(frozen=True)
class ZoraToken:
    network: str
    address: str
    token_id: str | None


def parse_zora_url(url: str) -> ZoraToken | None:
    match = ZORA_URL_PATTERN.search(url)
    if not match:
        return None
    return ZoraToken(
        network=match.group("network"),
        address=match.group("address").lower(),
        token_id=match.group("token_id"),
    )
