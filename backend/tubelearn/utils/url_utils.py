"""
Video URL Utilities

URL validation, normalization and fingerprinting for the result cache.

Equivalent URLs must map to the same fingerprint, so every supported
YouTube form (watch, youtu.be, embed, v, shorts) is rewritten to the
canonical watch URL before hashing. Scheme and host match in any case;
video ids are case-sensitive and kept as given.

Usage:
    from tubelearn.utils.url_utils import calculate_fingerprint, normalize_video_url

    normalize_video_url("https://youtu.be/dQw4w9WgXcQ?t=42")
    # -> "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

    fingerprint = calculate_fingerprint("https://youtu.be/dQw4w9WgXcQ")
"""

import hashlib
import re
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse

YOUTUBE_ID_PATTERN = r"[A-Za-z0-9_-]{11}"

_YOUTUBE_URL_PATTERNS = [
    re.compile(rf"^(?i:(?:https?://)?(?:www\.|m\.)?youtube\.com)/watch\?(?:.*&)?v=({YOUTUBE_ID_PATTERN})(?:[&#].*)?$"),
    re.compile(rf"^(?i:(?:https?://)?youtu\.be)/({YOUTUBE_ID_PATTERN})(?:[?&#/].*)?$"),
    re.compile(rf"^(?i:(?:https?://)?(?:www\.|m\.)?youtube\.com)/(?:embed|v|shorts)/({YOUTUBE_ID_PATTERN})(?:[?&#/].*)?$"),
]

CANONICAL_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"


def extract_video_id(url: str) -> Optional[str]:
    """
    Extract the 11-character YouTube video id from a URL.

    Args:
        url: Any supported YouTube URL form

    Returns:
        The video id, or None if the URL is not a recognized video URL
    """
    if not url:
        return None

    candidate = url.strip()
    for pattern in _YOUTUBE_URL_PATTERNS:
        match = pattern.match(candidate)
        if match:
            return match.group(1)
    return None


def is_supported_video_url(url: str) -> bool:
    """Check whether a URL is a video URL the pipeline can process."""
    return extract_video_id(url) is not None


def normalize_video_url(url: str) -> str:
    """
    Normalize a URL so that equivalent inputs compare equal.

    YouTube URLs become the canonical watch URL. Anything else gets generic
    normalization: lowercase scheme and host, sorted query parameters,
    no fragment, no trailing slash.

    Args:
        url: URL to normalize

    Returns:
        Normalized URL string
    """
    video_id = extract_video_id(url)
    if video_id:
        return CANONICAL_WATCH_URL.format(video_id=video_id)

    parsed = urlparse(url.strip())

    if parsed.query:
        params = parse_qs(parsed.query, keep_blank_values=True)
        sorted_params = urlencode(sorted(params.items()), doseq=True)
    else:
        sorted_params = ""

    path = parsed.path.rstrip("/")

    normalized = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{path}"
    if sorted_params:
        normalized += f"?{sorted_params}"
    return normalized


def calculate_fingerprint(url: str) -> str:
    """
    Calculate the cache fingerprint of a URL.

    Args:
        url: URL in any supported form

    Returns:
        SHA-256 hex digest of the normalized URL
    """
    return hashlib.sha256(normalize_video_url(url).encode("utf-8")).hexdigest()


def short_hash(hash_value: str, length: int = 8) -> str:
    """
    Return a shortened version of a hash for display/logging.

    Args:
        hash_value: Full hash string
        length: Number of characters to return

    Returns:
        Shortened hash string
    """
    return hash_value[:length]
