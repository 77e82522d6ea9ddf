"""Utility functions and helpers."""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse, urljoin, urlunparse


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging with proper formatting.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def normalize_url(url: str, base_url: str = "") -> Optional[str]:
    """Resolve a link against the page it was found on and drop the fragment.

    Args:
        url: URL or href to normalize
        base_url: Base URL for resolving relative URLs

    Returns:
        Absolute http(s) URL or None if invalid
    """
    if not url:
        return None

    url = url.strip()

    # Filter out non-http(s) schemes
    if url.startswith(('mailto:', 'tel:', 'javascript:', 'data:', '#')):
        return None

    # Handle relative URLs
    if base_url and not url.startswith(('http://', 'https://')):
        url = urljoin(base_url, url)

    try:
        parsed = urlparse(url)
    except ValueError:
        return None

    if not parsed.scheme or not parsed.netloc:
        return None

    if parsed.scheme not in ('http', 'https'):
        return None

    # Rebuild without fragment
    return urlunparse((
        parsed.scheme,
        parsed.netloc,
        parsed.path,
        parsed.params,
        parsed.query,
        ''
    ))


def hostname(url: str) -> str:
    """Lowercased hostname of a URL ('' when it cannot be parsed)."""
    try:
        return (urlparse(url).hostname or '').lower()
    except ValueError:
        return ''


def same_domain(url1: str, url2: str) -> bool:
    """Check if two URLs share the same hostname.

    Subdomains count as different hosts.
    """
    host1 = hostname(url1)
    return bool(host1) and host1 == hostname(url2)


def url_path_endswith(url: str, suffix: str) -> bool:
    """Check the URL path (not query string) for a suffix, case-insensitively."""
    try:
        path = urlparse(url).path
    except ValueError:
        path = url
    return path.lower().endswith(suffix.lower())


def is_crawlable(url: str) -> bool:
    """Check if URL may be an HTML page worth scanning for more links.

    Args:
        url: URL to check

    Returns:
        False for documents and binary/media files, True otherwise
    """
    skip_exts = {
        '.pdf',  # Extracted, never crawled
        '.jpg', '.jpeg', '.png', '.gif', '.svg', '.ico', '.webp',  # Images
        '.css', '.js',  # Assets
        '.zip', '.rar', '.tar', '.gz', '.7z',  # Archives
        '.mp3', '.mp4', '.avi', '.mov', '.wmv',  # Media
        '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',  # Office
        '.xml', '.json', '.ics', '.csv',
    }

    try:
        path = urlparse(url).path.lower()
    except ValueError:
        return False

    return not any(path.endswith(ext) for ext in skip_exts)


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space and trim."""
    return re.sub(r'\s+', ' ', text or '').strip()


def slugify(name: str) -> str:
    """Filesystem-safe lowercase slug for a municipality name."""
    slug = re.sub(r'[^a-z0-9]+', '-', (name or '').lower()).strip('-')
    return slug or 'unnamed'


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to a temporary file in the same directory, then rename it.

    Readers never observe a half-written file.

    Args:
        path: Destination file
        data: JSON-serialisable object
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
