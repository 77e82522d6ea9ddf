"""Breadth-first discovery of council and meeting pages on a municipal site."""

import logging
import time
from collections import deque
from typing import Deque, Dict, List, Set, Tuple

from bs4 import BeautifulSoup

from .config import RunConfig
from .fetcher import Fetcher, FetchError
from .models import DiscoveredLink, Municipality
from .robots import RobotsGate
from .utils import normalize_url, same_domain, is_crawlable

logger = logging.getLogger(__name__)

RELEVANT_KEYWORDS = [
    'council',
    'city-hall',
    'government',
    'meetings',
    'agendas',
    'minutes',
    'committees',
    'consultation',
    'have-your-say',
]

SKIP_KEYWORDS = [
    'tourism',
    'recreation',
    'business',
    'events',
    'directory',
    'services',
]

# Checked in order; the first category with a matching marker wins.
CATEGORY_MARKERS: List[Tuple[str, Tuple[str, ...]]] = [
    ('minutes', ('minutes',)),
    ('agenda', ('agenda',)),
    ('committee', ('committee',)),
    ('consultation', ('consultation', 'have-your-say')),
    ('council', ('council',)),
]

PROGRESS_INTERVAL = 60.0


def _link_text(url: str, anchor_text: str) -> str:
    return f"{url} {anchor_text}".lower()


def is_relevant(url: str, anchor_text: str = "") -> bool:
    """A link is relevant when it mentions a relevance keyword and no skip keyword."""
    text = _link_text(url, anchor_text)
    has_relevant = any(keyword in text for keyword in RELEVANT_KEYWORDS)
    has_skip = any(keyword in text for keyword in SKIP_KEYWORDS)
    return has_relevant and not has_skip


def categorize_link(url: str, anchor_text: str = "") -> str:
    """Assign a document category from the URL and anchor text."""
    text = _link_text(url, anchor_text)
    for category, markers in CATEGORY_MARKERS:
        if any(marker in text for marker in markers):
            return category
    return 'other'


def deduplicate_links(links: List[DiscoveredLink]) -> List[DiscoveredLink]:
    """Keep the first occurrence of every URL."""
    seen: Set[str] = set()
    unique = []
    for link in links:
        if link.url not in seen:
            seen.add(link.url)
            unique.append(link)
    return unique


def extract_links(html_content: bytes, page_url: str) -> List[Tuple[str, str]]:
    """Extract (absolute_url, anchor_text) pairs from HTML.

    Args:
        html_content: HTML content bytes
        page_url: URL of the page, for resolving relative links

    Returns:
        List of (url, anchor_text) tuples
    """
    soup = BeautifulSoup(html_content, 'html.parser')
    links = []

    for tag in soup.find_all('a', href=True):
        normalized = normalize_url(tag['href'], page_url)
        if normalized:
            links.append((normalized, tag.get_text(' ', strip=True)))

    return links


class LinkDiscoverer:
    """Crawl a municipality's website for relevant governance pages.

    The crawl is breadth-first, restricted to the home page's host, bounded by
    ``max_depth`` and by a wall-clock budget (``discovery_timeout``). When the
    budget runs out the links found so far are returned.
    """

    def __init__(self, config: RunConfig, fetcher: Fetcher, robots: RobotsGate):
        """Initialize discoverer.

        Args:
            config: Run configuration
            fetcher: Shared HTTP fetcher (applies the politeness delay)
            robots: robots.txt gate for this municipality's domain
        """
        self.config = config
        self.fetcher = fetcher
        self.robots = robots
        self.visited: Set[str] = set()
        self.failed_urls: Set[str] = set()
        self.timed_out = False

    def discover(self, municipality: Municipality) -> List[DiscoveredLink]:
        """Crawl from the municipality's base URL.

        Args:
            municipality: Municipality to crawl

        Returns:
            Relevant links, deduplicated by URL, in discovery order
        """
        base_url = municipality.base_url
        if not base_url:
            logger.info(f"{municipality.name} has no website; nothing to discover")
            return []

        results: List[DiscoveredLink] = []
        queue: Deque[Tuple[str, int]] = deque([(base_url, 0)])
        max_depth = self.config.max_depth

        start = time.monotonic()
        deadline = start + self.config.discovery_timeout
        next_progress = start + PROGRESS_INTERVAL

        while queue:
            now = time.monotonic()
            if now >= deadline:
                self._stop_on_timeout(municipality, results)
                break

            if now >= next_progress:
                logger.info(
                    f"Discovery in progress... Visited {len(self.visited)} pages, "
                    f"found {len(results)} relevant URLs so far"
                )
                next_progress = now + PROGRESS_INTERVAL

            url, depth = queue.popleft()

            if url in self.visited or depth > max_depth:
                continue

            self.visited.add(url)

            if not self.robots.is_allowed(url):
                logger.debug(f"Blocked by robots.txt: {url}")
                continue

            # An in-flight request may not outlive the crawl budget
            self.fetcher.wait()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._stop_on_timeout(municipality, results)
                break

            try:
                response = self.fetcher.get(url, timeout=min(self.config.page_timeout, remaining))
            except FetchError as e:
                if time.monotonic() >= deadline:
                    self._stop_on_timeout(municipality, results)
                    break
                logger.warning(f"Failed to fetch {url}: {e.cause}")
                self.failed_urls.add(url)
                continue

            content_type = response.headers.get('Content-Type', '').lower()
            if content_type and 'html' not in content_type:
                logger.debug(f"Not scanning non-HTML page {url} ({content_type})")
                continue

            for link_url, anchor_text in extract_links(response.content, url):
                if not same_domain(link_url, base_url):
                    continue

                if is_relevant(link_url, anchor_text):
                    results.append(DiscoveredLink(
                        municipality=municipality.name,
                        category=categorize_link(link_url, anchor_text),
                        url=link_url,
                    ))

                if depth < max_depth and link_url not in self.visited and is_crawlable(link_url):
                    queue.append((link_url, depth + 1))

        unique = deduplicate_links(results)
        if not self.timed_out:
            logger.info(
                f"Discovery completed for {municipality.name}: {len(unique)} relevant URLs, "
                f"{len(self.visited)} pages visited, {len(self.failed_urls)} failed"
            )
        return unique

    def _stop_on_timeout(self, municipality: Municipality, results: List[DiscoveredLink]) -> None:
        self.timed_out = True
        logger.warning(
            f"Discovery timeout reached ({self.config.discovery_timeout:.0f}s) for "
            f"{municipality.name}; returning {len(results)} links found so far"
        )

    def category_counts(self, links: List[DiscoveredLink]) -> Dict[str, int]:
        """Number of discovered links per category."""
        counts: Dict[str, int] = {}
        for link in links:
            counts[link.category] = counts.get(link.category, 0) + 1
        return counts
