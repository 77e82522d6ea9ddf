"""robots.txt gate with fail-open semantics."""

import logging
from typing import Optional
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

from .fetcher import Fetcher, FetchError

logger = logging.getLogger(__name__)


class RobotsGate:
    """Decide whether a URL may be fetched according to the site's robots.txt.

    The policy is downloaded once, when the gate is built, and kept for the
    whole crawl of one municipality. If robots.txt cannot be fetched for any
    reason the site is treated as having no policy and every URL is allowed.
    """

    def __init__(self, base_url: str, fetcher: Fetcher, user_agent: str,
                 timeout: float = 5.0):
        self.base_url = base_url
        self.fetcher = fetcher
        self.user_agent = user_agent
        self.timeout = timeout
        self.parser = RobotFileParser()
        self.crawl_delay: Optional[float] = None
        self._loaded = False

        parsed = urlparse(base_url)
        self.robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
        self._load()

    @property
    def loaded(self) -> bool:
        return self._loaded

    def _load(self) -> None:
        """Load and parse robots.txt."""
        try:
            response = self.fetcher.get(self.robots_url, timeout=self.timeout)
        except FetchError as e:
            # No robots.txt (or unreachable): allow all
            logger.info(f"No robots policy for {self.robots_url} ({e.cause}); allowing all URLs")
            return

        lines = response.text.splitlines()
        self.parser.parse(lines)
        self._loaded = True

        # RobotFileParser only reports crawl-delay per matching agent
        delay = self.parser.crawl_delay(self.user_agent)
        if delay is not None:
            self.crawl_delay = float(delay)
            logger.info(f"robots.txt at {self.robots_url} requests crawl-delay {self.crawl_delay}s")

        logger.info(f"Loaded robots.txt from {self.robots_url}")

    def is_allowed(self, url: str, user_agent: Optional[str] = None) -> bool:
        """Check if URL can be fetched according to robots.txt."""
        if not self._loaded:
            return True  # No robots.txt means allow all

        return self.parser.can_fetch(user_agent or self.user_agent, url)


class AllowAllGate:
    """Stand-in gate used when robots.txt checks are disabled."""

    loaded = False
    crawl_delay = None

    def is_allowed(self, url: str, user_agent: Optional[str] = None) -> bool:
        return True
