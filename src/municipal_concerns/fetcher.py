"""HTTP fetching with a shared session and politeness delay."""

import logging
import time
from typing import Optional

import requests

from .config import RunConfig

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """A URL could not be fetched (network error, timeout or non-200 status)."""

    def __init__(self, url: str, cause):
        self.url = url
        self.cause = cause
        super().__init__(f"Failed to fetch {url}: {cause}")


class Fetcher:
    """Sequential HTTP client.

    Every request goes through ``get``, which waits until ``politeness_delay``
    seconds have passed since the previous request. There are no automatic
    retries: a failed request raises ``FetchError`` and the caller decides.
    """

    def __init__(self, config: RunConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session if session is not None else self._create_session()
        self.last_request_time: Optional[float] = None
        self.requests_made = 0

    def _create_session(self) -> requests.Session:
        """Create requests session with the configured headers.

        Returns:
            Configured session
        """
        session = requests.Session()
        session.headers.update({
            'User-Agent': self.config.user_agent,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,application/pdf,*/*;q=0.8',
            'Accept-Language': 'en-CA,en;q=0.9,fr;q=0.5',
        })
        return session

    def wait(self) -> None:
        """Wait appropriate delay since last request."""
        if self.last_request_time is not None and self.config.politeness_delay > 0:
            elapsed = time.monotonic() - self.last_request_time
            if elapsed < self.config.politeness_delay:
                time.sleep(self.config.politeness_delay - elapsed)

    def get(self, url: str, timeout: Optional[float] = None, stream: bool = False) -> requests.Response:
        """Fetch a URL.

        Args:
            url: URL to fetch
            timeout: Request timeout in seconds (default: config.page_timeout)
            stream: Return before the body is read; the caller must close the response

        Returns:
            Response with status 200

        Raises:
            FetchError: On network errors, timeouts and any status other than 200
        """
        self.wait()
        try:
            response = self.session.get(
                url,
                timeout=timeout if timeout is not None else self.config.page_timeout,
                headers={'User-Agent': self.config.user_agent},
                stream=stream,
            )
        except requests.exceptions.RequestException as e:
            raise FetchError(url, e) from e
        finally:
            self.last_request_time = time.monotonic()
            self.requests_made += 1

        if response.status_code != 200:
            if stream:
                response.close()
            raise FetchError(url, f"HTTP {response.status_code}")

        if stream:
            logger.debug(f"Opened {url}")
        else:
            logger.debug(f"Fetched {url} ({len(response.content)} bytes)")
        return response
