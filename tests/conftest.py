"""Shared test fixtures and utilities."""

import pytest
import tempfile
from pathlib import Path
from unittest.mock import Mock

from municipal_concerns.config import RunConfig
from municipal_concerns.fetcher import Fetcher


def make_response(status_code=200, content=b'', headers=None):
    """Build a requests-like response object."""
    if isinstance(content, str):
        content = content.encode('utf-8')
    response = Mock()
    response.status_code = status_code
    response.content = content
    response.text = content.decode('utf-8', errors='replace')
    response.headers = headers if headers is not None else {'Content-Type': 'text/html; charset=utf-8'}
    return response


class FakeSession:
    """Session stand-in serving canned responses by URL.

    Unknown URLs answer 404. A value that is an exception instance is raised.
    """

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.requested = []
        self.timeouts = []
        self.streamed = []
        self.headers = {}
        self.closed = False

    def get(self, url, timeout=None, headers=None, stream=False):
        self.requested.append(url)
        self.timeouts.append(timeout)
        if stream:
            self.streamed.append(url)
        page = self.pages.get(url)
        if page is None:
            return make_response(404, b'Not found')
        if isinstance(page, Exception):
            raise page
        if isinstance(page, (str, bytes)):
            return make_response(200, page)
        return page

    def close(self):
        self.closed = True


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir):
    """Configuration with every delay disabled."""
    return RunConfig(
        output_dir=temp_dir / 'output',
        municipality_types=[],
        politeness_delay=0,
        municipality_delay=0,
        analysis_delay=0,
        discovery_timeout=60,
        max_depth=2,
        snapshot_every=0,
        show_progress=False,
    )


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fetcher(sample_config, fake_session):
    """Fetcher wired to the fake session."""
    return Fetcher(sample_config, session=fake_session)


@pytest.fixture
def community_text():
    """A document that passes every chunking filter."""
    paragraphs = [
        "Residents raised a public complaint about the lack of bus service in the north end. "
        "Many residents said the community has waited years for a transit issue to be fixed.",
        "During the community meeting, citizens described a housing concern near the river. "
        "Several neighbourhood groups gave feedback on rising rents and long waiting lists.",
        "Staff summarised stakeholder input from the public consultation on safety. "
        "Residents reported a safety issue at the Main Street crossing used by schoolchildren.",
    ]
    return "\n\n".join(paragraphs)


@pytest.fixture
def sample_html():
    return """<html>
<head><title>Council Meeting Minutes</title></head>
<body>
<nav>Home About Contact Menu</nav>
<header>City of Example</header>
<main>
<h1>Regular Council Meeting</h1>
<p>Residents raised concerns about the lack of affordable housing in the downtown core.
Council heard feedback from community members about snow clearing on side streets.</p>
</main>
<footer>Copyright City of Example</footer>
</body>
</html>"""
