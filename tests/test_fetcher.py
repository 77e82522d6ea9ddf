"""Tests for the HTTP fetcher."""

from unittest.mock import patch

import pytest
import requests

from municipal_concerns.fetcher import Fetcher, FetchError

from conftest import FakeSession, make_response


def test_get_returns_200_response(sample_config):
    session = FakeSession({'https://city.example/': '<html>ok</html>'})
    fetcher = Fetcher(sample_config, session=session)

    response = fetcher.get('https://city.example/')

    assert response.status_code == 200
    assert fetcher.requests_made == 1


def test_non_200_raises(sample_config):
    fetcher = Fetcher(sample_config, session=FakeSession())

    with pytest.raises(FetchError) as exc_info:
        fetcher.get('https://city.example/missing')

    assert exc_info.value.cause == 'HTTP 404'
    assert exc_info.value.url == 'https://city.example/missing'


def test_network_error_wrapped(sample_config):
    session = FakeSession({'https://city.example/': requests.exceptions.Timeout('timed out')})
    fetcher = Fetcher(sample_config, session=session)

    with pytest.raises(FetchError) as exc_info:
        fetcher.get('https://city.example/')

    assert isinstance(exc_info.value.cause, requests.exceptions.Timeout)
    assert fetcher.requests_made == 1


def test_politeness_delay_between_requests(sample_config):
    sample_config.politeness_delay = 1.0
    session = FakeSession({'https://city.example/a': 'a', 'https://city.example/b': 'b'})
    fetcher = Fetcher(sample_config, session=session)

    with patch('municipal_concerns.fetcher.time.monotonic', side_effect=[100.0, 100.2] + [100.4] * 5), \
            patch('municipal_concerns.fetcher.time.sleep') as mock_sleep:
        fetcher.get('https://city.example/a')
        fetcher.get('https://city.example/b')

    mock_sleep.assert_called_once()
    assert mock_sleep.call_args[0][0] == pytest.approx(0.8)


def test_first_request_does_not_wait(sample_config):
    sample_config.politeness_delay = 5.0
    fetcher = Fetcher(sample_config, session=FakeSession({'https://city.example/': 'ok'}))

    with patch('municipal_concerns.fetcher.time.sleep') as mock_sleep:
        fetcher.get('https://city.example/')

    mock_sleep.assert_not_called()


def test_session_headers(sample_config):
    fetcher = Fetcher(sample_config)
    assert fetcher.session.headers['User-Agent'] == sample_config.user_agent
    fetcher.session.close()


def test_custom_timeout_passed(sample_config):
    session = FakeSession()
    session.pages['https://city.example/doc.pdf'] = make_response(200, b'%PDF')
    with patch.object(session, 'get', wraps=session.get) as spy:
        Fetcher(sample_config, session=session).get('https://city.example/doc.pdf', timeout=30)
    assert spy.call_args.kwargs['timeout'] == 30


def test_streamed_error_response_closed(sample_config):
    response = make_response(503, b'')
    session = FakeSession({'https://city.example/doc.pdf': response})

    with pytest.raises(FetchError):
        Fetcher(sample_config, session=session).get('https://city.example/doc.pdf', stream=True)

    assert session.streamed == ['https://city.example/doc.pdf']
    response.close.assert_called_once()
