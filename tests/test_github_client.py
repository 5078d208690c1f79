import pytest
import sys
import os
import gzip
import io
import json
from datetime import date
from unittest.mock import MagicMock, Mock

import requests

# Add parent directory to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from shared.config import GitHubConfig
from shared.github_client import GitHubEventsClient, GHArchiveClient, build_http_session


def streaming_session(body: bytes):
    """Session whose streamed GET yields ``body`` as the raw response."""
    response = Mock()
    response.raw = io.BytesIO(body)
    session = MagicMock()
    session.get.return_value.__enter__.return_value = response
    return session, response


class TestHttpSession:

    def test_retry_adapter_mounted(self):
        session = build_http_session('agent/1.0')
        adapter = session.get_adapter('https://api.github.com')
        assert adapter.max_retries.total == 3
        assert 502 in adapter.max_retries.status_forcelist
        assert session.headers['User-Agent'] == 'agent/1.0'


class TestGitHubEventsClient:
    """Test cases for the public events client."""

    def test_fetch_public_events(self, sample_event):
        session = Mock()
        session.get.return_value.json.return_value = [sample_event]
        client = GitHubEventsClient(GitHubConfig(), session=session)

        assert client.fetch_public_events() == [sample_event]

        args, kwargs = session.get.call_args
        assert args == ('https://api.github.com/events',)
        assert kwargs['params'] == {'per_page': 100}
        assert kwargs['headers']['Accept'] == 'application/vnd.github+json'
        assert 'Authorization' not in kwargs['headers']

    def test_token_adds_authorization(self):
        session = Mock()
        session.get.return_value.json.return_value = []
        client = GitHubEventsClient(GitHubConfig(token='ghp_test'), session=session)

        client.fetch_public_events()

        assert session.get.call_args.kwargs['headers']['Authorization'] == 'Bearer ghp_test'

    def test_http_error_raises(self):
        session = Mock()
        session.get.return_value.raise_for_status.side_effect = requests.exceptions.HTTPError('403')
        client = GitHubEventsClient(GitHubConfig(), session=session)

        with pytest.raises(requests.exceptions.HTTPError):
            client.fetch_public_events()

    def test_non_list_body_raises(self):
        session = Mock()
        session.get.return_value.json.return_value = {'message': 'API rate limit exceeded'}
        client = GitHubEventsClient(GitHubConfig(), session=session)

        with pytest.raises(ValueError):
            client.fetch_public_events()


class TestGHArchiveClient:
    """Test cases for the GH Archive downloader."""

    def test_archive_url_uses_unpadded_hour(self):
        client = GHArchiveClient(session=Mock())
        assert client.archive_url(date(2024, 1, 2), 5) == 'https://data.gharchive.org/2024-01-02-5.json.gz'
        assert client.archive_url('2024-01-02', 15) == 'https://data.gharchive.org/2024-01-02-15.json.gz'

    def test_download_hour_decompresses(self, tmp_path):
        lines = [json.dumps({'id': '1', 'type': 'PushEvent'}), json.dumps({'id': '2', 'type': 'WatchEvent'})]
        session, _ = streaming_session(gzip.compress(('\n'.join(lines) + '\n').encode('utf-8')))
        client = GHArchiveClient(session=session)

        path = client.download_hour(date(2024, 1, 2), 5, tmp_path)

        assert path == tmp_path / '2024-01-02-5.json'
        assert path.read_text(encoding='utf-8').splitlines() == lines
        assert session.get.call_args.kwargs['stream'] is True

    def test_download_hour_removes_partial_file(self, tmp_path):
        session, _ = streaming_session(b'this is not gzip data')
        client = GHArchiveClient(session=session)

        with pytest.raises(OSError):
            client.download_hour(date(2024, 1, 2), 5, tmp_path)

        assert list(tmp_path.iterdir()) == []

    def test_download_hour_http_error(self, tmp_path):
        session, response = streaming_session(b'')
        response.raise_for_status.side_effect = requests.exceptions.HTTPError('404')
        client = GHArchiveClient(session=session)

        with pytest.raises(requests.exceptions.HTTPError):
            client.download_hour(date(2024, 1, 2), 5, tmp_path)

        assert list(tmp_path.iterdir()) == []
