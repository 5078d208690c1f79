import pytest
import os
import json
from unittest.mock import Mock, patch

# Test configuration
os.environ.update({
    'REDIS_HOST': 'localhost',
    'REDIS_PORT': '6379',
    'REDIS_PASSWORD': 'test',
    'ENVIRONMENT': 'test',
    'LOG_LEVEL': 'DEBUG',
    'ENABLE_METRICS': 'false',
    'EVENT_STREAM_MAXLEN': '1000',
    'SCORE_BATCH_SIZE': '1000'
})
os.environ.pop('GITHUB_TOKEN', None)
os.environ.pop('PUSHGATEWAY_URL', None)

# Apply patches globally to prevent any real connections during tests
@pytest.fixture(autouse=True)
def mock_external_connections():
    """Automatically mock external connections for all tests."""
    with patch('redis.Redis') as mock_redis:
        redis_client = Mock()
        mock_redis.return_value = redis_client
        redis_client.ping.return_value = True
        redis_client.close = Mock()

        yield


@pytest.fixture
def mock_redis():
    """Mock Redis client."""
    with patch('redis.Redis') as mock:
        client = Mock()
        mock.return_value = client

        # Mock common Redis operations
        client.ping.return_value = True
        client.exists.return_value = 0
        client.set.return_value = True
        client.expireat.return_value = True
        client.zincrby.return_value = 1.0
        client.zunionstore.return_value = 1
        client.pipeline.return_value = client
        client.execute.return_value = []

        yield client


@pytest.fixture
def sample_event():
    """Sample public event as returned by the GitHub events API."""
    return {
        'id': '42000000001',
        'type': 'PushEvent',
        'actor': {
            'id': 1,
            'login': 'alice',
            'display_login': 'alice',
            'url': 'https://api.github.com/users/alice'
        },
        'repo': {'id': 7, 'name': 'alice/project'},
        'payload': {'size': 1},
        'public': True,
        'created_at': '2024-01-01T12:00:00Z'
    }


@pytest.fixture
def bot_event(sample_event):
    event = dict(sample_event)
    event['id'] = '42000000002'
    event['actor'] = {'id': 2, 'login': 'dependabot[bot]', 'display_login': 'dependabot'}
    return event


def make_archive_event(event_id, event_type, login):
    event = {'id': str(event_id), 'type': event_type, 'repo': {'name': 'org/repo'}}
    if login is not None:
        event['actor'] = {'login': login}
    return json.dumps(event)


@pytest.fixture
def archive_lines():
    """One hour of archive data: alice has 3 scoring events, bob 1."""
    return [
        make_archive_event(1, 'PushEvent', 'alice'),
        make_archive_event(2, 'PullRequestEvent', 'alice'),
        make_archive_event(3, 'WatchEvent', 'alice'),
        make_archive_event(4, 'PushEvent', 'alice'),
        make_archive_event(5, 'PushEvent', 'bob'),
        make_archive_event(6, 'PushEvent', 'dependabot[bot]'),
        make_archive_event(7, 'PushEvent', 'aws-deployer'),
        make_archive_event(8, 'PushEvent', None),
        '{"id": "9", "type": "PushEvent", "actor": ',
        '',
    ]
