import os
import logging
import tempfile
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


@dataclass
class RedisConfig:
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    db: int = 0
    ssl: bool = False

    @classmethod
    def from_env(cls) -> 'RedisConfig':
        return cls(
            host=os.getenv('REDIS_HOST', 'redis'),
            port=int(os.getenv('REDIS_PORT', '6379')),
            username=os.getenv('REDIS_USERNAME'),
            password=os.getenv('REDIS_PASSWORD'),
            db=int(os.getenv('REDIS_DB', '0')),
            ssl=_env_bool('REDIS_SSL', 'false')
        )

@dataclass
class AppConfig:
    environment: str
    log_level: str
    enable_metrics: bool
    pushgateway_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'AppConfig':
        return cls(
            environment=os.getenv('ENVIRONMENT', 'development'),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            enable_metrics=_env_bool('ENABLE_METRICS', 'true'),
            pushgateway_url=os.getenv('PUSHGATEWAY_URL') or None
        )

@dataclass
class GitHubConfig:
    token: Optional[str] = None
    events_url: str = 'https://api.github.com/events'
    per_page: int = 100
    user_agent: str = 'oss-realtime-app'
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> 'GitHubConfig':
        return cls(
            token=os.getenv('GITHUB_TOKEN') or None,
            events_url=os.getenv('GITHUB_EVENTS_URL', 'https://api.github.com/events'),
            per_page=int(os.getenv('GITHUB_EVENTS_PER_PAGE', '100')),
            user_agent=os.getenv('GITHUB_USER_AGENT', 'oss-realtime-app'),
            timeout_seconds=float(os.getenv('HTTP_TIMEOUT_SECONDS', '30'))
        )

@dataclass
class IngestorConfig:
    max_stream_length: int = 1000

    @classmethod
    def from_env(cls) -> 'IngestorConfig':
        return cls(
            max_stream_length=int(os.getenv('EVENT_STREAM_MAXLEN', '1000'))
        )

@dataclass
class AggregatorConfig:
    archive_base_url: str = 'https://data.gharchive.org'
    batch_size: int = 1000
    lease_seconds: int = 3600
    temp_dir: str = tempfile.gettempdir()

    @classmethod
    def from_env(cls) -> 'AggregatorConfig':
        return cls(
            archive_base_url=os.getenv('GHARCHIVE_BASE_URL', 'https://data.gharchive.org'),
            batch_size=int(os.getenv('SCORE_BATCH_SIZE', '1000')),
            lease_seconds=int(os.getenv('RUN_LEASE_SECONDS', '3600')),
            temp_dir=os.getenv('ARCHIVE_TEMP_DIR') or tempfile.gettempdir()
        )

def setup_logging(name: str, level: str = 'INFO') -> logging.Logger:
    """Configure structured logging for the application."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
