import sys
import os
import time
import json
import signal
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from threading import Event

# Add parent directory to Python path
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, parent_dir)

import redis
import requests
from pydantic import ValidationError
from prometheus_client import Counter, Histogram, REGISTRY, push_to_gateway
from shared.config import RedisConfig, AppConfig, GitHubConfig, IngestorConfig, setup_logging
from shared.bots import is_ingest_bot
from shared.github_client import GitHubEventsClient
from shared.keys import stream_key, log_key, created_at_key
from shared.models import GitHubEvent

# Prometheus Metrics
EVENTS_INGESTED = Counter('ingest_events_total', 'Events seen by the ingestor, by outcome', ['result'])
INSERT_SCRIPT_DURATION = Histogram('ingest_script_duration_seconds', 'Time spent in the dedup-and-append script')
FETCH_FAILURES = Counter('ingest_fetch_failures_total', 'Failed fetches of the public event feed')

# KEYS[1] stream, KEYS[2] log marker; ARGV[1] event id, ARGV[2] payload, ARGV[3] max stream length.
# Returns 0 when the marker already exists, otherwise 1.
INSERT_EVENT_SCRIPT = """
if redis.call('EXISTS', KEYS[2]) == 1 then
  return 0
end
redis.call('SET', KEYS[2], ARGV[1])
redis.call('XADD', KEYS[1], 'MAXLEN', ARGV[3], '*', 'id', ARGV[1], 'event', ARGV[2])
return 1
"""


@dataclass
class IngestResult:
    fetched: bool = False
    received: int = 0
    inserted: int = 0
    duplicates: int = 0
    bots: int = 0
    invalid: int = 0
    failed: int = 0


class EventIngestor:
    """Ingests the public GitHub event feed into a bounded Redis stream, once per event id."""

    def __init__(self, events_client: Optional[GitHubEventsClient] = None):
        self.shutdown_event = Event()

        # Load configuration
        self.redis_config = RedisConfig.from_env()
        self.app_config = AppConfig.from_env()
        self.github_config = GitHubConfig.from_env()
        self.ingestor_config = IngestorConfig.from_env()
        self.logger = setup_logging(__name__, self.app_config.log_level)

        # Initialize connections
        self.redis_client: Optional[redis.Redis] = None
        self.events_client = events_client
        self._insert_script = None

        # Set up signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.logger.info("EventIngestor initialized")

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle shutdown signals gracefully."""
        self.logger.info(f"Received signal {signum}, stopping after the current event")
        self.shutdown_event.set()

    def _connect_redis(self) -> redis.Redis:
        """Establish Redis connection with retry logic."""
        max_retries = 5
        for attempt in range(max_retries):
            try:
                client = redis.Redis(
                    host=self.redis_config.host,
                    port=self.redis_config.port,
                    username=self.redis_config.username,
                    password=self.redis_config.password,
                    db=self.redis_config.db,
                    ssl=self.redis_config.ssl,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5
                )
                # Test connection
                client.ping()
                self.logger.info("Successfully connected to Redis")
                return client
            except Exception as e:
                self.logger.warning(f"Redis connection attempt {attempt + 1} failed: {e}")
                if attempt < max_retries - 1:
                    time.sleep(2 ** attempt)
                else:
                    raise

    def insert_event(self, event_id: str, payload: str) -> bool:
        """Atomically record the event's log marker and append it to the stream.

        Returns False when the event id was already ingested.
        """
        if self._insert_script is None:
            self._insert_script = self.redis_client.register_script(INSERT_EVENT_SCRIPT)

        with INSERT_SCRIPT_DURATION.time():
            result = self._insert_script(
                keys=[stream_key(), log_key(event_id)],
                args=[event_id, payload, self.ingestor_config.max_stream_length]
            )
        return int(result) != 0

    def mark_created_at(self, timestamp: Optional[str] = None) -> bool:
        """Write the first-inserted-at marker unless one already exists."""
        timestamp = timestamp or datetime.now(timezone.utc).isoformat()
        return bool(self.redis_client.set(created_at_key(), timestamp, nx=True))

    def _process_event(self, record: Dict[str, Any]) -> str:
        """Ingest a single event, returning the outcome label."""
        try:
            event = GitHubEvent(**record)
        except (ValidationError, TypeError) as e:
            event_id = record.get('id', 'unknown') if isinstance(record, dict) else 'unknown'
            self.logger.warning(f"Skipping invalid event {event_id}: {e}")
            return 'invalid'

        if any(is_ingest_bot(login) for login in (event.actor_login, event.display_login)):
            self.logger.info(f"Skipping bot event: {event.id}")
            return 'bot'

        try:
            payload = json.dumps(record, separators=(',', ':'))
            if self.insert_event(event.id, payload):
                self.logger.info(f"Event {event.id} inserted successfully")
                return 'inserted'
            self.logger.info(f"Event {event.id} already exists in the stream")
            return 'duplicate'
        except Exception as e:
            self.logger.error(f"Error inserting event {event.id}: {e}")
            return 'error'

    def _fetch_events(self) -> Optional[list]:
        try:
            return self.events_client.fetch_public_events()
        except (requests.exceptions.RequestException, ValueError) as e:
            FETCH_FAILURES.inc()
            self.logger.error(f"Error fetching GitHub events: {e}")
            return None

    def run(self) -> IngestResult:
        """Fetch one page of events and ingest each of them."""
        result = IngestResult()
        counters = {
            'inserted': 'inserted',
            'duplicate': 'duplicates',
            'bot': 'bots',
            'invalid': 'invalid',
            'error': 'failed'
        }
        try:
            # Establish connections
            self.redis_client = self._connect_redis()
            self._insert_script = None
            if self.events_client is None:
                self.events_client = GitHubEventsClient(self.github_config)

            events = self._fetch_events()
            if events is None:
                return result

            result.fetched = True
            result.received = len(events)
            self.logger.info(f"Ingesting {len(events)} events")

            for record in events:
                if self.shutdown_event.is_set():
                    self.logger.info("Shutdown requested, leaving remaining events for the next run")
                    break

                outcome = self._process_event(record)
                EVENTS_INGESTED.labels(result=outcome).inc()
                field = counters[outcome]
                setattr(result, field, getattr(result, field) + 1)

            # Only set the created-at key after every event has been attempted
            if self.mark_created_at():
                self.logger.info("Created-at key set")
            else:
                self.logger.debug("Created-at key already present")

            self.logger.info(
                f"Ingest complete: {result.inserted} inserted, {result.duplicates} duplicates, "
                f"{result.bots} bots, {result.invalid} invalid, {result.failed} failed"
            )
            return result

        except Exception as e:
            self.logger.error(f"Fatal error in EventIngestor: {e}")
            raise
        finally:
            self._push_metrics()
            self._cleanup()

    def _push_metrics(self) -> None:
        if not (self.app_config.enable_metrics and self.app_config.pushgateway_url):
            return
        try:
            push_to_gateway(self.app_config.pushgateway_url, job='github-events-ingest', registry=REGISTRY)
        except Exception as e:
            self.logger.warning(f"Failed to push metrics: {e}")

    def _cleanup(self) -> None:
        """Clean up resources."""
        self.logger.info("Cleaning up resources")

        if self.events_client:
            try:
                self.events_client.close()
            except Exception as e:
                self.logger.warning(f"Error closing HTTP session: {e}")

        if self.redis_client:
            try:
                self.redis_client.close()
                self.logger.info("Redis client closed")
            except Exception as e:
                self.logger.warning(f"Error closing Redis client: {e}")


def main() -> None:
    ingestor = EventIngestor()
    try:
        result = ingestor.run()
    except KeyboardInterrupt:
        ingestor.logger.info("Received keyboard interrupt")
        return
    except Exception as e:
        ingestor.logger.error(f"Unhandled exception: {e}")
        sys.exit(1)
    if not result.fetched:
        sys.exit(1)


if __name__ == "__main__":
    main()
