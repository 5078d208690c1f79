import sys
import os
import time
import json
import signal
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Tuple
from threading import Event

# Add parent directory to Python path
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, parent_dir)

import redis
from pydantic import ValidationError
from prometheus_client import Counter, Histogram, Gauge, REGISTRY, push_to_gateway
from shared.config import RedisConfig, AppConfig, AggregatorConfig, setup_logging
from shared.batching import WriteBatch
from shared.bots import is_bot_actor
from shared.github_client import GHArchiveClient
from shared.keys import hourly_score_key, hourly_score_keys, daily_summary_key, run_lease_key
from shared.models import GitHubEvent

# Prometheus Metrics
HOURS_HANDLED = Counter('archive_hours_total', 'Archive hours handled, by outcome', ['outcome'])
EVENTS_PARSED = Counter('archive_events_parsed_total', 'Archive events parsed')
EVENTS_SCORED = Counter('archive_events_scored_total', 'Archive events that incremented a contributor score')
MALFORMED_LINES = Counter('archive_malformed_lines_total', 'Archive lines that could not be parsed')
HOUR_PROCESSING_DURATION = Histogram('archive_hour_duration_seconds', 'Time spent downloading and scoring one hour')
REDIS_CONNECTION_STATUS = Gauge('redis_connection_active', 'Redis connection status (1=connected, 0=disconnected)')


@dataclass
class AggregationResult:
    day: date
    last_complete_hour: int
    processed_hours: List[int] = field(default_factory=list)
    failed_hours: List[int] = field(default_factory=list)
    resumed_at: Optional[int] = None
    events_parsed: int = 0
    events_scored: int = 0
    summary_key: Optional[str] = None
    lease_acquired: bool = True


def next_midnight(day: date) -> datetime:
    """Start of the UTC day following ``day``."""
    return datetime.combine(day + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)


class ScoreAggregator:
    """Scores contributor activity from GH Archive hours into hourly and daily sorted sets.

    Hours are walked backward from the last complete one. An existing hourly
    bucket is taken as proof that it and every earlier hour were handled by a
    previous run, so the walk stops there. The daily summary always spans
    every hour from 0 to the last complete one.
    """

    def __init__(self, archive_client: Optional[GHArchiveClient] = None):
        self.shutdown_event = Event()

        # Load configuration
        self.redis_config = RedisConfig.from_env()
        self.app_config = AppConfig.from_env()
        self.aggregator_config = AggregatorConfig.from_env()
        self.logger = setup_logging(__name__, self.app_config.log_level)

        # Initialize connections
        self.redis_client: Optional[redis.Redis] = None
        self.archive_client = archive_client

        # Set up signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.logger.info("ScoreAggregator initialized")

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle shutdown signals gracefully."""
        self.logger.info(f"Received signal {signum}, stopping after the current hour")
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
                    socket_timeout=30
                )
                # Test connection
                client.ping()
                REDIS_CONNECTION_STATUS.set(1)
                self.logger.info("Successfully connected to Redis")
                return client
            except Exception as e:
                REDIS_CONNECTION_STATUS.set(0)
                self.logger.warning(f"Redis connection attempt {attempt + 1} failed: {e}")
                if attempt < max_retries - 1:
                    time.sleep(2 ** attempt)
                else:
                    raise

    @staticmethod
    def _scoring_login(line: bytes) -> Tuple[bool, Optional[str]]:
        """Parse one archive line.

        Returns ``(parsed, login)`` where ``login`` is set only for events that
        earn a contributor point.
        """
        try:
            event = GitHubEvent(**json.loads(line))
        except (ValueError, TypeError, ValidationError):
            return False, None

        login = event.actor_login
        if not event.is_scoring or is_bot_actor(login):
            return True, None
        return True, login

    def score_events(self, path: Path, bucket_key: str, expire_at: datetime) -> Tuple[int, int]:
        """Increment ``bucket_key`` once per qualifying event in a JSON-lines file."""
        self.logger.info(f"Processing events from: {path}")
        parsed_count = 0
        scored_count = 0
        expiration_staged = False

        with WriteBatch(self.redis_client, self.aggregator_config.batch_size) as batch, \
                open(path, 'rb') as lines:
            for line in lines:
                if not line.strip():
                    continue

                parsed, login = self._scoring_login(line)
                if not parsed:
                    MALFORMED_LINES.inc()
                    self.logger.debug(f"Skipping unparseable line in {path}")
                    continue

                parsed_count += 1
                if login is None:
                    continue

                batch.stage('zincrby', bucket_key, 1, login)
                if not expiration_staged:
                    batch.stage('expireat', bucket_key, expire_at)
                    expiration_staged = True
                scored_count += 1

        EVENTS_PARSED.inc(parsed_count)
        EVENTS_SCORED.inc(scored_count)
        self.logger.info(f"Finished processing {path}: {parsed_count} events, {scored_count} scored")
        return parsed_count, scored_count

    def process_hour(self, day: date, hour: int, work_dir: str) -> Tuple[int, int]:
        """Download, score and expire one hour's bucket. The temp file never outlives the call."""
        bucket_key = hourly_score_key(day, hour)
        expire_at = next_midnight(day)
        path: Optional[Path] = None

        with HOUR_PROCESSING_DURATION.time():
            try:
                path = self.archive_client.download_hour(day, hour, work_dir)
                counts = self.score_events(path, bucket_key, expire_at)

                # Second pass so the TTL reflects the finished bucket
                self.redis_client.expireat(bucket_key, expire_at)
                self.logger.info(f"Set expiration for {bucket_key} at {expire_at.isoformat()}")
                return counts
            finally:
                if path is not None and path.exists():
                    path.unlink()
                    self.logger.debug(f"Cleaned up temp file: {path}")

    def walk_hours(self, day: date, last_hour: int, work_dir: str, result: AggregationResult) -> None:
        """Process hours from ``last_hour`` down to 0, stopping at the first existing bucket."""
        for hour in range(last_hour, -1, -1):
            if self.shutdown_event.is_set():
                self.logger.info(f"Shutdown requested, leaving hours 0-{hour} for the next run")
                break

            bucket_key = hourly_score_key(day, hour)
            if self.redis_client.exists(bucket_key):
                self.logger.info(f"Hour {hour} already processed (key {bucket_key} exists), "
                                 f"treating hours 0-{hour} as done")
                HOURS_HANDLED.labels(outcome='resumed').inc()
                result.resumed_at = hour
                break

            try:
                parsed, scored = self.process_hour(day, hour, work_dir)
            except Exception as e:
                HOURS_HANDLED.labels(outcome='failed').inc()
                self.logger.error(f"Error processing hour {hour}: {e}")
                result.failed_hours.append(hour)
                continue

            HOURS_HANDLED.labels(outcome='processed').inc()
            result.processed_hours.append(hour)
            result.events_parsed += parsed
            result.events_scored += scored

    def build_daily_summary(self, day: date, last_hour: int) -> str:
        """Sum-union every hourly bucket of the day into the daily summary key."""
        summary_key = daily_summary_key(day)
        hourly_keys = hourly_score_keys(day, last_hour)

        self.redis_client.zunionstore(summary_key, hourly_keys, aggregate='SUM')
        expire_at = next_midnight(day)
        self.redis_client.expireat(summary_key, expire_at)

        self.logger.info(f"Created daily summary at key {summary_key} from {len(hourly_keys)} "
                         f"hourly score sets, expiring at {expire_at.isoformat()}")
        return summary_key

    def _release_lease(self, lease) -> None:
        try:
            lease.release()
        except redis.exceptions.LockError as e:
            self.logger.warning(f"Run lease was lost before release: {e}")

    def run(self, day: date, current_hour: int) -> AggregationResult:
        """Score every complete hour of ``day`` that earlier runs have not covered."""
        last_hour = current_hour - 1
        result = AggregationResult(day=day, last_complete_hour=last_hour)

        try:
            if last_hour < 0:
                self.logger.info("Skipping processing: no complete UTC hour yet today")
                return result

            self.logger.info(f"Processing GitHub Archive data for {day.isoformat()}, hours 0-{last_hour} (UTC)")

            # Establish connections
            self.redis_client = self._connect_redis()
            if self.archive_client is None:
                self.archive_client = GHArchiveClient(self.aggregator_config.archive_base_url)

            lease = self.redis_client.lock(run_lease_key(day), timeout=self.aggregator_config.lease_seconds)
            if not lease.acquire(blocking=False):
                self.logger.warning(f"Another run holds the lease for {day.isoformat()}, exiting")
                result.lease_acquired = False
                return result

            try:
                with tempfile.TemporaryDirectory(prefix='gharchive-', dir=self.aggregator_config.temp_dir) as work_dir:
                    self.walk_hours(day, last_hour, work_dir, result)
                result.summary_key = self.build_daily_summary(day, last_hour)
            finally:
                self._release_lease(lease)

            self.logger.info(
                f"Processing complete for {day.isoformat()}: hours processed {result.processed_hours}, "
                f"failed {result.failed_hours}, {result.events_parsed} events parsed, "
                f"{result.events_scored} scored"
            )
            return result

        except Exception as e:
            self.logger.error(f"Fatal error in ScoreAggregator: {e}")
            raise
        finally:
            self._push_metrics()
            self._cleanup()

    def _push_metrics(self) -> None:
        if not (self.app_config.enable_metrics and self.app_config.pushgateway_url):
            return
        try:
            push_to_gateway(self.app_config.pushgateway_url, job='github-contributor-scores', registry=REGISTRY)
        except Exception as e:
            self.logger.warning(f"Failed to push metrics: {e}")

    def _cleanup(self) -> None:
        """Clean up resources."""
        self.logger.info("Cleaning up resources")

        if self.archive_client:
            try:
                self.archive_client.close()
            except Exception as e:
                self.logger.warning(f"Error closing HTTP session: {e}")

        if self.redis_client:
            try:
                self.redis_client.close()
                REDIS_CONNECTION_STATUS.set(0)
                self.logger.info("Redis client closed")
            except Exception as e:
                self.logger.warning(f"Error closing Redis client: {e}")


def main() -> None:
    aggregator = ScoreAggregator()
    now = datetime.now(timezone.utc)
    try:
        aggregator.run(now.date(), now.hour)
    except KeyboardInterrupt:
        aggregator.logger.info("Received keyboard interrupt")
    except Exception as e:
        aggregator.logger.error(f"Unhandled exception: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
