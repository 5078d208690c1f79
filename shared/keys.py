"""Redis key naming shared by the event ingestor and the score aggregator."""
from datetime import date
from typing import List, Union

PREFIX = 'github-events'

DateLike = Union[date, str]


def _key(name: str) -> str:
    return f'{PREFIX}:{name}'


def _date_str(day: DateLike) -> str:
    return day.isoformat() if isinstance(day, date) else day


def stream_key() -> str:
    return _key('event-stream')


def log_key(event_id: str) -> str:
    return _key(f'event-log:{event_id}')


def created_at_key() -> str:
    return _key('first-inserted-at')


def hourly_score_key(day: DateLike, hour: int) -> str:
    # Hours are unpadded to match the GH Archive file names.
    return _key(f'contributor-score:{_date_str(day)}:{int(hour)}')


def daily_summary_key(day: DateLike) -> str:
    return _key(f'contributor-score:{_date_str(day)}:sum')


def run_lease_key(day: DateLike) -> str:
    return _key(f'contributor-score:{_date_str(day)}:lock')


def hourly_score_keys(day: DateLike, last_hour: int) -> List[str]:
    """Bucket keys for hours 0..last_hour inclusive."""
    return [hourly_score_key(day, hour) for hour in range(last_hour + 1)]
