"""HTTP clients for the live GitHub event feed and the GH Archive dumps."""
import gzip
import os
import shutil
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from shared.config import GitHubConfig, setup_logging
from shared.keys import DateLike


def build_http_session(user_agent: Optional[str] = None) -> requests.Session:
    """Configure HTTP session with retry strategy."""
    session = requests.Session()

    retry_strategy = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET"]
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    if user_agent:
        session.headers['User-Agent'] = user_agent

    return session


class GitHubEventsClient:
    """Client for the public GitHub events API."""

    def __init__(self, config: GitHubConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.logger = setup_logging(__name__)
        self.session = session or build_http_session(config.user_agent)

    def _headers(self) -> Dict[str, str]:
        headers = {
            'Accept': 'application/vnd.github+json',
            'User-Agent': self.config.user_agent
        }
        if self.config.token:
            headers['Authorization'] = f'Bearer {self.config.token}'
        return headers

    def fetch_public_events(self) -> List[Dict[str, Any]]:
        """Fetch one page of public events.

        Raises ``requests.exceptions.RequestException`` on transport or HTTP
        failure and ``ValueError`` when the body is not a JSON list.
        """
        response = self.session.get(
            self.config.events_url,
            params={'per_page': self.config.per_page},
            headers=self._headers(),
            timeout=self.config.timeout_seconds
        )
        response.raise_for_status()

        events = response.json()
        if not isinstance(events, list):
            raise ValueError(f"Expected a list of events, got {type(events).__name__}")

        self.logger.debug(f"Fetched {len(events)} events from {self.config.events_url}")
        return events

    def close(self) -> None:
        self.session.close()


class GHArchiveClient:
    """Downloads and decompresses hourly GH Archive files."""

    def __init__(self, base_url: str = 'https://data.gharchive.org',
                 session: Optional[requests.Session] = None,
                 timeout: Union[float, tuple] = (5, 60)):
        self.base_url = base_url.rstrip('/')
        self.logger = setup_logging(__name__)
        self.session = session or build_http_session()
        self.timeout = timeout

    @staticmethod
    def archive_name(day: DateLike, hour: int) -> str:
        day_str = day.isoformat() if isinstance(day, date) else day
        return f'{day_str}-{int(hour)}'

    def archive_url(self, day: DateLike, hour: int) -> str:
        return f'{self.base_url}/{self.archive_name(day, hour)}.json.gz'

    def download_hour(self, day: DateLike, hour: int, dest_dir: Union[str, Path]) -> Path:
        """Stream the hour's archive into ``dest_dir`` as decompressed JSON lines."""
        url = self.archive_url(day, hour)
        output_path = Path(dest_dir) / f'{self.archive_name(day, hour)}.json'
        self.logger.info(f"Downloading: {url}")

        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with gzip.GzipFile(fileobj=response.raw) as gunzip, \
                        open(output_path, 'wb') as out:
                    shutil.copyfileobj(gunzip, out)
        except (requests.exceptions.RequestException, OSError, EOFError):
            if output_path.exists():
                os.remove(output_path)
            raise

        self.logger.info(f"Downloaded and extracted: {output_path}")
        return output_path

    def close(self) -> None:
        self.session.close()
