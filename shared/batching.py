from typing import Any, List

import redis


class WriteBatch:
    """Accumulates Redis commands and flushes them in staging order.

    Commands are queued on a non-transactional pipeline and sent once
    ``flush_threshold`` commands are pending, or when ``flush`` is called.
    """

    def __init__(self, redis_client: redis.Redis, flush_threshold: int = 1000):
        if flush_threshold < 1:
            raise ValueError("flush_threshold must be at least 1")
        self.flush_threshold = flush_threshold
        self._pipe = redis_client.pipeline(transaction=False)
        self._pending = 0
        self.flushes = 0
        self.staged_total = 0

    def __len__(self) -> int:
        return self._pending

    def stage(self, command: str, *args: Any, **kwargs: Any) -> None:
        """Queue one command, e.g. ``stage('zincrby', key, 1, member)``."""
        getattr(self._pipe, command)(*args, **kwargs)
        self._pending += 1
        self.staged_total += 1
        if self._pending >= self.flush_threshold:
            self.flush()

    def flush(self) -> List[Any]:
        if not self._pending:
            return []
        results = self._pipe.execute()
        self._pending = 0
        self.flushes += 1
        return results

    def discard(self) -> None:
        self._pipe.reset()
        self._pending = 0

    def __enter__(self) -> 'WriteBatch':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.flush()
        else:
            self.discard()
