"""Login heuristics for telling automated GitHub actors from humans.

The live ingestor uses a narrow pattern so that only obvious app bots are
dropped from the event stream. Contributor scoring uses a much broader test,
since a false positive there only costs one login its score.
"""
import re
from typing import Optional

INGEST_BOT_PATTERN = re.compile(r'(\[bot\]|-bot$)')

_BOT_PREFIXES = ('aws',)
_BOT_TOKENS = (
    '[bot]',
    'copilot',
    'renovate',
    'greenkeeper',
    'snyk',
    'security',
    'automation',
    'deploy',
    'ci-',
    '-ci',
    'build',
    'release',
)


def is_ingest_bot(login: Optional[str]) -> bool:
    """Bot check applied before events reach the event stream."""
    return bool(login) and INGEST_BOT_PATTERN.search(login) is not None


def is_bot_actor(login: Optional[str]) -> bool:
    """Bot check applied to archive events before scoring.

    A missing login is treated as a bot so the event is never scored.
    """
    if not login:
        return True

    lowered = login.lower()
    return (
        lowered.endswith('bot')
        or lowered.startswith(_BOT_PREFIXES)
        or any(token in lowered for token in _BOT_TOKENS)
    )
