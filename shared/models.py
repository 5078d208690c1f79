from typing import Optional

from pydantic import BaseModel, ConfigDict

SCORING_EVENT_TYPES = frozenset({'PushEvent', 'PullRequestEvent'})


class Actor(BaseModel):
    """Originator of a GitHub event."""
    model_config = ConfigDict(extra='allow')

    login: Optional[str] = None
    display_login: Optional[str] = None


class GitHubEvent(BaseModel):
    """Pydantic model for a public GitHub event (live feed or GH Archive)."""
    model_config = ConfigDict(extra='allow')

    id: str
    type: str
    actor: Optional[Actor] = None

    @property
    def actor_login(self) -> Optional[str]:
        return self.actor.login if self.actor else None

    @property
    def display_login(self) -> Optional[str]:
        """Display login, falling back to the plain login."""
        if not self.actor:
            return None
        return self.actor.display_login or self.actor.login

    @property
    def is_scoring(self) -> bool:
        return self.type in SCORING_EVENT_TYPES
