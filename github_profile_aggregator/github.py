"""GitHub REST client (PyGithub) for resolving numeric user ids to logins."""

import logging
from concurrent.futures import ThreadPoolExecutor

from github import Auth, Github, GithubException, RateLimitExceededException

from .errors import RateLimitedError, TransportError
from .settings import get_settings

logging.getLogger("github").setLevel(logging.ERROR)
logging.getLogger("github.Requester").setLevel(logging.ERROR)
logging.getLogger("urllib3").setLevel(logging.ERROR)

logger = logging.getLogger(__name__)

MAX_WORKERS = 10


class GitHubClient:
    """Looks up users by database id.

    Auth is handled via GITHUB_TOKEN (or an explicit token).
    """

    def __init__(self, token: str | None = None):
        self._token = token
        self._github: Github | None = None

    @property
    def github(self) -> Github:
        """Lazy-initialize the GitHub client."""
        if self._github is None:
            token = self._token or get_settings().github_token
            if not token:
                raise RuntimeError("GITHUB_TOKEN is not set")
            self._github = Github(auth=Auth.Token(token), retry=None)
        return self._github

    def get_login(self, user_id: int) -> str | None:
        """Return the login for a user id, or None if no such user exists."""
        try:
            return self.github.get_user_by_id(user_id).login
        except RateLimitExceededException as e:
            raise RateLimitedError(f"rate limited resolving user {user_id}", status_code=e.status) from e
        except GithubException as e:
            if e.status == 404:
                logger.debug("No GitHub user with id %s", user_id)
                return None
            if e.status in (403, 429) and "rate limit" in str(e).lower():
                raise RateLimitedError(f"rate limited resolving user {user_id}", status_code=e.status) from e
            raise TransportError(f"failed to get user {user_id}: {e}", status_code=e.status) from e

    def get_logins(self, user_ids: list[int], max_workers: int = MAX_WORKERS) -> list[str | None]:
        """Resolve many ids concurrently on a bounded pool, preserving order."""
        if not user_ids:
            return []
        with ThreadPoolExecutor(max_workers=min(max_workers, len(user_ids))) as executor:
            return list(executor.map(self.get_login, user_ids))

    def close(self):
        if self._github is not None:
            self._github.close()
