"""GraphQL client for fetching batches of GitHub user profiles."""

import logging
import threading
import time
from datetime import date, datetime, timezone

import httpx

from .batching import POLL_INTERVAL, CancellationToken
from .errors import DecodeError, FetchCancelledError, ProtocolError, RateLimitedError, TransportError
from .languages import tally_language_bytes
from .models import Contribution, UserRecord
from .settings import get_settings

logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)

GRAPHQL_URL = "https://api.github.com/graphql"

# GraphQL rate limit: 5,000 points/hour, secondary limit ~2,000 points/minute
# Each query costs ~1 point. 30/sec = 1,800/min, safely under secondary limit.
QUERIES_PER_SECOND = 30

REPOSITORIES_PER_USER = 100
LANGUAGES_PER_REPOSITORY = 20


def _make_alias(index: int) -> str:
    return f"u{index}"


def _escape_graphql_string(s: str) -> str:
    """Escape a string for use inside GraphQL double-quoted strings."""
    return s.replace("\\", "\\\\").replace('"', '\\"')


def _format_datetime(value: datetime) -> str:
    """Format as RFC 3339 UTC, treating naive datetimes as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _build_users_query(logins: list[str]) -> str:
    """Build one query with an aliased lookup per login.

    repositoryOwner resolves organizations too; the User fragment leaves
    those as empty objects, and unknown logins come back as null.
    """
    parts = []
    for i, login in enumerate(logins):
        login_esc = _escape_graphql_string(login)
        parts.append(
            f'  {_make_alias(i)}: repositoryOwner(login: "{login_esc}") {{\n'
            f"    ... on User {{\n"
            f"      login\n"
            f"      name\n"
            f"      avatarUrl\n"
            f"      contributionsCollection(from: $from, to: $to) {{\n"
            f"        contributionCalendar {{\n"
            f"          totalContributions\n"
            f"          weeks {{ contributionDays {{ date contributionCount }} }}\n"
            f"        }}\n"
            f"        totalCommitContributions\n"
            f"        totalIssueContributions\n"
            f"        totalPullRequestContributions\n"
            f"        totalPullRequestReviewContributions\n"
            f"      }}\n"
            f"      repositories(first: {REPOSITORIES_PER_USER}, ownerAffiliations: OWNER, "
            f"isFork: false, privacy: PUBLIC) {{\n"
            f"        nodes {{\n"
            f"          languages(first: {LANGUAGES_PER_REPOSITORY}) {{ edges {{ size node {{ name }} }} }}\n"
            f"        }}\n"
            f"      }}\n"
            f"    }}\n"
            f"  }}"
        )
    return "query($from: DateTime!, $to: DateTime!) {\n" + "\n".join(parts) + "\n}"


def _parse_contribution_days(calendar: dict) -> list[Contribution]:
    """Flatten contributionCalendar.weeks into one entry per day."""
    days = []
    for week in calendar.get("weeks") or []:
        for day in (week or {}).get("contributionDays") or []:
            if not day:
                continue
            days.append(Contribution(date.fromisoformat(day["date"]), int(day.get("contributionCount") or 0)))
    return days


def _parse_user(node: dict) -> UserRecord:
    """Convert one aliased repositoryOwner node into a UserRecord."""
    login = node.get("login") or ""
    contributions = node.get("contributionsCollection") or {}
    calendar = contributions.get("contributionCalendar") or {}
    repositories = (node.get("repositories") or {}).get("nodes")
    return UserRecord(
        login=login,
        display_name=node.get("name") or login,
        avatar_url=node.get("avatarUrl") or "",
        total_contributions=int(calendar.get("totalContributions") or 0),
        commit_count=int(contributions.get("totalCommitContributions") or 0),
        issue_count=int(contributions.get("totalIssueContributions") or 0),
        pull_request_count=int(contributions.get("totalPullRequestContributions") or 0),
        review_count=int(contributions.get("totalPullRequestReviewContributions") or 0),
        contributions=_parse_contribution_days(calendar),
        language_bytes=tally_language_bytes(repositories),
    )


def _is_rate_limited(resp: httpx.Response) -> bool:
    if resp.status_code == 429:
        return True
    return resp.status_code == 403 and "rate limit" in resp.text.lower()


def _parse_retry_after(resp: httpx.Response) -> float | None:
    """Parse Retry-After header if present."""
    val = resp.headers.get("retry-after")
    if val is None:
        return None
    try:
        return float(val)
    except ValueError:
        return None


class GraphQLClient:
    """GitHub GraphQL client for batched user profile fetching.

    Safe to share between batch worker threads. Every call is a single
    request; failures are raised, never retried.
    """

    def __init__(self, token: str | None = None, timeout: float | None = None):
        settings = get_settings()
        token = token or settings.github_token
        if not token:
            raise RuntimeError("GITHUB_TOKEN is not set")
        self._timeout = settings.request_timeout if timeout is None else timeout
        if self._timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self._timeout}")
        self._client = httpx.Client(
            headers={
                "Authorization": f"bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
        )
        self._throttle_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._last_query_time = 0.0
        self._min_interval = 1.0 / QUERIES_PER_SECOND
        self.queries = 0
        self.total_query_time = 0.0

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _throttle(self, token: CancellationToken | None = None):
        with self._throttle_lock:
            delay = self._min_interval - (time.time() - self._last_query_time)
            if delay > 0:
                if token is None:
                    time.sleep(delay)
                else:
                    token.wait(delay)
                    token.raise_if_cancelled()
            self._last_query_time = time.time()

    @property
    def avg_query_time(self) -> float:
        return self.total_query_time / self.queries if self.queries else 0

    def _request_timeout(self, token: CancellationToken | None) -> float:
        remaining = token.remaining() if token is not None else None
        if remaining is None:
            return self._timeout
        return min(self._timeout, remaining)

    def _post(self, payload: dict, token: CancellationToken | None) -> httpx.Response:
        """POST to the GraphQL endpoint, giving up as soon as token fires.

        With a token the request runs on its own thread so a cancelled fetch
        returns within POLL_INTERVAL. The abandoned request ends on its own
        timeout and its response is discarded.
        """
        timeout = self._request_timeout(token)
        if token is None:
            return self._client.post(GRAPHQL_URL, json=payload, timeout=timeout)

        outcome = {}
        finished = threading.Event()

        def send():
            try:
                outcome["response"] = self._client.post(GRAPHQL_URL, json=payload, timeout=timeout)
            except Exception as e:
                outcome["error"] = e
            finally:
                finished.set()

        threading.Thread(target=send, name="graphql-request", daemon=True).start()
        while not finished.wait(POLL_INTERVAL):
            token.raise_if_cancelled()
        if "error" in outcome:
            raise outcome["error"]
        return outcome["response"]

    def execute(
        self,
        query: str,
        variables: dict | None = None,
        token: CancellationToken | None = None,
    ) -> dict:
        """Execute a GraphQL query and return its "data" object."""
        if token is not None:
            token.raise_if_cancelled()
        self._throttle(token)

        payload = {"query": query}
        if variables is not None:
            payload["variables"] = variables

        t0 = time.time()
        try:
            resp = self._post(payload, token)
        except httpx.TimeoutException as exc:
            if token is not None and token.cancelled:
                raise FetchCancelledError("fetch deadline exceeded during request") from exc
            raise TransportError(f"request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        finally:
            with self._stats_lock:
                self.total_query_time += time.time() - t0
                self.queries += 1

        if token is not None:
            token.raise_if_cancelled()

        if _is_rate_limited(resp):
            retry_after = _parse_retry_after(resp)
            raise RateLimitedError(
                f"rate limited (HTTP {resp.status_code})",
                status_code=resp.status_code,
                retry_after=retry_after,
            )
        if resp.status_code != 200:
            raise TransportError(f"HTTP {resp.status_code}", status_code=resp.status_code)

        try:
            body = resp.json()
        except ValueError as exc:
            raise DecodeError(f"response is not JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise DecodeError("response body is not a JSON object")

        errors = body.get("errors")
        if errors:
            messages = [
                (err.get("message") if isinstance(err, dict) else None) or "unknown GraphQL error"
                for err in errors
            ]
            raise ProtocolError(messages)

        data = body.get("data")
        if not isinstance(data, dict):
            raise DecodeError("response has no data")
        return data

    def fetch_users(
        self,
        logins: list[str],
        date_from: datetime,
        date_to: datetime,
        token: CancellationToken | None = None,
    ) -> list[UserRecord]:
        """Fetch profiles for up to one batch of logins in a single query.

        Records follow the order of logins. Logins that resolve to nothing are
        skipped; organizations come back as records with an empty login.
        """
        if not logins:
            return []

        query = _build_users_query(logins)
        variables = {"from": _format_datetime(date_from), "to": _format_datetime(date_to)}
        data = self.execute(query, variables, token=token)

        records: list[UserRecord] = []
        for i, login in enumerate(logins):
            alias = _make_alias(i)
            if alias not in data:
                raise DecodeError(f"response is missing {alias} ({login})")
            node = data[alias]
            if node is None:
                logger.debug("No GitHub account for login %s", login)
                continue
            if not isinstance(node, dict):
                raise DecodeError(f"unexpected value for {alias} ({login}): {node!r}")
            try:
                records.append(_parse_user(node))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                raise DecodeError(f"could not decode user {login}: {exc}") from exc
        return records

    def close(self):
        self._client.close()
