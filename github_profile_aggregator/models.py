"""Data models and constants for profile aggregation."""

from dataclasses import dataclass, field
from datetime import date

DEFAULT_MAX_BATCH_SIZE = 10  # users per GraphQL query, keeps query complexity under GitHub's limits
UNKNOWN_LANGUAGE = "Unknown"


@dataclass(frozen=True)
class Chunk:
    """A contiguous slice of the caller's identifiers, queried in one call."""

    index: int
    start: int
    items: tuple

    @property
    def end(self) -> int:
        return self.start + len(self.items)


@dataclass(frozen=True)
class LanguageStat:
    name: str
    color: str


@dataclass(frozen=True)
class Contribution:
    """Contributions made on one calendar day."""

    day: date
    count: int


@dataclass
class UserRecord:
    """Profile of a single user as returned by one batch query."""

    login: str
    display_name: str = ""
    avatar_url: str = ""
    total_contributions: int = 0
    commit_count: int = 0
    issue_count: int = 0
    pull_request_count: int = 0
    review_count: int = 0
    contributions: list[Contribution] = field(default_factory=list)
    language_bytes: dict[str, int] = field(default_factory=dict)
    language: LanguageStat | None = None

    def to_dict(self) -> dict:
        return {
            "login": self.login,
            "name": self.display_name,
            "avatar_url": self.avatar_url,
            "total_contributions": self.total_contributions,
            "commits": self.commit_count,
            "issues": self.issue_count,
            "pull_requests": self.pull_request_count,
            "reviews": self.review_count,
            "contributions": [{"date": c.day.isoformat(), "count": c.count} for c in self.contributions],
            "language": (
                {"name": self.language.name, "color": self.language.color}
                if self.language
                else None
            ),
        }


@dataclass
class ChunkOutcome:
    """Result of querying one chunk: records on success, error on failure."""

    index: int
    start: int
    end: int
    records: list[UserRecord] | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
