"""Fetch GitHub user profiles in concurrent, order-preserving GraphQL batches.

Each profile carries contribution counts and a per-day calendar for a time
window, plus the user's dominant language with its display color.
"""

from .cli import main
from .errors import BatchCancelledError, BatchFetchError, ProfileFetchError
from .models import Contribution, LanguageStat, UserRecord
from .profiles import fetch_user_profiles

__all__ = [
    "main",
    "fetch_user_profiles",
    "UserRecord",
    "LanguageStat",
    "Contribution",
    "ProfileFetchError",
    "BatchFetchError",
    "BatchCancelledError",
]

if __name__ == "__main__":
    main()
