"""Fetch enriched GitHub user profiles in concurrent, order-preserving batches."""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from .batching import CancellationToken, assemble_results, execute_batches, plan_batches
from .github import GitHubClient
from .graphql import GraphQLClient
from .language_colors import LanguageCatalog
from .languages import resolve_dominant_language
from .models import Chunk, UserRecord
from .settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(days=365)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _resolve_window(date_from: datetime | None, date_to: datetime | None) -> tuple[datetime, datetime]:
    """Default to the year ending now; naive datetimes are taken as UTC."""
    date_to = _as_utc(date_to) if date_to else datetime.now(timezone.utc)
    date_from = _as_utc(date_from) if date_from else date_to - DEFAULT_WINDOW
    if date_from > date_to:
        raise ValueError(f"date_from ({date_from}) is after date_to ({date_to})")
    return date_from, date_to


def _is_user_id(identifier) -> bool:
    return isinstance(identifier, int) and not isinstance(identifier, bool)


def _resolve_logins(identifiers: Sequence[str | int], directory: GitHubClient | None) -> list[str]:
    """Turn numeric ids into logins, keeping positions; ids with no account are dropped."""
    user_ids = [i for i in identifiers if _is_user_id(i)]
    if not user_ids:
        return [str(i) for i in identifiers]

    owns_directory = directory is None
    directory = directory or GitHubClient()
    try:
        resolved = dict(zip(user_ids, directory.get_logins(user_ids)))
    finally:
        if owns_directory:
            directory.close()

    logins = []
    for identifier in identifiers:
        if _is_user_id(identifier):
            login = resolved[identifier]
            if login is None:
                logger.info("Skipping unknown GitHub user id %s", identifier)
                continue
            logins.append(login)
        else:
            logins.append(str(identifier))
    return logins


def fetch_user_profiles(
    identifiers: Sequence[str | int],
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    *,
    client: GraphQLClient | None = None,
    directory: GitHubClient | None = None,
    max_batch_size: int | None = None,
    max_concurrency: int | None = None,
    timeout: float | None = None,
    token: CancellationToken | None = None,
    catalog: LanguageCatalog | None = None,
) -> list[UserRecord]:
    """Fetch profiles for identifiers, returned in the same order.

    Identifiers are logins or numeric GitHub user ids. Contribution counts
    cover [date_from, date_to], by default the last year. Organizations and
    unknown accounts are left out; anything else is all-or-nothing: if any
    batch fails, BatchFetchError (BatchCancelledError on cancellation or
    timeout) is raised and no profiles are returned.
    """
    if not identifiers:
        return []

    settings = get_settings()
    date_from, date_to = _resolve_window(date_from, date_to)
    if max_batch_size is None:
        max_batch_size = settings.max_batch_size
    if max_concurrency is None:
        max_concurrency = settings.max_concurrent_batches
    if max_batch_size < 1:
        raise ValueError(f"max_batch_size must be positive, got {max_batch_size}")
    if max_concurrency is not None and max_concurrency < 1:
        raise ValueError(f"max_concurrency must be positive, got {max_concurrency}")
    token = token or CancellationToken(timeout)

    logins = _resolve_logins(identifiers, directory)
    chunks = plan_batches(logins, max_batch_size)
    if not chunks:
        return []
    logger.info("Fetching %d users in %d batches", len(logins), len(chunks))

    owns_client = client is None
    client = client or GraphQLClient()

    def query(chunk: Chunk, chunk_token: CancellationToken) -> list[UserRecord]:
        return client.fetch_users(list(chunk.items), date_from, date_to, token=chunk_token)

    try:
        outcomes = execute_batches(chunks, query, token=token, max_workers=max_concurrency)
    finally:
        if owns_client:
            client.close()

    records = assemble_results(outcomes, len(chunks))
    for record in records:
        record.language = resolve_dominant_language(record.language_bytes, catalog)
    return records
