"""Dominant-language selection from per-repository language byte counts."""

from .language_colors import DEFAULT_LANGUAGE_COLOR, LanguageCatalog, get_catalog
from .models import UNKNOWN_LANGUAGE, LanguageStat


def tally_language_bytes(repository_nodes: list[dict] | None) -> dict[str, int]:
    """Sum language sizes across repositories.

    Each node is a GraphQL repository object shaped like
    ``{"languages": {"edges": [{"size": 123, "node": {"name": "Go"}}]}}``.
    Missing or null sub-objects count as no languages.
    """
    totals: dict[str, int] = {}
    for repo in repository_nodes or []:
        if not repo:
            continue
        edges = (repo.get("languages") or {}).get("edges") or []
        for edge in edges:
            if not edge:
                continue
            name = (edge.get("node") or {}).get("name")
            if not name:
                continue
            totals[name] = totals.get(name, 0) + int(edge.get("size") or 0)
    return totals


def resolve_dominant_language(
    language_bytes: dict[str, int], catalog: LanguageCatalog | None = None
) -> LanguageStat:
    """Pick the language with the most bytes.

    Ties go to the alphabetically first name, so the answer never depends on
    dict ordering. With no language above zero bytes the result is Unknown
    with the default color.
    """
    best_name = None
    best_size = 0
    for name in sorted(language_bytes):
        size = language_bytes[name]
        if size > best_size:
            best_name = name
            best_size = size

    if best_name is None:
        return LanguageStat(UNKNOWN_LANGUAGE, DEFAULT_LANGUAGE_COLOR)

    if catalog is None:
        catalog = get_catalog()
    return LanguageStat(best_name, catalog.lookup(best_name))
