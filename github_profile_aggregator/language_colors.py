"""Language name to display color lookup, backed by a linguist-style colors.json."""

import json
import logging
import threading
from collections.abc import Mapping
from importlib.resources import files
from pathlib import Path
from types import MappingProxyType

from .settings import get_settings

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE_COLOR = "#586069"  # GitHub gray


def _default_colors_path() -> Path:
    return Path(str(files(__package__) / "data" / "colors.json"))


def _load_colors(path: Path) -> dict[str, str]:
    """Read {language: {"color": ..., "url": ...}} and keep languages that have a color.

    Any problem with the file yields an empty table; lookups then fall back to the default color.
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        logger.warning("Language colors file not found: %s", path)
        return {}
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read language colors from %s: %s", path, e)
        return {}

    if not isinstance(raw, dict):
        logger.warning("Language colors file %s is not a JSON object", path)
        return {}

    colors = {}
    for name, info in raw.items():
        if not isinstance(info, dict):
            continue
        color = info.get("color")
        if isinstance(color, str) and color:
            colors[name] = color
    return colors


class LanguageCatalog:
    """Read-only language -> color table, loaded once on first lookup."""

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path is not None else _default_colors_path()
        self._colors: Mapping[str, str] | None = None
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._colors is not None

    def _ensure_loaded(self) -> Mapping[str, str]:
        colors = self._colors
        if colors is not None:
            return colors
        with self._lock:
            if self._colors is None:
                self._colors = MappingProxyType(_load_colors(self.path))
                logger.debug("Loaded %d language colors from %s", len(self._colors), self.path)
            return self._colors

    def lookup(self, name: str) -> str:
        return self._ensure_loaded().get(name, DEFAULT_LANGUAGE_COLOR)

    def __len__(self) -> int:
        return len(self._ensure_loaded())


_catalog: LanguageCatalog | None = None
_catalog_lock = threading.Lock()


def get_catalog() -> LanguageCatalog:
    """Get the process-wide catalog, using the configured colors file if any."""
    global _catalog
    if _catalog is None:
        with _catalog_lock:
            if _catalog is None:
                _catalog = LanguageCatalog(get_settings().language_colors_path)
    return _catalog


def get_language_color(name: str) -> str:
    return get_catalog().lookup(name)
