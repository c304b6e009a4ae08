"""Query description shared by the core and the store adapters.

A Query is a small, backend-neutral filter: exact-match conditions on
dotted field paths combined with AND, plus an optional free-text term
matched case-insensitively as a substring of any of a fixed set of
fields. ``Query.matches`` is the reference semantics; SQL adapters
translate the same structure into WHERE clauses.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

_MISSING = object()

# Default sort key for listings: creation timestamp held in the metadata.
DEFAULT_SORT = "metadata.timestamp"


def get_path(document: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Return the value at a dotted path inside a nested document."""
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return default
        current = current.get(part, _MISSING)
        if current is _MISSING:
            return default
    return current


def set_path(document: dict[str, Any], path: str, value: Any) -> None:
    """Set the value at a dotted path, creating intermediate dicts."""
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        nested = current.get(part)
        if not isinstance(nested, dict):
            nested = {}
            current[part] = nested
        current = nested
    current[parts[-1]] = value


def apply_patch(document: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Return a deep-enough copy of ``document`` with ``patch`` applied.

    Patch keys are dotted paths; a value replaces whatever was there.
    """
    updated = _copy_nested(document)
    for path, value in patch.items():
        set_path(updated, path, _copy_nested(value) if isinstance(value, Mapping) else value)
    return updated


def _copy_nested(value: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: _copy_nested(item) if isinstance(item, Mapping) else item
        for key, item in value.items()
    }


@dataclass(frozen=True)
class Query:
    """Backend-neutral filter for find / count / aggregate.

    Attributes:
        equals: Dotted path -> required value. All must hold.
        search: Free-text term; ignored when empty.
        search_fields: Fields searched for ``search``; any may match.
    """

    equals: Mapping[str, Any] = field(default_factory=dict)
    search: str | None = None
    search_fields: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Freeze the equality conditions."""
        object.__setattr__(self, "equals", MappingProxyType(dict(self.equals)))
        if self.search is not None and not self.search.strip():
            object.__setattr__(self, "search", None)

    @property
    def has_search(self) -> bool:
        return bool(self.search) and bool(self.search_fields)

    def matches(self, document: Mapping[str, Any]) -> bool:
        """Evaluate this query against an in-memory document."""
        for path, expected in self.equals.items():
            if get_path(document, path, _MISSING) != expected:
                return False

        if self.has_search:
            assert self.search is not None
            needle = self.search.lower()
            return any(
                needle in str(get_path(document, path, "") or "").lower()
                for path in self.search_fields
            )
        return True


__all__ = ["DEFAULT_SORT", "Query", "apply_patch", "get_path", "set_path"]
