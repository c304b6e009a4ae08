"""Identifier generation and multi-key record resolution.

Records can be addressed by several keys: the public token handed to
users, a business key (registration number, email) and the store's
internal id. The accepted keys for each collection are declared once in
RESOLUTION_ORDER and evaluated by RecordResolver for every get, update
and delete, so all admin operations agree on what an identifier means.
"""

import logging
import re
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .errors import NotFoundError
from .models import EntityKind
from .ports import EntityStorePort, Predicate

logger = logging.getLogger(__name__)

_INTERNAL_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


def new_token() -> str:
    """Generate a public record token."""
    return str(uuid.uuid4())


def looks_like_internal_id(value: str) -> bool:
    """True if ``value`` has the shape of a store-assigned id."""
    return bool(_INTERNAL_ID_PATTERN.match(value))


def _identity(value: str) -> str:
    return value


def _always(value: str) -> bool:
    return bool(value)


@dataclass(frozen=True)
class KeyCandidate:
    """One way of interpreting an identifier.

    Attributes:
        field: Document field the identifier is matched against.
        normalize: Applied to the identifier before matching.
        accepts: Guard deciding whether this candidate is tried at all.
    """

    field: str
    normalize: Callable[[str], str] = _identity
    accepts: Callable[[str], bool] = _always


_INTERNAL_ID = KeyCandidate(
    "id", normalize=str.lower, accepts=looks_like_internal_id
)

# Candidates per collection, tried in order; the first match wins.
RESOLUTION_ORDER: Mapping[EntityKind, tuple[KeyCandidate, ...]] = {
    EntityKind.CONTACT: (
        KeyCandidate("contact_id"),
        _INTERNAL_ID,
    ),
    EntityKind.REGISTRATION: (
        KeyCandidate("registration_id"),
        KeyCandidate("registration_number", normalize=str.upper),
        _INTERNAL_ID,
    ),
    EntityKind.NEWSLETTER: (
        KeyCandidate("subscription_id"),
        KeyCandidate("email", normalize=str.lower, accepts=lambda v: "@" in v),
        _INTERNAL_ID,
    ),
    EntityKind.EMAIL_TEMPLATE: (
        KeyCandidate("template_id"),
        _INTERNAL_ID,
    ),
}


class RecordResolver:
    """Resolves identifiers to records using RESOLUTION_ORDER.

    Updates and deletes first resolve the identifier to the document's
    internal id and then issue a single atomic store call keyed by it,
    so a concurrent delete surfaces as NotFoundError instead of a
    partial write.
    """

    def __init__(
        self,
        store: EntityStorePort,
        order: Mapping[EntityKind, tuple[KeyCandidate, ...]] = RESOLUTION_ORDER,
    ):
        self.store = store
        self.order = order

    async def find(self, kind: EntityKind, identifier: str) -> dict[str, Any] | None:
        """Return the document ``identifier`` refers to, or None."""
        identifier = (identifier or "").strip()
        if not identifier:
            return None

        for candidate in self.order[kind]:
            if not candidate.accepts(identifier):
                continue
            document = await self.store.find_one(
                kind, {candidate.field: candidate.normalize(identifier)}
            )
            if document is not None:
                logger.debug(
                    f"Resolved {kind.value} identifier via {candidate.field}",
                    extra={"kind": kind.value, "field": candidate.field},
                )
                return document
        return None

    async def get(self, kind: EntityKind, identifier: str) -> dict[str, Any]:
        """Return the document ``identifier`` refers to.

        Raises:
            NotFoundError: If no candidate matches.
        """
        document = await self.find(kind, identifier)
        if document is None:
            raise NotFoundError(kind.value, identifier)
        return document

    async def resolve_predicate(self, kind: EntityKind, identifier: str) -> Predicate:
        """Return a predicate selecting exactly the record ``identifier`` names.

        Raises:
            NotFoundError: If no candidate matches.
        """
        document = await self.get(kind, identifier)
        return {"id": document["id"]}

    async def update(
        self,
        kind: EntityKind,
        identifier: str,
        patch: Mapping[str, Any],
        guard: Predicate | None = None,
    ) -> dict[str, Any] | None:
        """Apply ``patch`` to the identified record in one atomic call.

        Args:
            kind: Collection of the record.
            identifier: Any accepted key for the record.
            patch: Dotted-path field updates.
            guard: Extra conditions that must still hold at write time.

        Returns:
            The updated document, or None if ``guard`` no longer held.

        Raises:
            NotFoundError: If the identifier does not resolve, or the record
                disappeared before the write and no guard was given.
        """
        predicate = dict(await self.resolve_predicate(kind, identifier))
        if guard:
            predicate.update(guard)
        updated = await self.store.find_one_and_update(kind, predicate, patch)
        if updated is None and not guard:
            raise NotFoundError(kind.value, identifier)
        return updated

    async def delete(self, kind: EntityKind, identifier: str) -> dict[str, Any]:
        """Delete the identified record and return it.

        Raises:
            NotFoundError: If the identifier does not resolve.
        """
        predicate = await self.resolve_predicate(kind, identifier)
        deleted = await self.store.find_one_and_delete(kind, predicate)
        if deleted is None:
            raise NotFoundError(kind.value, identifier)
        return deleted
