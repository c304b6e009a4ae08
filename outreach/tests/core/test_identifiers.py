"""Tests for multi-key record resolution."""

import pytest

from outreach.core.errors import NotFoundError
from outreach.core.identifiers import (
    KeyCandidate,
    RecordResolver,
    looks_like_internal_id,
    new_token,
)
from outreach.core.models import EntityKind
from outreach.tests.fakes import FakeEntityStore

REGISTRATION = EntityKind.REGISTRATION
NEWSLETTER = EntityKind.NEWSLETTER
CONTACT = EntityKind.CONTACT


@pytest.fixture
def store() -> FakeEntityStore:
    return FakeEntityStore()


@pytest.fixture
def resolver(store: FakeEntityStore) -> RecordResolver:
    return RecordResolver(store)


async def add_registration(store: FakeEntityStore, **fields) -> dict:
    document = {
        "registration_id": new_token(),
        "registration_number": "TGS20250042",
        "email": "grace@example.com",
        "first_name": "Grace",
    }
    document.update(fields)
    return await store.create(REGISTRATION, document)


def test_internal_id_shape() -> None:
    assert looks_like_internal_id("65f1c0ffee00112233445566")
    assert looks_like_internal_id("65F1C0FFEE00112233445566")
    assert not looks_like_internal_id("65f1c0ffee0011223344556")
    assert not looks_like_internal_id("TGS20250042")


def test_tokens_are_unique() -> None:
    assert new_token() != new_token()


@pytest.mark.asyncio
class TestResolve:
    async def test_by_public_token(
        self, store: FakeEntityStore, resolver: RecordResolver
    ) -> None:
        created = await add_registration(store)
        found = await resolver.get(REGISTRATION, created["registration_id"])
        assert found["id"] == created["id"]

    async def test_by_business_key_normalized(
        self, store: FakeEntityStore, resolver: RecordResolver
    ) -> None:
        created = await add_registration(store)
        found = await resolver.get(REGISTRATION, "  tgs20250042\n")
        assert found["id"] == created["id"]

    async def test_by_internal_id(
        self, store: FakeEntityStore, resolver: RecordResolver
    ) -> None:
        created = await add_registration(store)
        found = await resolver.get(REGISTRATION, created["id"].upper())
        assert found["registration_id"] == created["registration_id"]

    async def test_public_token_wins_over_business_key(
        self, store: FakeEntityStore, resolver: RecordResolver
    ) -> None:
        # One record's token equals another record's registration number.
        first = await add_registration(store, registration_number="TGS20250001")
        await add_registration(
            store,
            registration_id="TGS20250001",
            registration_number="TGS20250002",
            email="other@example.com",
        )

        found = await resolver.get(REGISTRATION, "TGS20250001")

        assert found["id"] != first["id"]
        assert found["registration_id"] == "TGS20250001"

    async def test_email_candidate_requires_at_sign(
        self, store: FakeEntityStore, resolver: RecordResolver
    ) -> None:
        await store.create(
            NEWSLETTER, {"subscription_id": new_token(), "email": "reader@example.com"}
        )

        assert await resolver.find(NEWSLETTER, "READER@example.com") is not None
        assert await resolver.find(NEWSLETTER, "reader") is None

    async def test_blank_identifier_resolves_to_nothing(
        self, store: FakeEntityStore, resolver: RecordResolver
    ) -> None:
        await add_registration(store)
        assert await resolver.find(REGISTRATION, "   ") is None

    async def test_unknown_identifier(self, resolver: RecordResolver) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await resolver.get(CONTACT, "missing")
        assert exc_info.value.identifier == "missing"

    async def test_well_formed_internal_id_without_record(
        self, store: FakeEntityStore, resolver: RecordResolver
    ) -> None:
        await add_registration(store)
        unknown = "65f1c0ffee00112233445566"

        with pytest.raises(NotFoundError) as exc_info:
            await resolver.get(REGISTRATION, unknown)
        assert exc_info.value.identifier == unknown

        with pytest.raises(NotFoundError):
            await resolver.update(REGISTRATION, unknown, {"first_name": "Ada"})
        with pytest.raises(NotFoundError):
            await resolver.delete(REGISTRATION, unknown)
        assert len(store.documents(REGISTRATION)) == 1

    async def test_custom_order(self, store: FakeEntityStore) -> None:
        created = await add_registration(store)
        resolver = RecordResolver(
            store, {REGISTRATION: (KeyCandidate("email", normalize=str.lower),)}
        )

        found = await resolver.get(REGISTRATION, "GRACE@example.com")
        assert found["id"] == created["id"]
        assert await resolver.find(REGISTRATION, created["registration_id"]) is None


@pytest.mark.asyncio
class TestMutations:
    async def test_update_by_business_key(
        self, store: FakeEntityStore, resolver: RecordResolver
    ) -> None:
        created = await add_registration(store)

        updated = await resolver.update(REGISTRATION, "TGS20250042", {"first_name": "Ada"})

        assert updated is not None
        assert updated["id"] == created["id"]
        assert updated["first_name"] == "Ada"

    async def test_update_with_failing_guard_returns_none(
        self, store: FakeEntityStore, resolver: RecordResolver
    ) -> None:
        created = await add_registration(store)

        result = await resolver.update(
            REGISTRATION, created["id"], {"first_name": "Ada"}, guard={"first_name": "Alan"}
        )

        assert result is None
        assert store.documents(REGISTRATION)[0]["first_name"] == "Grace"

    async def test_update_unknown(self, resolver: RecordResolver) -> None:
        with pytest.raises(NotFoundError):
            await resolver.update(REGISTRATION, "TGS20259999", {"first_name": "Ada"})

    async def test_delete(self, store: FakeEntityStore, resolver: RecordResolver) -> None:
        created = await add_registration(store)

        deleted = await resolver.delete(REGISTRATION, created["registration_id"])

        assert deleted["id"] == created["id"]
        assert store.documents(REGISTRATION) == []
        with pytest.raises(NotFoundError):
            await resolver.delete(REGISTRATION, created["registration_id"])
