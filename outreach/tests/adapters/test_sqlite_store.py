"""Integration tests for the SQLite entity store."""

import asyncio
from pathlib import Path

import pytest

from outreach.adapters.store.sqlite import SQLiteEntityStore
from outreach.core.errors import DuplicateKeyError, NotFoundError
from outreach.core.identifiers import RecordResolver
from outreach.core.models import EntityKind
from outreach.core.query import Query

CONTACT = EntityKind.CONTACT
REGISTRATION = EntityKind.REGISTRATION
NEWSLETTER = EntityKind.NEWSLETTER


@pytest.fixture
async def store(tmp_path: Path) -> SQLiteEntityStore:
    """A store backed by a fresh database file."""
    store = SQLiteEntityStore(str(tmp_path / "outreach.db"))
    yield store
    await store.close()


def subscription(email: str, timestamp: str, active: bool = True, **extra) -> dict:
    document = {
        "subscription_id": f"sub-{email}",
        "email": email,
        "is_active": active,
        "metadata": {
            "timestamp": timestamp,
            "status": "subscribed" if active else "unsubscribed",
        },
    }
    document.update(extra)
    return document


@pytest.mark.asyncio
class TestWrites:
    async def test_create_assigns_id_and_timestamps(self, store: SQLiteEntityStore) -> None:
        stored = await store.create(
            CONTACT, {"contact_id": "c-1", "metadata": {"timestamp": "2025-01-01"}}
        )

        assert len(stored["id"]) == 24
        assert stored["created_at"] == stored["updated_at"]
        assert await store.find_one(CONTACT, {"id": stored["id"]}) == stored

    async def test_unique_fields_are_enforced(self, store: SQLiteEntityStore) -> None:
        await store.create(
            REGISTRATION,
            {"registration_id": "r-1", "email": "a@x.com", "registration_number": "TGS20250001"},
        )

        with pytest.raises(DuplicateKeyError) as exc_info:
            await store.create(
                REGISTRATION,
                {"registration_id": "r-2", "email": "b@x.com", "registration_number": "TGS20250001"},
            )
        assert exc_info.value.field == "registration_number"

        with pytest.raises(DuplicateKeyError) as exc_info:
            await store.create(
                REGISTRATION,
                {"registration_id": "r-3", "email": "a@x.com", "registration_number": "TGS20250001"},
            )
        assert exc_info.value.field == "email"
        assert await store.count_documents(REGISTRATION) == 1

    async def test_concurrent_creates_keep_one(self, store: SQLiteEntityStore) -> None:
        results = await asyncio.gather(
            *(
                store.create(
                    NEWSLETTER,
                    subscription("race@x.com", "2025-01-01", subscription_id=f"sub-{i}"),
                )
                for i in range(5)
            ),
            return_exceptions=True,
        )

        assert sum(isinstance(r, DuplicateKeyError) for r in results) == 4
        assert await store.count_documents(NEWSLETTER) == 1

    async def test_update_applies_dotted_patch(self, store: SQLiteEntityStore) -> None:
        created = await store.create(NEWSLETTER, subscription("a@x.com", "2025-01-01"))

        updated = await store.find_one_and_update(
            NEWSLETTER,
            {"email": "a@x.com", "is_active": True},
            {"is_active": False, "metadata.status": "unsubscribed"},
        )

        assert updated is not None
        assert updated["id"] == created["id"]
        assert updated["created_at"] == created["created_at"]
        assert updated["metadata"] == {"timestamp": "2025-01-01", "status": "unsubscribed"}

    async def test_update_guard_acts_as_compare_and_set(
        self, store: SQLiteEntityStore
    ) -> None:
        await store.create(NEWSLETTER, subscription("a@x.com", "2025-01-01"))
        guard = {"email": "a@x.com", "is_active": True}

        first, second = await asyncio.gather(
            store.find_one_and_update(NEWSLETTER, guard, {"is_active": False}),
            store.find_one_and_update(NEWSLETTER, guard, {"is_active": False}),
        )

        assert [first is None, second is None].count(True) == 1

    async def test_update_to_taken_value(self, store: SQLiteEntityStore) -> None:
        await store.create(NEWSLETTER, subscription("a@x.com", "2025-01-01"))
        other = await store.create(NEWSLETTER, subscription("b@x.com", "2025-01-02"))

        with pytest.raises(DuplicateKeyError):
            await store.find_one_and_update(
                NEWSLETTER, {"id": other["id"]}, {"email": "a@x.com"}
            )
        assert (await store.find_one(NEWSLETTER, {"id": other["id"]}))["email"] == "b@x.com"

    async def test_delete(self, store: SQLiteEntityStore) -> None:
        created = await store.create(CONTACT, {"contact_id": "c-1"})

        deleted = await store.find_one_and_delete(CONTACT, {"contact_id": "c-1"})

        assert deleted == created
        assert await store.find_one_and_delete(CONTACT, {"contact_id": "c-1"}) is None


@pytest.mark.asyncio
class TestReads:
    @pytest.fixture
    async def populated(self, store: SQLiteEntityStore) -> SQLiteEntityStore:
        await store.create(NEWSLETTER, subscription("old@x.com", "2025-01-01T00:00:00"))
        await store.create(
            NEWSLETTER, subscription("mid@x.com", "2025-02-01T00:00:00", active=False)
        )
        await store.create(NEWSLETTER, subscription("new_100%@x.com", "2025-03-01T00:00:00"))
        return store

    async def test_sort_skip_limit(self, populated: SQLiteEntityStore) -> None:
        newest = await populated.find(NEWSLETTER, limit=2)
        oldest = await populated.find(NEWSLETTER, descending=False, skip=1, limit=5)

        assert [d["email"] for d in newest] == ["new_100%@x.com", "mid@x.com"]
        assert [d["email"] for d in oldest] == ["mid@x.com", "new_100%@x.com"]

    async def test_boolean_filter(self, populated: SQLiteEntityStore) -> None:
        active = await populated.find(NEWSLETTER, Query(equals={"is_active": True}))
        assert {d["email"] for d in active} == {"old@x.com", "new_100%@x.com"}
        assert await populated.count_documents(
            NEWSLETTER, Query(equals={"is_active": False})
        ) == 1

    async def test_search_is_case_insensitive(self, populated: SQLiteEntityStore) -> None:
        query = Query(search="OLD@", search_fields=("email",))
        assert [d["email"] for d in await populated.find(NEWSLETTER, query)] == ["old@x.com"]

    async def test_search_treats_wildcards_literally(
        self, populated: SQLiteEntityStore
    ) -> None:
        percent = Query(search="100%", search_fields=("email",))
        underscore = Query(search="w_1", search_fields=("email",))
        assert await populated.count_documents(NEWSLETTER, percent) == 1
        assert await populated.count_documents(NEWSLETTER, underscore) == 1
        assert await populated.count_documents(
            NEWSLETTER, Query(search="%", search_fields=("email",))
        ) == 1

    async def test_aggregate_nested_field(self, populated: SQLiteEntityStore) -> None:
        counts = await populated.aggregate(NEWSLETTER, "metadata.status")
        assert counts == {"subscribed": 2, "unsubscribed": 1}

    async def test_invalid_field_path(self, populated: SQLiteEntityStore) -> None:
        with pytest.raises(ValueError, match="Invalid field path"):
            await populated.find(NEWSLETTER, sort="metadata.timestamp; DROP TABLE x")

    async def test_resolver_against_real_store(self, populated: SQLiteEntityStore) -> None:
        resolver = RecordResolver(populated)
        document = await resolver.get(NEWSLETTER, "MID@x.com")
        assert await resolver.get(NEWSLETTER, document["id"]) == document

    async def test_resolver_unknown_internal_id(self, populated: SQLiteEntityStore) -> None:
        resolver = RecordResolver(populated)
        with pytest.raises(NotFoundError):
            await resolver.get(NEWSLETTER, "65f1c0ffee00112233445566")


@pytest.mark.asyncio
async def test_data_survives_reopen(tmp_path: Path) -> None:
    path = str(tmp_path / "outreach.db")
    first = SQLiteEntityStore(path)
    await first.create(CONTACT, {"contact_id": "c-1"})
    await first.close()

    second = SQLiteEntityStore(path)
    try:
        assert await second.count_documents(CONTACT) == 1
    finally:
        await second.close()
