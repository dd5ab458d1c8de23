import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from driveschool.cache.backends import InMemoryCacheBackend
from driveschool.cache.layer import CacheLayer, CircuitBreaker, CircuitState
from driveschool.core.exceptions import StorageUnavailableException, ValidationException
from driveschool.services.content_backend import InMemoryContentBackend, SqlContentBackend
from driveschool.services.content_store import VersionedContentStore

NOW = datetime(2025, 6, 18, 12, 0, tzinfo=timezone.utc)


class RacingBackend(InMemoryContentBackend):
    """Lets another writer commit right before our guarded write lands."""

    def __init__(self, interleave: int = 1) -> None:
        super().__init__()
        self.interleave = interleave
        self.guarded_writes = 0

    async def update_if_version(self, **kwargs):
        self.guarded_writes += 1
        if self.interleave > 0:
            self.interleave -= 1
            current = await self.get_item(kwargs["page"], kwargs["key"])
            await super().update_if_version(
                page=kwargs["page"],
                key=kwargs["key"],
                observed_version=current["version"],
                type="text",
                value={"type": "text", "text": "sneaky"},
                updated_by="other-editor",
                updated_at=NOW,
            )
        return await super().update_if_version(**kwargs)


class FlakyDeleteCache(InMemoryCacheBackend):
    """Fails the next `failures` deletes, then behaves."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def delete(self, key):
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("cache connection reset")
        return await super().delete(key)


class DownBackend(InMemoryContentBackend):
    def __init__(self, exc):
        super().__init__()
        self.exc = exc

    async def get_item(self, page, key):
        raise self.exc

    async def list_page(self, page):
        raise self.exc


@pytest.mark.asyncio
async def test_first_save_creates_version_one(content_store):
    result = await content_store.save("home", "hero", "Learn to drive", "text", "editor-1")

    assert result.success is True
    assert result.version == 1
    item = await content_store.get_item("home", "hero")
    assert item.value.text == "Learn to drive"
    assert item.updated_by == "editor-1"


@pytest.mark.asyncio
async def test_stale_editor_gets_conflict_and_keeps_winner(content_store):
    await content_store.save("home", "hero", "v1", "text", "editor-a")

    won = await content_store.save("home", "hero", "from A", "text", "editor-a", expected_version=1)
    lost = await content_store.save("home", "hero", "from B", "text", "editor-b", expected_version=1)

    assert (won.success, won.version) == (True, 2)
    assert lost.success is False
    assert lost.conflict is True
    assert lost.version == 2
    item = await content_store.get_item("home", "hero")
    assert item.value.text == "from A"
    assert item.version == 2


@pytest.mark.asyncio
async def test_concurrent_saves_on_same_version_have_one_winner(content_store):
    await content_store.save("home", "hero", "v1", "text", "editor-a")

    results = await asyncio.gather(
        *(
            content_store.save("home", "hero", f"edit {i}", "text", f"editor-{i}", expected_version=1)
            for i in range(5)
        )
    )

    winners = [r for r in results if r.success]
    assert len(winners) == 1
    assert winners[0].version == 2
    assert all(r.conflict and r.version == 2 for r in results if not r.success)
    history = await content_store.history("home", "hero")
    assert [v.version for v in history] == [2, 1]


@pytest.mark.asyncio
async def test_versions_increase_by_one_per_committed_save(content_store):
    versions = []
    for i in range(4):
        result = await content_store.save("faq", "q1", f"answer {i}", "text", "editor-1")
        versions.append(result.version)

    assert versions == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_read_after_save_sees_new_value(content_store):
    await content_store.save("home", "hero", "old", "text", "editor-1")
    assert (await content_store.load("home"))["hero"].value.text == "old"
    assert (await content_store.get_item("home", "hero")).value.text == "old"

    await content_store.save("home", "hero", "new", "text", "editor-1", expected_version=1)

    assert (await content_store.load("home"))["hero"].value.text == "new"
    assert (await content_store.get_item("home", "hero")).value.text == "new"


@pytest.mark.asyncio
async def test_conflict_is_confirmed_against_backend_not_cache(content_store, content_backend):
    await content_store.save("home", "hero", "v1", "text", "editor-1")
    # Warm the cache at version 1, then advance the backend out of band
    await content_store.get_item("home", "hero")
    await content_backend.update_if_version(
        page="home",
        key="hero",
        observed_version=1,
        type="text",
        value={"type": "text", "text": "v2"},
        updated_by="other",
        updated_at=NOW,
    )

    result = await content_store.save("home", "hero", "v3", "text", "editor-1", expected_version=2)

    assert (result.success, result.version) == (True, 3)


@pytest.mark.asyncio
async def test_lost_guard_without_expectation_retries_with_fresh_version():
    backend = RacingBackend(interleave=1)
    store = VersionedContentStore(backend, CacheLayer(InMemoryCacheBackend()))
    await store.save("home", "hero", "v1", "text", "editor-1")

    result = await store.save("home", "hero", "mine", "text", "editor-1")

    assert (result.success, result.version) == (True, 3)
    assert backend.guarded_writes == 2
    assert (await store.get_item("home", "hero")).value.text == "mine"


@pytest.mark.asyncio
async def test_lost_guard_with_expectation_is_conflict():
    backend = RacingBackend(interleave=1)
    store = VersionedContentStore(backend, CacheLayer(InMemoryCacheBackend()))
    await store.save("home", "hero", "v1", "text", "editor-1")

    result = await store.save("home", "hero", "mine", "text", "editor-1", expected_version=1)

    assert result.conflict is True
    assert result.version == 2
    assert (await store.get_item("home", "hero")).value.text == "sneaky"


@pytest.mark.asyncio
async def test_write_attempts_are_bounded():
    backend = RacingBackend(interleave=10)
    store = VersionedContentStore(backend, CacheLayer(InMemoryCacheBackend()), max_write_attempts=2)
    await store.save("home", "hero", "v1", "text", "editor-1")

    result = await store.save("home", "hero", "mine", "text", "editor-1")

    assert result.conflict is True
    assert backend.guarded_writes == 2


@pytest.mark.asyncio
async def test_expected_zero_means_must_not_exist(content_store):
    created = await content_store.save("home", "cta", "Book now", "text", "editor-1", expected_version=0)
    again = await content_store.save("home", "cta", "Book later", "text", "editor-2", expected_version=0)

    assert (created.success, created.version) == (True, 1)
    assert again.conflict is True
    assert again.version == 1


@pytest.mark.asyncio
async def test_expectation_on_missing_item_is_conflict(content_store):
    result = await content_store.save("home", "ghost", "x", "text", "editor-1", expected_version=3)

    assert result.conflict is True
    assert result.version is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "page,key,value,content_type,editor",
    [
        ("", "hero", "x", "text", "e"),
        ("home", "he*ro", "x", "text", "e"),
        ("home", "hero", "x", "text", ""),
        ("home", "hero", 42, "text", "e"),
        ("home", "hero", "x", "video", "e"),
        ("home", "hero", "javascript:alert(1)", "image", "e"),
        ("home", "hero", "[1, 2", "json", "e"),
        ("home", "hero", {"type": "image", "url": "/a.png"}, "text", "e"),
    ],
)
async def test_invalid_saves_are_rejected(content_store, page, key, value, content_type, editor):
    with pytest.raises(ValidationException):
        await content_store.save(page, key, value, content_type, editor)


@pytest.mark.asyncio
async def test_negative_expected_version_is_rejected(content_store):
    with pytest.raises(ValidationException):
        await content_store.save("home", "hero", "x", "text", "e", expected_version=-1)


@pytest.mark.asyncio
async def test_typed_values_round_trip(content_store):
    await content_store.save("home", "banner", {"url": "/img/car.png", "alt_text": "Car"}, "image", "e")
    await content_store.save("home", "prices", '{"lesson": 45}', "json", "e")
    await content_store.save("home", "intro", "<p>Hi</p>", "rich_text", "e")

    page = await content_store.load("home")

    assert page["banner"].value.url == "/img/car.png"
    assert page["prices"].value.data == {"lesson": 45}
    assert page["intro"].value.html == "<p>Hi</p>"
    assert {item.type for item in page.values()} == {"image", "json", "rich_text"}


@pytest.mark.asyncio
async def test_history_is_newest_first_and_limited(content_store):
    for i in range(5):
        await content_store.save("faq", "q1", f"a{i}", "text", "editor-1")

    history = await content_store.history("faq", "q1", limit=3)

    assert [v.version for v in history] == [5, 4, 3]
    assert history[0].value.text == "a4"


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, 101])
async def test_history_limit_bounds(content_store, limit):
    with pytest.raises(ValidationException):
        await content_store.history("faq", "q1", limit=limit)


@pytest.mark.asyncio
async def test_restore_creates_new_version_with_old_value(content_store):
    await content_store.save("home", "hero", "first", "text", "editor-1")
    await content_store.save("home", "hero", "second", "text", "editor-1")

    result = await content_store.restore("home", "hero", 1, "editor-2", expected_version=2)

    assert (result.success, result.version) == (True, 3)
    item = await content_store.get_item("home", "hero")
    assert item.value.text == "first"
    assert item.updated_by == "editor-2"
    assert [v.version for v in await content_store.history("home", "hero")] == [3, 2, 1]


@pytest.mark.asyncio
async def test_restore_of_unknown_version_is_validation_error(content_store):
    await content_store.save("home", "hero", "first", "text", "editor-1")

    with pytest.raises(ValidationException):
        await content_store.restore("home", "hero", 9, "editor-1")


@pytest.mark.asyncio
async def test_subscribers_are_notified_after_commit(content_store):
    seen = []

    async def async_listener(change):
        seen.append(("async", change.version, change.restored_from))

    def failing_listener(change):
        raise RuntimeError("listener bug")

    def sync_listener(change):
        seen.append(("sync", change.version, change.restored_from))

    content_store.subscribe(async_listener)
    content_store.subscribe(failing_listener)
    unsubscribe = content_store.subscribe(sync_listener)

    await content_store.save("home", "hero", "first", "text", "editor-1")
    unsubscribe()
    await content_store.restore("home", "hero", 1, "editor-1")

    assert seen == [("async", 1, None), ("sync", 1, None), ("async", 2, 1)]


@pytest.mark.asyncio
async def test_conflict_does_not_notify(content_store):
    seen = []
    content_store.subscribe(seen.append)
    await content_store.save("home", "hero", "first", "text", "editor-1")

    await content_store.save("home", "hero", "stale", "text", "editor-2", expected_version=0)

    assert len(seen) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc", [OperationalError("SELECT 1", {}, Exception("gone")), ConnectionRefusedError("refused")]
)
async def test_backend_outage_is_storage_unavailable(exc):
    store = VersionedContentStore(DownBackend(exc), CacheLayer(InMemoryCacheBackend()))

    with pytest.raises(StorageUnavailableException):
        await store.load("home")
    with pytest.raises(StorageUnavailableException):
        await store.save("home", "hero", "x", "text", "editor-1")


@pytest.mark.asyncio
async def test_malformed_rows_are_skipped(content_store, content_backend):
    await content_store.save("home", "hero", "fine", "text", "editor-1")
    content_backend._items[("home", "broken")] = {
        "page": "home",
        "key": "broken",
        "type": "image",
        "value": {"type": "image", "url": "ftp://nope"},
        "version": 1,
        "updated_by": "editor-1",
        "updated_at": NOW,
    }
    content_backend._items[("home", "mismatch")] = {
        "page": "home",
        "key": "mismatch",
        "type": "json",
        "value": {"type": "text", "text": "hi"},
        "version": 1,
        "updated_by": "editor-1",
        "updated_at": NOW,
    }

    page = await content_store.load("home")

    assert list(page) == ["hero"]


@pytest.mark.asyncio
async def test_poisoned_cache_entry_falls_back_to_backend(content_store, cache):
    await content_store.save("home", "hero", "fine", "text", "editor-1")
    await cache.set(cache.keys.content_item("home", "hero"), {"garbage": True}, ttl=60)

    item = await content_store.get_item("home", "hero")

    assert item.value.text == "fine"


@pytest.mark.asyncio
async def test_sql_backend_versions_and_history(session_factory, cache):
    store = VersionedContentStore(SqlContentBackend(session_factory), cache)

    first = await store.save("home", "hero", "v1", "text", "editor-1", expected_version=0)
    second = await store.save("home", "hero", "v2", "text", "editor-1", expected_version=1)
    stale = await store.save("home", "hero", "v2b", "text", "editor-2", expected_version=1)
    restored = await store.restore("home", "hero", 1, "editor-1", expected_version=2)

    assert [first.version, second.version, restored.version] == [1, 2, 3]
    assert stale.conflict is True and stale.version == 2
    item = await store.get_item("home", "hero")
    assert item.value.text == "v1"
    assert item.updated_at.tzinfo is not None
    assert [v.version for v in await store.history("home", "hero")] == [3, 2, 1]


@pytest.mark.asyncio
async def test_save_while_cache_circuit_is_open_is_not_shadowed(clock):
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=clock)
    cache = CacheLayer(InMemoryCacheBackend(clock=clock), circuit_breaker=breaker)
    store = VersionedContentStore(InMemoryContentBackend(), cache)
    await store.save("home", "hero", "v1", "text", "editor-1")
    assert (await store.load("home"))["hero"].version == 1

    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    result = await store.save("home", "hero", "v2", "text", "editor-1", expected_version=1)
    assert (result.success, result.version) == (True, 2)
    assert cache.is_pending(cache.keys.content_page("home"))

    assert (await store.load("home"))["hero"].version == 2

    clock.advance(31)
    assert (await store.load("home"))["hero"].version == 2
    assert breaker.state == CircuitState.CLOSED
    assert cache.pending_invalidations == 0


@pytest.mark.asyncio
async def test_failed_invalidation_is_retried_before_next_read():
    cache_backend = FlakyDeleteCache(failures=0)
    cache = CacheLayer(cache_backend)
    store = VersionedContentStore(InMemoryContentBackend(), cache)
    await store.save("home", "hero", "v1", "text", "editor-1")
    await store.load("home")
    await store.get_item("home", "hero")

    cache_backend.failures = 2
    await store.save("home", "hero", "v2", "text", "editor-1", expected_version=1)
    assert cache.get_stats()["invalidation_failures"] == 2

    assert (await store.load("home"))["hero"].version == 2
    assert (await store.get_item("home", "hero")).version == 2
    assert cache.pending_invalidations == 0
