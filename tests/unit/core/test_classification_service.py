import asyncio

import pytest

from conftest import FakeClock, ScriptedProvider, answer_by_keyword, numbered_items
from topicfilter.core.services.classification_service import ClassificationService
from topicfilter.domain.errors import AuthError, CountMismatchError, NetworkError
from topicfilter.domain.events.api_events import BatchDefaulted
from topicfilter.infrastructure.cache.stores import DiskCacheStore, MemoryCacheStore
from topicfilter.infrastructure.cache.ttl_cache import TtlCache
from topicfilter.infrastructure.resilience.api_retry import RetryPolicy

PROGRAMMING = ["programming"]


def make_service(provider: ScriptedProvider, clock: FakeClock, **kwargs) -> ClassificationService:
    kwargs.setdefault("min_interval", 0.0)
    kwargs.setdefault("cache", TtlCache(ttl_seconds=3600, clock=clock))
    return ClassificationService(provider, sleep=clock.sleep, clock=clock, **kwargs)


@pytest.mark.asyncio
async def test_items_are_split_into_fixed_size_batches(fake_clock: FakeClock):
    provider = ScriptedProvider(default=answer_by_keyword("python"))
    service = make_service(provider, fake_clock, batch_size=3)
    items = [f"python lesson {i}" if i % 2 == 0 else f"cooking show {i}" for i in range(7)]

    decisions = await service.classify_many(items, PROGRAMMING)

    assert [len(numbered_items(r)) for r in provider.requests] == [3, 3, 1]
    assert decisions == [True, False, True, False, True, False, True]


@pytest.mark.asyncio
async def test_cached_item_needs_no_provider_call(fake_clock: FakeClock):
    provider = ScriptedProvider(script=["是"])
    service = make_service(provider, fake_clock)

    assert await service.classify_many(["Python教程"], PROGRAMMING) == [True]
    assert provider.calls == 1

    assert await service.classify_many(["Python教程"], PROGRAMMING) == [True]
    assert await service.classify("  python教程 ", PROGRAMMING) is True
    assert provider.calls == 1


@pytest.mark.asyncio
async def test_classification_is_idempotent(fake_clock: FakeClock):
    provider = ScriptedProvider(default=answer_by_keyword("math", "python"))
    service = make_service(provider, fake_clock, batch_size=2)
    items = ["Linear algebra (math) 101", "Best pasta recipe", "Python asyncio", "Football highlights"]

    first = await service.classify_many(items, ["mathematics", "programming"])
    calls_after_first = provider.calls
    second = await service.classify_many(items, ["mathematics", "programming"])

    assert first == second == [True, False, True, False]
    assert provider.calls == calls_after_first == 2


@pytest.mark.asyncio
async def test_exhausted_retries_fail_open_and_are_not_cached(fake_clock: FakeClock):
    events = []
    provider = ScriptedProvider(default=NetworkError("connection reset"))
    service = make_service(provider, fake_clock, retry_policy=RetryPolicy(max_attempts=3), listener=events.append)

    decisions = await service.classify_many(["Python", "Cooking"], PROGRAMMING)

    assert decisions == [True, True]
    assert provider.calls == 3
    assert len(service.cache) == 0
    assert any(isinstance(e, BatchDefaulted) and e.batch_size == 2 for e in events)


@pytest.mark.asyncio
async def test_protocol_violation_is_retried(fake_clock: FakeClock):
    provider = ScriptedProvider(script=["yes", "yes, no"])
    service = make_service(provider, fake_clock)

    assert await service.classify_many(["Python", "Cooking"], PROGRAMMING) == [True, False]
    assert provider.calls == 2
    assert service.cache.get("cooking") is False


@pytest.mark.asyncio
async def test_one_failed_batch_does_not_affect_others(fake_clock: FakeClock):
    provider = ScriptedProvider(script=[CountMismatchError(2, 1), "no"])
    service = make_service(provider, fake_clock, batch_size=2, retry_policy=RetryPolicy(max_attempts=1))

    decisions = await service.classify_many(["a", "b", "c"], PROGRAMMING)

    assert decisions == [True, True, False]
    assert service.cache.get("a") is None
    assert service.cache.get("c") is False


@pytest.mark.asyncio
async def test_auth_error_fails_open_remaining_batches_without_calls(fake_clock: FakeClock):
    provider = ScriptedProvider(default=AuthError("invalid key"))
    service = make_service(provider, fake_clock, batch_size=1)

    assert await service.classify_many(["a", "b", "c"], PROGRAMMING) == [True, True, True]
    assert provider.calls == 1


@pytest.mark.asyncio
async def test_deadline_fails_open_without_waiting_it_out(fake_clock: FakeClock):
    provider = ScriptedProvider(default=NetworkError("down"))
    service = make_service(provider, fake_clock, batch_size=1, retry_policy=RetryPolicy(error_delay=5.0))

    decisions = await service.classify_many(["a", "b"], PROGRAMMING, timeout=1.0)

    assert decisions == [True, True]
    assert provider.calls == 1
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_empty_items_and_duplicates(fake_clock: FakeClock):
    provider = ScriptedProvider(default=answer_by_keyword("python"))
    service = make_service(provider, fake_clock)

    decisions = await service.classify_many(["", "Python", "  python ", "   ", "PYTHON", "Cooking"], PROGRAMMING)

    assert decisions == [True, True, True, True, True, False]
    assert provider.calls == 1
    assert numbered_items(provider.requests[0]) == ["Python", "Cooking"]


@pytest.mark.asyncio
async def test_all_empty_items_make_no_call(fake_clock: FakeClock):
    provider = ScriptedProvider()
    service = make_service(provider, fake_clock)
    assert await service.classify_many(["", "  "], PROGRAMMING) == [True, True]
    assert await service.classify_many([], PROGRAMMING) == []
    assert provider.calls == 0


@pytest.mark.asyncio
async def test_items_are_truncated(fake_clock: FakeClock):
    provider = ScriptedProvider(default="no")
    service = make_service(provider, fake_clock, max_item_length=10)

    await service.classify_many(["abcdefghijKLMNOP"], PROGRAMMING)

    assert numbered_items(provider.requests[0]) == ["abcdefghij"]
    assert service.cache.get("abcdefghij") is False


@pytest.mark.asyncio
async def test_topic_change_invalidates_cache(fake_clock: FakeClock):
    provider = ScriptedProvider(script=["yes", "no"])
    service = make_service(provider, fake_clock)

    assert await service.classify("Chess openings", ["chess"]) is True
    assert await service.classify("Chess openings", ["Chess"]) is True  # same set
    assert await service.classify("Chess openings", ["cooking"]) is False
    assert provider.calls == 2


@pytest.mark.asyncio
async def test_empty_topics_are_rejected(fake_clock: FakeClock):
    service = make_service(ScriptedProvider(), fake_clock)
    with pytest.raises(ValueError):
        await service.classify_many(["Python"], [" "])


@pytest.mark.asyncio
async def test_cache_persistence_round_trip(fake_clock: FakeClock):
    store = MemoryCacheStore()
    provider = ScriptedProvider(script=["是,否"])
    service = make_service(provider, fake_clock, store=store)

    await service.classify_many(["Python教程", "红烧肉做法"], PROGRAMMING)
    await service.aclose()

    assert provider.closed
    assert store.save_count == 1
    assert sorted(r["key"] for r in store.records) == ["python教程", "红烧肉做法"]

    fresh_provider = ScriptedProvider()
    restored = make_service(fresh_provider, fake_clock, store=store)
    assert restored.load_cache() == 2
    assert await restored.classify_many(["红烧肉做法", "Python教程"], PROGRAMMING) == [False, True]
    assert fresh_provider.calls == 0


@pytest.mark.asyncio
async def test_load_cache_drops_expired_records(fake_clock: FakeClock):
    store = MemoryCacheStore([
        {"key": "old", "decision": False, "timestamp": fake_clock.now - 7200},
        {"key": "new", "decision": False, "timestamp": fake_clock.now},
    ])
    service = make_service(ScriptedProvider(), fake_clock, store=store)

    assert service.load_cache() == 1
    assert service.flush_cache() == 1
    assert [r["key"] for r in store.records] == ["new"]


@pytest.mark.asyncio
async def test_aclose_is_idempotent(fake_clock: FakeClock):
    store = MemoryCacheStore()
    service = make_service(ScriptedProvider(), fake_clock, store=store)
    await service.aclose()
    await service.aclose()
    assert store.save_count == 1


def test_invalid_construction_arguments():
    with pytest.raises(ValueError):
        ClassificationService(ScriptedProvider(), batch_size=0)
    with pytest.raises(ValueError):
        ClassificationService(ScriptedProvider(), max_item_length=0)


class GatedProvider(ScriptedProvider):
    """Holds the first call open until the test releases the gate."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

    async def complete(self, request):
        if not self.requests:
            self.started.set()
            await self.gate.wait()
        return await super().complete(request)


@pytest.mark.asyncio
async def test_overlapping_topic_change_does_not_cache_stale_decisions(fake_clock: FakeClock):
    provider = GatedProvider(script=["是", "否", "否"])
    service = make_service(provider, fake_clock)

    programming_call = asyncio.create_task(service.classify_many(["Cooking pasta"], PROGRAMMING))
    await provider.started.wait()
    cooking_call = asyncio.create_task(service.classify_many(["Football highlights"], ["cooking"]))
    await asyncio.sleep(0)
    provider.gate.set()

    assert await programming_call == [True]
    assert await cooking_call == [False]
    assert service.cache.get("cooking pasta") is None

    assert await service.classify_many(["Cooking pasta"], ["cooking"]) == [False]
    assert provider.calls == 3


@pytest.mark.asyncio
async def test_store_only_receives_decisions_for_its_topic_set(fake_clock: FakeClock):
    store = MemoryCacheStore()
    provider = ScriptedProvider(default=answer_by_keyword("python"))
    service = make_service(provider, fake_clock, store=store, store_topics=PROGRAMMING)

    await service.classify_many(["Cooking pasta"], ["cooking"])
    assert service.flush_cache() == 0
    assert service.load_cache() == 0

    await service.classify_many(["Python"], PROGRAMMING)
    await service.aclose()
    assert [r["key"] for r in store.records] == ["python"]


@pytest.mark.asyncio
async def test_first_topic_set_claims_an_unbound_store(fake_clock: FakeClock):
    store = MemoryCacheStore()
    service = make_service(ScriptedProvider(default=answer_by_keyword("python")), fake_clock, store=store)

    await service.classify_many(["Python"], PROGRAMMING)
    await service.classify_many(["Cooking pasta"], ["cooking"])
    await service.aclose()

    assert store.save_count == 0


@pytest.mark.asyncio
async def test_damaged_disk_cache_does_not_stop_classification(tmp_path, fake_clock: FakeClock):
    cache_dir = tmp_path / "cache"
    cache_dir.mkdir()
    (cache_dir / "cache.db").write_bytes(b"this is not a sqlite database" * 64)
    provider = ScriptedProvider(script=["是"])
    service = make_service(provider, fake_clock, store=DiskCacheStore(cache_dir, "classification_cache-x"))

    assert service.load_cache() == 0
    assert await service.classify_many(["Python教程"], PROGRAMMING) == [True]
    await service.aclose()

    assert provider.closed
