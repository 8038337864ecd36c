from __future__ import annotations

import asyncio

import pytest

from agent_memory.services.memory import MemoryService
from agent_memory.services.memory_types import MemoryEntry, MemoryType, StoreStatus
from agent_memory.services.object_store import StorageError

from conftest import FakeEmbeddingClient, FlakyObjectStore


def _entry(
    entry_id: str,
    user_id: str = "u1",
    type: MemoryType = MemoryType.CONVERSATION,
    content: str = "hi",
    timestamp: int = 1000,
) -> MemoryEntry:
    return MemoryEntry(
        id=entry_id,
        user_id=user_id,
        type=type,
        content=content,
        metadata={},
        timestamp=timestamp,
    )


def test_store_without_embedding_shows_up_in_history_with_vector(service: MemoryService) -> None:
    async def scenario():
        result = await service.store_memory(_entry("m1", content="hello there"))
        history = await service.get_conversation_history("u1", 10)
        return result, history

    result, history = asyncio.run(scenario())

    assert result.status == StoreStatus.STORED
    assert result.searchable
    assert [m.id for m in history] == ["m1"]
    assert history[0].embedding == [11.0, 1.0, 0.5]


def test_unreachable_embedding_service_stores_zero_vector(store: FlakyObjectStore) -> None:
    embeddings = FakeEmbeddingClient(embed_available=False, index_available=False)
    service = MemoryService(store=store, embeddings=embeddings)

    async def scenario():
        result = await service.store_memory(_entry("m1"))
        history = await service.get_conversation_history("u1", 10)
        return result, history

    result, history = asyncio.run(scenario())

    assert result.status == StoreStatus.DEGRADED
    assert result.reason == "embedding unavailable"
    assert [m.id for m in history] == ["m1"]
    assert history[0].embedding == [0.0] * 768
    assert store.objects[("u1", "memories")][0]["id"] == "m1"


def test_index_failure_is_reported_as_degraded(store: FlakyObjectStore) -> None:
    service = MemoryService(store=store, embeddings=FakeEmbeddingClient(index_available=False))

    result = asyncio.run(service.store_memory(_entry("m1")))

    assert result.status == StoreStatus.DEGRADED
    assert result.reason == "index unavailable"
    assert result.entry.embedding == [2.0, 1.0, 0.5]


def test_supplied_embedding_is_kept(service: MemoryService, embeddings: FakeEmbeddingClient) -> None:
    entry = _entry("m1").model_copy(update={"embedding": [0.1, 0.2]})

    result = asyncio.run(service.store_memory(entry))

    assert result.entry.embedding == [0.1, 0.2]
    assert embeddings.indexed[0].embedding == [0.1, 0.2]


def test_persistence_failure_raises_and_leaves_cache_untouched(
    service: MemoryService, store: FlakyObjectStore, embeddings: FakeEmbeddingClient
) -> None:
    async def scenario():
        await service.store_memory(_entry("m1"))
        store.fail_put = True
        with pytest.raises(StorageError):
            await service.store_memory(_entry("m2"))
        return await service.get_conversation_history("u1", 10)

    history = asyncio.run(scenario())

    assert [m.id for m in history] == ["m1"]
    assert [e.id for e in embeddings.indexed] == ["m1"]


def test_whole_list_is_persisted_on_every_write(service: MemoryService, store: FlakyObjectStore) -> None:
    async def scenario():
        await service.store_memory(_entry("m1"))
        await service.store_memory(_entry("m2", type=MemoryType.ACTION))

    asyncio.run(scenario())

    memory_puts = [data for user, kind, data in store.puts if kind == "memories"]
    assert [[m["id"] for m in data] for data in memory_puts] == [["m1"], ["m1", "m2"]]
    assert memory_puts[-1][1]["userId"] == "u1"
    assert memory_puts[-1][1]["type"] == "action"


def test_concurrent_stores_for_one_user_all_reach_durable_store(
    service: MemoryService, store: FlakyObjectStore
) -> None:
    async def scenario():
        await asyncio.gather(*(service.store_memory(_entry(f"m{i}")) for i in range(5)))

    asyncio.run(scenario())

    persisted = {m["id"] for m in store.objects[("u1", "memories")]}
    assert persisted == {f"m{i}" for i in range(5)}


def test_first_write_keeps_entries_already_in_durable_store(store: FlakyObjectStore) -> None:
    old = _entry("old").model_copy(update={"embedding": [1.0]})
    asyncio.run(store.put("u1", "memories", [old.to_json()]))
    service = MemoryService(store=store, embeddings=FakeEmbeddingClient())

    async def scenario():
        cold = await service.get_conversation_history("u1", 10)
        await service.store_memory(_entry("new"))
        warm = await service.get_conversation_history("u1", 10)
        return cold, warm

    cold, warm = asyncio.run(scenario())

    assert cold == []
    assert [m.id for m in warm] == ["old", "new"]
    assert [m["id"] for m in store.objects[("u1", "memories")]] == ["old", "new"]


def test_retrieve_returns_matching_entries(service: MemoryService, embeddings: FakeEmbeddingClient) -> None:
    async def scenario():
        await service.store_memory(_entry("m1", content="posting schedule"))
        await service.store_memory(_entry("m2", type=MemoryType.ACTION, content="tweeted"))
        return await service.retrieve_memories("u1", "when do I post?", limit=5)

    found = asyncio.run(scenario())

    assert [m.id for m in found] == ["m1", "m2"]
    assert embeddings.searches[0][0] == "u1"
    assert embeddings.searches[0][2] == 5


def test_retrieve_never_returns_other_users_entries(store: FlakyObjectStore) -> None:
    embeddings = FakeEmbeddingClient(hits=["a1", "b1"])
    service = MemoryService(store=store, embeddings=embeddings)

    async def scenario():
        await service.store_memory(_entry("a1", user_id="alice"))
        await service.store_memory(_entry("b1", user_id="bob"))
        return await service.retrieve_memories("alice", "anything")

    found = asyncio.run(scenario())

    assert [m.id for m in found] == ["a1"]
    assert all(m.user_id == "alice" for m in found)


def test_retrieve_drops_ids_this_process_has_not_seen(store: FlakyObjectStore) -> None:
    service = MemoryService(store=store, embeddings=FakeEmbeddingClient(hits=["m1", "elsewhere"]))

    async def scenario():
        await service.store_memory(_entry("m1"))
        return await service.retrieve_memories("u1", "hi")

    assert [m.id for m in asyncio.run(scenario())] == ["m1"]


def test_retrieve_returns_empty_when_search_is_down(store: FlakyObjectStore) -> None:
    service = MemoryService(store=store, embeddings=FakeEmbeddingClient(search_available=False))

    async def scenario():
        await service.store_memory(_entry("m1"))
        return await service.retrieve_memories("u1", "hi")

    assert asyncio.run(scenario()) == []


def test_retrieve_returns_empty_when_query_cannot_be_embedded(store: FlakyObjectStore) -> None:
    embeddings = FakeEmbeddingClient(embed_available=False)
    service = MemoryService(store=store, embeddings=embeddings)

    assert asyncio.run(service.retrieve_memories("u1", "hi")) == []
    assert embeddings.searches == []


def test_history_filters_conversation_and_keeps_the_latest(service: MemoryService) -> None:
    async def scenario():
        for i in range(4):
            await service.store_memory(_entry(f"c{i}"))
            await service.store_memory(_entry(f"a{i}", type=MemoryType.ACTION))
        return (
            await service.get_conversation_history("u1", 2),
            await service.get_conversation_history("u1", 0),
            await service.get_conversation_history("nobody", 10),
        )

    latest, none, unknown = asyncio.run(scenario())

    assert [m.id for m in latest] == ["c2", "c3"]
    assert none == []
    assert unknown == []


def test_clear_user_data_removes_only_that_user(service: MemoryService, store: FlakyObjectStore) -> None:
    async def scenario():
        await service.store_memory(_entry("a1", user_id="alice"))
        await service.store_memory(_entry("b1", user_id="bob"))
        result = await service.clear_user_data("alice")
        return (
            result,
            await service.get_conversation_history("alice", 10),
            await service.get_conversation_history("bob", 10),
        )

    result, alice, bob = asyncio.run(scenario())

    assert result.remote_deleted is True
    assert result.error is None
    assert alice == []
    assert [m.id for m in bob] == ["b1"]
    assert ("alice", "memories") not in store.objects
    assert ("bob", "memories") in store.objects


def test_clear_user_data_reports_failed_remote_delete(service: MemoryService, store: FlakyObjectStore) -> None:
    store.fail_delete = True

    async def scenario():
        await service.store_memory(_entry("m1"))
        result = await service.clear_user_data("u1")
        return result, await service.get_conversation_history("u1", 10)

    result, history = asyncio.run(scenario())

    assert result.remote_deleted is False
    assert "503" in result.error
    assert history == []


def test_failed_erase_does_not_resurrect_old_entries(service: MemoryService, store: FlakyObjectStore) -> None:
    async def scenario():
        await service.store_memory(_entry("before"))
        store.fail_delete = True
        await service.clear_user_data("u1")
        await service.store_memory(_entry("after"))
        return await service.get_conversation_history("u1", 10)

    history = asyncio.run(scenario())

    assert [m.id for m in history] == ["after"]
    assert [m["id"] for m in store.objects[("u1", "memories")]] == ["after"]


def test_erase_waits_for_an_in_flight_store(service: MemoryService, store: FlakyObjectStore) -> None:
    async def scenario():
        await service.store_memory(_entry("m1"))
        _, result = await asyncio.gather(
            service.store_memory(_entry("m2")), service.clear_user_data("u1")
        )
        return result, await service.get_conversation_history("u1", 10)

    result, history = asyncio.run(scenario())

    assert result.remote_deleted is True
    assert history == []
    assert ("u1", "memories") not in store.objects


def test_malformed_durable_list_fails_the_write_as_storage_error(
    service: MemoryService, store: FlakyObjectStore
) -> None:
    async def scenario():
        await store.put("u1", "memories", [{"garbage": 1}])
        with pytest.raises(StorageError):
            await service.store_memory(_entry("m1"))
        failed = await service.get_conversation_history("u1", 10)
        await service.clear_user_data("u1")
        await service.store_memory(_entry("m2"))
        return failed, await service.get_conversation_history("u1", 10)

    failed, recovered = asyncio.run(scenario())

    assert failed == []
    assert [m.id for m in recovered] == ["m2"]


def test_retrieve_with_non_positive_limit_skips_search(
    service: MemoryService, embeddings: FakeEmbeddingClient
) -> None:
    async def scenario():
        await service.store_memory(_entry("m1"))
        return (
            await service.retrieve_memories("u1", "hi", limit=0),
            await service.retrieve_memories("u1", "hi", limit=-1),
        )

    zero, negative = asyncio.run(scenario())

    assert zero == []
    assert negative == []
    assert embeddings.searches == []
