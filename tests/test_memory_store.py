"""Tests for the conversation and message stores (both backends)."""

import asyncio

import pytest

from src.memory.errors import ConfigurationError, NotFoundError, ReferenceIntegrityError
from src.memory.store import (
    InMemoryConversationStore,
    SqlConversationStore,
    SqlMessageStore,
    create_stores,
)

# -- Conversation store --------------------------------------------------------


async def test_create_and_get_conversation(stores) -> None:
    conversations, _ = stores
    conv_id = await conversations.create("Planning", {"user_id": "u1", "tags": ["a"]})

    conv = await conversations.get(conv_id)
    assert conv is not None
    assert conv.id == conv_id
    assert conv.title == "Planning"
    assert conv.metadata == {"user_id": "u1", "tags": ["a"]}
    assert conv.created_at == conv.updated_at


async def test_get_conversation_not_found(stores) -> None:
    conversations, _ = stores
    assert await conversations.get("nonexistent") is None


async def test_update_title_and_metadata(stores) -> None:
    conversations, _ = stores
    conv_id = await conversations.create("Old", {"k": 1})
    before = await conversations.get(conv_id)

    await asyncio.sleep(0.01)
    await conversations.update(conv_id, title="New", metadata={"k": 2})

    conv = await conversations.get(conv_id)
    assert conv.title == "New"
    assert conv.metadata == {"k": 2}
    assert conv.updated_at > before.updated_at


async def test_update_without_fields_is_noop(stores) -> None:
    conversations, _ = stores
    conv_id = await conversations.create("Same", {})
    before = await conversations.get(conv_id)

    await asyncio.sleep(0.01)
    await conversations.update(conv_id)

    assert await conversations.get(conv_id) == before


async def test_update_missing_conversation_raises(stores) -> None:
    conversations, _ = stores
    with pytest.raises(NotFoundError):
        await conversations.update("nonexistent", title="x")


async def test_list_all_most_recently_updated_first(stores) -> None:
    conversations, messages = stores
    first = await conversations.create("first", {})
    second = await conversations.create("second", {})
    await asyncio.sleep(0.01)
    await messages.create(first, "user", "bump")

    listed = await conversations.list_all()
    assert [c.id for c in listed] == [first, second]


async def test_list_all_empty(stores) -> None:
    conversations, _ = stores
    assert await conversations.list_all() == []


async def test_search_conversations_by_title_metadata_and_content(stores) -> None:
    conversations, messages = stores
    by_title = await conversations.create("Coffee chat", {})
    by_meta = await conversations.create("Untitled", {"topic": "espresso COFFEE"})
    by_content = await conversations.create("Other", {})
    await messages.create(by_content, "user", "I drink coffee daily")
    await conversations.create("Unrelated", {})

    hits = await conversations.search_by_keyword("coffee")
    assert {c.id for c in hits} == {by_title, by_meta, by_content}


async def test_search_conversations_distinct_and_limited(stores) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("tea", {})
    await messages.create(conv_id, "user", "tea one")
    await messages.create(conv_id, "assistant", "tea two")
    for i in range(3):
        await conversations.create(f"tea {i}", {})

    assert [c.id for c in await conversations.search_by_keyword("tea", limit=10)].count(conv_id) == 1
    assert len(await conversations.search_by_keyword("tea", limit=2)) == 2


async def test_search_treats_wildcards_literally(stores) -> None:
    conversations, _ = stores
    await conversations.create("100% done", {})
    await conversations.create("1000 done", {})

    hits = await conversations.search_by_keyword("100%")
    assert [c.title for c in hits] == ["100% done"]


@pytest.mark.parametrize(
    ("title", "query"),
    [("Über Café", "über café"), ("straße plans", "STRASSE"), ("Ελληνικά", "ελληνικά")],
)
async def test_search_conversations_unicode_case_insensitive(stores, title, query) -> None:
    conversations, _ = stores
    conv_id = await conversations.create(title, {})
    await conversations.create("unrelated", {})

    hits = await conversations.search_by_keyword(query)
    assert [c.id for c in hits] == [conv_id]


async def test_search_conversations_unicode_in_messages_and_metadata(stores) -> None:
    conversations, messages = stores
    by_message = await conversations.create("school", {})
    await messages.create(by_message, "user", "ÉCOLE is closed")
    by_metadata = await conversations.create("trip", {"city": "ZÜRICH"})

    assert [c.id for c in await conversations.search_by_keyword("école")] == [by_message]
    assert [c.id for c in await conversations.search_by_keyword("zürich")] == [by_metadata]


async def test_search_conversations_zero_limit(stores) -> None:
    conversations, _ = stores
    await conversations.create("anything", {})
    assert await conversations.search_by_keyword("anything", limit=0) == []


# -- Message store -------------------------------------------------------------


async def test_create_and_get_message(stores) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("c", {})
    msg_id = await messages.create(conv_id, "assistant", "hello", {"confidence": 0.9})

    msg = await messages.get(msg_id)
    assert msg is not None
    assert msg.conversation_id == conv_id
    assert msg.role == "assistant"
    assert msg.content == "hello"
    assert msg.metadata == {"confidence": 0.9}
    assert msg.embedding is None


async def test_get_message_not_found(stores) -> None:
    _, messages = stores
    assert await messages.get("nonexistent") is None


async def test_create_message_requires_conversation(stores) -> None:
    _, messages = stores
    with pytest.raises(ReferenceIntegrityError):
        await messages.create("nonexistent", "user", "orphan")


async def test_create_message_bumps_conversation_updated_at(stores) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("c", {})
    await asyncio.sleep(0.01)
    msg_id = await messages.create(conv_id, "user", "hi")

    conv = await conversations.get(conv_id)
    msg = await messages.get(msg_id)
    assert conv.updated_at == msg.timestamp
    assert conv.updated_at > conv.created_at


async def test_list_by_conversation_in_insertion_order(stores) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("c", {})
    other_id = await conversations.create("other", {})
    ids = [await messages.create(conv_id, "user", f"m{i}") for i in range(5)]
    await messages.create(other_id, "user", "elsewhere")

    listed = await messages.list_by_conversation(conv_id)
    assert [m.id for m in listed] == ids
    timestamps = [m.timestamp for m in listed]
    assert timestamps == sorted(timestamps)


async def test_list_by_conversation_unknown_is_empty(stores) -> None:
    _, messages = stores
    assert await messages.list_by_conversation("nonexistent") == []


async def test_search_messages_newest_first(stores) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("c", {})
    older = await messages.create(conv_id, "user", "Python is fun")
    await messages.create(conv_id, "user", "unrelated")
    newer = await messages.create(conv_id, "assistant", "I like PYTHON too")

    hits = await messages.search_by_keyword("python")
    assert [m.id for m in hits] == [newer, older]
    assert len(await messages.search_by_keyword("python", limit=1)) == 1


@pytest.mark.parametrize(
    ("content", "query"),
    [("ÉCOLE is closed", "école"), ("Grüße aus Köln", "GRÜSSE AUS KÖLN"), ("naïve", "NAÏVE")],
)
async def test_search_messages_unicode_case_insensitive(stores, content, query) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("c", {})
    msg_id = await messages.create(conv_id, "user", content)
    await messages.create(conv_id, "user", "something else")

    hits = await messages.search_by_keyword(query)
    assert [m.id for m in hits] == [msg_id]


async def test_search_messages_zero_limit(stores) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("c", {})
    await messages.create(conv_id, "user", "hello")
    assert await messages.search_by_keyword("hello", limit=0) == []


async def test_set_embedding_and_overwrite(stores) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("c", {})
    msg_id = await messages.create(conv_id, "user", "hi")

    await messages.set_embedding(msg_id, [1.0, 0.0])
    await messages.set_embedding(msg_id, [0.0, 1.0])

    msg = await messages.get(msg_id)
    assert msg.embedding == [0.0, 1.0]


async def test_set_embedding_unknown_message_raises(stores) -> None:
    _, messages = stores
    with pytest.raises(NotFoundError):
        await messages.set_embedding("nonexistent", [1.0])


async def test_similarity_search_ranks_and_excludes_unembedded(stores) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("c", {})
    near = await messages.create(conv_id, "user", "near")
    far = await messages.create(conv_id, "user", "far")
    bare = await messages.create(conv_id, "user", "no vector")
    await messages.set_embedding(near, [1.0, 0.1])
    await messages.set_embedding(far, [0.1, 1.0])

    results = await messages.search_by_similarity([1.0, 0.0], limit=5)
    assert [r.message.id for r in results] == [near, far]
    assert bare not in {r.message.id for r in results}
    assert results[0].score > results[1].score


async def test_similarity_search_second_embedding_wins(stores) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("c", {})
    a = await messages.create(conv_id, "user", "a")
    b = await messages.create(conv_id, "user", "b")
    await messages.set_embedding(a, [1.0, 0.0])
    await messages.set_embedding(b, [0.0, 1.0])

    assert (await messages.search_by_similarity([0.0, 1.0], limit=1))[0].message.id == b

    await messages.set_embedding(a, [0.0, 1.0])
    await messages.set_embedding(b, [1.0, 0.0])

    assert (await messages.search_by_similarity([0.0, 1.0], limit=1))[0].message.id == a


async def test_similarity_search_empty_store(stores) -> None:
    _, messages = stores
    assert await messages.search_by_similarity([1.0, 0.0], limit=1) == []


async def test_list_missing_embeddings(stores) -> None:
    conversations, messages = stores
    conv_id = await conversations.create("c", {})
    first = await messages.create(conv_id, "user", "one")
    done = await messages.create(conv_id, "user", "two")
    third = await messages.create(conv_id, "user", "three")
    await messages.set_embedding(done, [1.0])

    missing = await messages.list_missing_embeddings()
    assert [m.id for m in missing] == [first, third]
    assert len(await messages.list_missing_embeddings(limit=1)) == 1


# -- create_stores -------------------------------------------------------------


def test_create_stores_sql(tmp_path) -> None:
    conversations, messages = create_stores("sql", db_path=tmp_path / "x.db")
    assert isinstance(conversations, SqlConversationStore)
    assert isinstance(messages, SqlMessageStore)


def test_create_stores_memory_share_state() -> None:
    conversations, messages = create_stores("memory")
    assert isinstance(conversations, InMemoryConversationStore)
    assert conversations._db is messages._db


def test_create_stores_unknown_backend() -> None:
    with pytest.raises(ConfigurationError, match="duckdb"):
        create_stores("duckdb")
