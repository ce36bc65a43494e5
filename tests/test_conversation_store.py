#!/usr/bin/env python3
"""Conversation Store Tests - local cache fallback"""

import asyncio

from walletchat.utils.conversation_store import ConversationStore
from walletchat.utils.mongodb_manager import MongoDBManager


def run(coro):
    return asyncio.run(coro)


def local_store(cache_limit=None):
    return ConversationStore(mongodb=MongoDBManager(mongodb_url=""), cache_limit=cache_limit)


def test_unconfigured_mongodb_stays_disconnected():
    assert not MongoDBManager(mongodb_url="").is_connected()


def test_save_and_load_in_order():
    store = local_store()

    async def scenario():
        assert await store.save_message("c1", "user", "balance?", "balance")
        assert await store.save_message("c1", "assistant", "0.05 BTC")
        await store.save_message("c2", "user", "hi", "greeting")
        return await store.load_history("c1")

    records = run(scenario())
    assert [(r.role, r.content) for r in records] == [("user", "balance?"), ("assistant", "0.05 BTC")]
    assert records[0].intent_type == "balance"
    assert records[1].intent_type is None


def test_cache_keeps_most_recent():
    store = local_store(cache_limit=3)

    async def scenario():
        for i in range(5):
            await store.save_message("c1", "user", f"message {i}")
        return await store.load_history("c1")

    assert [r.content for r in run(scenario())] == ["message 2", "message 3", "message 4"]


def test_load_limit_and_clear():
    store = local_store()

    async def scenario():
        for i in range(4):
            await store.save_message("c1", "user", f"message {i}")
        latest = await store.load_history("c1", limit=2)
        await store.clear("c1")
        return latest, await store.load_history("c1")

    latest, cleared = run(scenario())
    assert [r.content for r in latest] == ["message 2", "message 3"]
    assert cleared == []


def test_close_without_connection_is_harmless():
    manager = MongoDBManager(mongodb_url="")
    manager.close()
    assert not manager.is_connected()
