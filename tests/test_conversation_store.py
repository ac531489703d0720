"""
Tests for ConversationStore over a temporary SQLite database.

Covers session creation defaults, turn ordering, updated_at bumps,
cascading deletes and the error-to-empty-result policy.
"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import pytest

from models.session_models import Role
from services.conversation_store import ConversationStore, default_session_title


def test_default_session_title_uses_iso_date():
    assert default_session_title(date(2024, 3, 9)) == "Chat 2024-03-09"


@pytest.mark.asyncio
async def test_create_session_uses_default_title(store):
    session_id = await store.create_session()

    assert session_id is not None
    session = await store.get_session(session_id)
    assert session.title == default_session_title()
    assert session.created_at == session.updated_at


@pytest.mark.asyncio
async def test_list_turns_returns_insertion_order(store):
    session_id = await store.create_session("Ordering")
    for idx in range(6):
        role = Role.USER if idx % 2 == 0 else Role.ASSISTANT
        assert await store.append_turn(session_id, role, f"turn {idx}")

    turns = await store.list_turns(session_id)

    assert [t.content for t in turns] == [f"turn {idx}" for idx in range(6)]
    assert turns[0].role is Role.USER
    assert turns[1].role is Role.ASSISTANT
    assert all(t.session_id == session_id for t in turns)


@pytest.mark.asyncio
async def test_append_turn_keeps_visual_context(store):
    session_id = await store.create_session("Visual")
    await store.append_turn(session_id, Role.ASSISTANT, "Nice jacket", "blue jacket, glasses")

    turns = await store.list_turns(session_id)

    assert turns[0].visual_context == "blue jacket, glasses"


@pytest.mark.asyncio
async def test_append_turn_bumps_session_to_front(store):
    older = await store.create_session("Older")
    newer = await store.create_session("Newer")
    assert [s.id for s in await store.list_sessions()] == [newer, older]

    await store.append_turn(older, Role.USER, "hello again")

    sessions = await store.list_sessions()
    assert [s.id for s in sessions] == [older, newer]
    assert sessions[0].updated_at > sessions[0].created_at


@pytest.mark.asyncio
async def test_append_turn_to_unknown_session_returns_false(store):
    assert await store.append_turn("missing", Role.USER, "hi") is False


@pytest.mark.asyncio
async def test_delete_session_removes_turns(store, db_initializer):
    session_id = await store.create_session("Doomed")
    await store.append_turn(session_id, Role.USER, "bye")

    await store.delete_session(session_id)

    assert await store.get_session(session_id) is None
    assert await store.list_turns(session_id) == []
    async with db_initializer.connection() as conn:
        cur = await conn.execute("SELECT COUNT(*) FROM messages")
        assert (await cur.fetchone())[0] == 0


@pytest.mark.asyncio
async def test_delete_unknown_session_is_silent(store):
    await store.delete_session("nope")


@pytest.mark.asyncio
async def test_rename_session(store):
    session_id = await store.create_session("Before")

    assert await store.rename_session(session_id, "  After  ") is True
    assert (await store.get_session(session_id)).title == "After"
    assert await store.rename_session(session_id, "   ") is False
    assert await store.rename_session("missing", "Title") is False


@pytest.mark.asyncio
async def test_failures_become_empty_results(db_initializer):
    session_dal = MagicMock()
    session_dal.create_session = AsyncMock(side_effect=aiosqlite.OperationalError("database is locked"))
    session_dal.list_sessions = AsyncMock(side_effect=aiosqlite.OperationalError("database is locked"))
    session_dal.delete_session = AsyncMock(side_effect=aiosqlite.OperationalError("database is locked"))
    message_dal = MagicMock()
    message_dal.list_messages = AsyncMock(side_effect=aiosqlite.OperationalError("disk I/O error"))
    message_dal.create_message = AsyncMock(side_effect=aiosqlite.OperationalError("disk I/O error"))
    store = ConversationStore(db_initializer, session_dal=session_dal, message_dal=message_dal)

    assert await store.create_session("x") is None
    assert await store.list_sessions() == []
    assert await store.list_turns("s1") == []
    assert await store.append_turn("s1", Role.USER, "hi") is False
    await store.delete_session("s1")
