import asyncio

import httpx
import pytest

from advisor.src.engine.conversation import Conversation, Message
from advisor.src.engine.events import Completed, Delta, Failed
from advisor.src.services.chat_manager import ERROR_REPLY_PREFIX, ChatManager
from advisor.src.services.json_store import InMemoryConversationStore

from conftest import chunked, sse_body


@pytest.mark.asyncio
async def test_load_creates_conversation_when_store_is_empty(make_client):
    client, _ = make_client(lambda request: httpx.Response(200, content=sse_body()))
    store = InMemoryConversationStore()
    manager = ChatManager(client, store)

    current = await manager.load()

    assert current is not None
    assert manager.current.id == current.id
    assert [c.id for c in await store.load()] == [current.id]


@pytest.mark.asyncio
async def test_load_selects_first_saved_conversation(make_client):
    client, _ = make_client(lambda request: httpx.Response(200, content=sse_body()))
    newest, older = Conversation(title="newest"), Conversation(title="older")
    manager = ChatManager(client, InMemoryConversationStore([newest, older]))

    await manager.load()

    assert manager.current.title == "newest"
    manager.select_conversation(older.id)
    assert manager.current.title == "older"
    with pytest.raises(KeyError):
        manager.select_conversation("missing")


@pytest.mark.asyncio
async def test_stream_message_applies_events_in_order(make_client):
    client, recorder = make_client(lambda request: httpx.Response(200, content=sse_body("Hel", "lo")))
    store = InMemoryConversationStore()
    manager = ChatManager(client, store)
    await manager.load()

    updates = [u async for u in manager.stream_message("Hi")]

    assert [type(u.event) for u in updates] == [type(None), Delta, Delta, Completed]

    first = updates[0].conversation
    assert first.title == "Hi"
    assert [(m.role, m.content, m.is_pending) for m in first.messages] == [
        ("user", "Hi", False),
        ("assistant", "", True),
    ]

    assert updates[1].conversation.messages[-1].content == "Hel"
    assert updates[1].conversation.pending_message is None
    assert updates[2].conversation.messages[-1].content == "Hello"

    final = updates[-1].conversation
    assert [(m.role, m.content) for m in final.messages] == [("user", "Hi"), ("assistant", "Hello")]
    assert manager.is_loading is False
    assert manager.error_message is None

    # The placeholder is never sent to the model.
    sent = recorder.requests[0].read()
    assert b'"is_pending"' not in sent
    assert b'"content": ""' not in sent

    saved = (await store.load())[0]
    assert saved.messages[-1].content == "Hello"


@pytest.mark.asyncio
async def test_snapshots_are_independent_copies(make_client):
    client, _ = make_client(lambda request: httpx.Response(200, content=sse_body("a", "b")))
    manager = ChatManager(client, InMemoryConversationStore())
    await manager.load()

    updates = [u async for u in manager.stream_message("q")]

    assert updates[1].conversation.messages[-1].content == "a"
    assert updates[2].conversation.messages[-1].content == "ab"


@pytest.mark.asyncio
async def test_title_only_derived_from_first_message(make_client):
    client, _ = make_client(lambda request: httpx.Response(200, content=sse_body("ok")))
    manager = ChatManager(client, InMemoryConversationStore())
    await manager.load()

    await manager.send_message("This first question is definitely longer than thirty characters")
    final = await manager.send_message("second")

    assert final.title == "This first question is definit..."
    assert len(final.messages) == 4


@pytest.mark.asyncio
async def test_blank_message_is_ignored(make_client):
    client, recorder = make_client(lambda request: httpx.Response(200, content=sse_body("ok")))
    manager = ChatManager(client, InMemoryConversationStore())
    await manager.load()

    assert await manager.send_message("   ") is None
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_failure_replaces_placeholder_with_error_reply(make_client):
    client, _ = make_client(lambda request: httpx.Response(500, json={"error": {"message": "boom"}}))
    manager = ChatManager(client, InMemoryConversationStore())
    await manager.load()
    await manager.send_message("earlier")

    updates = [u async for u in manager.stream_message("Hi")]

    assert isinstance(updates[-1].event, Failed)
    final = updates[-1].conversation
    assert final.pending_message is None
    assert final.messages[-1].role == "assistant"
    assert final.messages[-1].content.startswith(ERROR_REPLY_PREFIX)
    assert "boom" in final.messages[-1].content
    # Earlier history is kept.
    assert final.messages[0].content == "earlier"
    assert manager.error_message == "API Error: boom"
    assert manager.is_loading is False


@pytest.mark.asyncio
async def test_completion_without_text_drops_placeholder(make_client):
    client, _ = make_client(lambda request: httpx.Response(200, content=sse_body()))
    manager = ChatManager(client, InMemoryConversationStore())
    await manager.load()

    final = await manager.send_message("Hi")

    assert [(m.role, m.content) for m in final.messages] == [("user", "Hi")]


@pytest.mark.asyncio
async def test_cancel_keeps_partial_text_and_emits_nothing_more(make_client):
    hold = asyncio.Event()
    client, _ = make_client(
        lambda request: httpx.Response(200, content=chunked(sse_body("par", "tial", done=False), hold=hold))
    )
    manager = ChatManager(client, InMemoryConversationStore())
    await manager.load()

    updates = []
    async for update in manager.stream_message("Hi"):
        updates.append(update)
        if len(updates) == 3:
            await manager.cancel_current_request()

    assert [type(u.event) for u in updates] == [type(None), Delta, Delta]
    assert manager.is_loading is False
    assert manager.current.pending_message is None
    assert manager.current.messages[-1].content == "partial"
    hold.set()


@pytest.mark.asyncio
async def test_cancel_before_first_token_removes_placeholder(make_client):
    hold = asyncio.Event()

    async def handler(request):
        await hold.wait()
        return httpx.Response(200, content=sse_body("late"))

    client, _ = make_client(handler)
    manager = ChatManager(client, InMemoryConversationStore())
    await manager.load()

    updates = []
    async for update in manager.stream_message("Hi"):
        updates.append(update)
        await manager.cancel_current_request()

    assert len(updates) == 1
    assert [(m.role, m.content) for m in manager.current.messages] == [("user", "Hi")]
    hold.set()


@pytest.mark.asyncio
async def test_second_send_while_loading_is_refused(make_client):
    hold = asyncio.Event()
    client, _ = make_client(lambda request: httpx.Response(200, content=chunked(sse_body("x", done=False), hold=hold)))
    manager = ChatManager(client, InMemoryConversationStore())
    await manager.load()

    updates = manager.stream_message("first")
    await updates.__anext__()

    with pytest.raises(RuntimeError):
        await manager.stream_message("second").__anext__()

    await manager.cancel_current_request()
    await updates.aclose()
    hold.set()


@pytest.mark.asyncio
async def test_create_conversation_goes_first(make_client):
    client, _ = make_client(lambda request: httpx.Response(200, content=sse_body()))
    store = InMemoryConversationStore([Conversation(title="old").with_message(Message.user("x"))])
    manager = ChatManager(client, store)
    await manager.load()

    created = await manager.create_conversation()

    assert manager.current.id == created.id
    assert [c.id for c in await store.load()][0] == created.id


@pytest.mark.asyncio
async def test_interleaved_sends_to_different_conversations_keep_both_replies(make_client):
    body = sse_body("x", "y")

    def handler(request):
        return httpx.Response(200, content=chunked(*[body[i:i + 1] for i in range(len(body))]))

    client, _ = make_client(handler)
    first, second = Conversation(title="A"), Conversation(title="B")
    store = InMemoryConversationStore([first, second])
    manager_a, manager_b = ChatManager(client, store), ChatManager(client, store)
    await manager_a.load()
    await manager_b.load()
    manager_a.select_conversation(first.id)
    manager_b.select_conversation(second.id)

    await asyncio.gather(manager_a.send_message("to A"), manager_b.send_message("to B"))

    stored = {c.id: [m.content for m in c.messages] for c in await store.load()}
    assert stored[first.id] == ["to A", "xy"]
    assert stored[second.id] == ["to B", "xy"]


@pytest.mark.asyncio
async def test_search_matches_title_or_message_content(make_client):
    client, _ = make_client(lambda request: httpx.Response(200, content=sse_body()))
    travel = Conversation(title="Trip to Lisbon")
    budget = Conversation(title="Money").with_message(Message.user("Help me plan a BUDGET"))
    manager = ChatManager(client, InMemoryConversationStore([travel, budget]))
    await manager.load()

    assert [c.id for c in manager.search("lisbon")] == [travel.id]
    assert [c.id for c in manager.search("budget")] == [budget.id]
    assert manager.search("nothing like this") == []
    assert len(manager.search("")) == 2
