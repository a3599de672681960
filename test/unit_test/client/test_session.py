from __future__ import annotations

import asyncio
from typing import Any, List

import pytest

from copilot_sdk.client import CopilotClient
from copilot_sdk.errors import SessionClosedError, SessionError
from copilot_sdk.schemas.core import SessionEvent, SessionEventType


@pytest.mark.asyncio
async def test_handlers_receive_events_in_order(client: CopilotClient, bridge: Any) -> None:
    session = await client.create_session()
    seen: List[str] = []
    messages: List[str] = []
    session.on(lambda e: seen.append(e.type))
    session.on(SessionEventType.ASSISTANT_MESSAGE, lambda e: messages.append(e.content))

    bridge.emit(session.session_id, "assistant.message_delta", {"deltaContent": "he"})
    bridge.emit(session.session_id, "assistant.message", {"content": "hello"})
    bridge.emit(session.session_id, "session.idle")

    assert seen == ["assistant.message_delta", "assistant.message", "session.idle"]
    assert messages == ["hello"]


@pytest.mark.asyncio
async def test_events_are_routed_by_session_id(client: CopilotClient, bridge: Any) -> None:
    first = await client.create_session()
    second = await client.create_session()
    first_seen: List[str] = []
    second_seen: List[str] = []
    first.on(lambda e: first_seen.append(e.type))
    second.on(lambda e: second_seen.append(e.type))

    bridge.emit(second.session_id, "session.idle")
    bridge.emit("unknown-session", "session.idle")

    assert first_seen == []
    assert second_seen == ["session.idle"]


@pytest.mark.asyncio
async def test_unsubscribe_and_failing_handler(client: CopilotClient, bridge: Any) -> None:
    session = await client.create_session()
    seen: List[str] = []

    def broken(event: SessionEvent) -> None:
        raise RuntimeError("boom")

    session.on(broken)
    unsubscribe = session.on("session.idle", lambda e: seen.append("typed"))
    session.on(lambda e: seen.append("all"))

    bridge.emit(session.session_id, "session.idle")
    unsubscribe()
    bridge.emit(session.session_id, "session.idle")

    assert seen == ["typed", "all", "all"]


@pytest.mark.asyncio
async def test_on_rejects_bad_arguments(client: CopilotClient) -> None:
    session = await client.create_session()
    with pytest.raises(ValueError, match="Invalid arguments"):
        session.on("session.idle")


@pytest.mark.asyncio
async def test_send_returns_message_id(client: CopilotClient, bridge: Any) -> None:
    session = await client.create_session()

    message_id = await session.send("hang", attachments=[{"type": "file", "path": "/a.py"}], mode="enqueue")

    assert message_id.startswith("msg-")
    assert bridge.calls[-1]["params"] == {
        "sessionId": session.session_id,
        "prompt": "hang",
        "attachments": [{"type": "file", "path": "/a.py"}],
        "mode": "enqueue",
    }


@pytest.mark.asyncio
async def test_send_and_wait_returns_last_assistant_message(client: CopilotClient) -> None:
    session = await client.create_session()

    reply = await session.send_and_wait("hi", timeout=5.0)

    assert reply is not None
    assert reply.type == "assistant.message"
    assert reply.content == "echo: hi"


@pytest.mark.asyncio
async def test_send_and_wait_raises_session_error(client: CopilotClient) -> None:
    session = await client.create_session()

    with pytest.raises(SessionError, match="model unavailable"):
        await session.send_and_wait("fail", timeout=5.0)


@pytest.mark.asyncio
async def test_send_and_wait_times_out(client: CopilotClient) -> None:
    session = await client.create_session()

    with pytest.raises(TimeoutError, match="waiting for session.idle"):
        await session.send_and_wait("hang", timeout=0.05)

    # the temporary subscription is gone
    assert session._handlers == []


@pytest.mark.asyncio
async def test_destroy_fails_pending_wait(client: CopilotClient) -> None:
    session = await client.create_session()

    waiter = asyncio.ensure_future(session.send_and_wait("hang", timeout=5.0))
    await asyncio.sleep(0.01)
    await session.destroy()

    with pytest.raises(SessionClosedError):
        await waiter


@pytest.mark.asyncio
async def test_events_iterator_ends_on_destroy(client: CopilotClient, bridge: Any) -> None:
    session = await client.create_session()
    collected: List[str] = []

    async def consume() -> None:
        async for event in session.events():
            collected.append(event.type)

    consumer = asyncio.ensure_future(consume())
    await asyncio.sleep(0)
    bridge.emit(session.session_id, "assistant.message", {"content": "a"})
    bridge.emit(session.session_id, "session.idle")
    await session.destroy()
    await asyncio.wait_for(consumer, 1.0)

    assert collected == ["assistant.message", "session.idle"]


@pytest.mark.asyncio
async def test_closed_session_rejects_calls(client: CopilotClient, bridge: Any) -> None:
    session = await client.create_session()
    await session.destroy()
    await session.destroy()

    assert bridge.methods().count("session.destroy") == 1
    assert session.session_id not in client.sessions
    with pytest.raises(SessionClosedError):
        await session.send("hi")
    with pytest.raises(SessionClosedError):
        await session.abort()
    assert [e async for e in session.events()] == []


@pytest.mark.asyncio
async def test_abort_and_get_messages(client: CopilotClient, bridge: Any) -> None:
    session = await client.create_session()

    await session.abort()
    history = await session.get_messages()

    assert bridge.methods()[-2:] == ["session.abort", "session.getMessages"]
    assert [(e.type, e.content) for e in history] == [("user.message", "hi")]


@pytest.mark.asyncio
async def test_session_context_manager_destroys(client: CopilotClient, bridge: Any) -> None:
    async with await client.create_session() as session:
        assert not session.is_closed

    assert session.is_closed
    assert "session.destroy" in bridge.methods()


@pytest.mark.asyncio
async def test_connection_loss_closes_sessions(client: CopilotClient) -> None:
    session = await client.create_session()

    client.transport.connection.dispose()

    assert session.is_closed
    assert client.sessions == {}
    assert client.state.value == "error"
