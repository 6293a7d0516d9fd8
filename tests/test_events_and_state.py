"""Tests for the event model, EventBus/EventSink and TodoState."""
from __future__ import annotations

import asyncio
import json
import threading

import pytest

from hexrun.engine.event_bus import EventBus, EventSink
from hexrun.engine.models import (
    EventType,
    Message,
    Role,
    StreamEvent,
    TextBlock,
    TodoItem,
    TodoStatus,
    ToolResultBlock,
    ToolUseBlock,
    block_from_dict,
    messages_from_json,
    messages_to_json,
)
from hexrun.engine.todo_state import TodoState


# ── Models ────────────────────────────────────────────────────


def test_stream_event_json_omits_unset_fields() -> None:
    """Empty optional fields are left out of the event JSON."""
    assert json.loads(StreamEvent(type=EventType.DONE).to_json()) == {
        "type": "done", "content": "",
    }
    event = StreamEvent(
        type=EventType.TOOL, content="Running ls", tool="ls", args="{}", tool_id="t1",
    )
    assert event.to_dict() == {
        "type": "tool", "content": "Running ls", "tool": "ls", "args": "{}", "tool_id": "t1",
    }


def test_history_json_preserves_block_variants() -> None:
    """History JSON keeps each content block variant."""
    history = [
        Message.user_text("list files"),
        Message(role=Role.ASSISTANT, content=[
            TextBlock(text="Looking."),
            ToolUseBlock(id="t1", name="ls", input={"path": "."}),
        ]),
        Message(role=Role.USER, content=[ToolResultBlock(tool_use_id="t1", content="a.txt\n")]),
    ]
    raw = messages_to_json(history)
    assert json.loads(raw)[1]["content"][1] == {
        "type": "tool_use", "id": "t1", "name": "ls", "input": {"path": "."},
    }
    assert messages_from_json(raw) == history
    assert history[1].tool_uses() == [ToolUseBlock(id="t1", name="ls", input={"path": "."})]


def test_unknown_block_type_is_rejected() -> None:
    """Decoding an unknown block type raises."""
    with pytest.raises(ValueError):
        block_from_dict({"type": "image"})
    assert messages_from_json("") == []


# ── EventBus / EventSink ──────────────────────────────────────


@pytest.mark.asyncio
async def test_event_bus_preserves_order_and_drains_on_close() -> None:
    """consume() yields events in order and ends after close()."""
    bus = EventBus(maxsize=8)
    for i in range(3):
        assert await bus.publish(StreamEvent(type=EventType.TEXT, content=str(i)))
    bus.close()

    received = [event.content async for event in bus.consume()]
    assert received == ["0", "1", "2"]
    assert not await bus.publish(StreamEvent(type=EventType.TEXT, content="late"))


@pytest.mark.asyncio
async def test_event_bus_drops_when_consumer_stalls() -> None:
    """A full bus drops the event after the put timeout."""
    bus = EventBus(maxsize=1, put_timeout=0.05)
    assert await bus.publish(StreamEvent(type=EventType.TEXT, content="kept"))
    assert not await bus.publish(StreamEvent(type=EventType.TEXT, content="dropped"))
    assert bus.dropped == 1
    assert bus.qsize() == 1


@pytest.mark.asyncio
async def test_event_sink_accepts_sync_and_async_callbacks() -> None:
    """Both plain and coroutine callbacks receive events."""
    seen: list[str] = []

    async def on_event(event: StreamEvent) -> None:
        seen.append(f"async:{event.content}")

    await EventSink(callback=lambda e: seen.append(f"sync:{e.content}")).emit(
        StreamEvent(type=EventType.TEXT, content="a"),
    )
    await EventSink(callback=on_event).emit(StreamEvent(type=EventType.TEXT, content="b"))
    await EventSink().emit(StreamEvent(type=EventType.TEXT, content="nobody"))
    assert seen == ["sync:a", "async:b"]


@pytest.mark.asyncio
async def test_event_sink_swallows_callback_errors() -> None:
    """A failing callback does not break emission."""
    def broken(event: StreamEvent) -> None:
        raise RuntimeError("observer bug")

    await EventSink(callback=broken).emit(StreamEvent(type=EventType.TEXT))


def test_event_sink_rejects_both_targets() -> None:
    """A sink takes a callback or a bus, not both."""
    with pytest.raises(ValueError):
        EventSink(callback=lambda e: None, event_bus=EventBus())


# ── TodoState ─────────────────────────────────────────────────


def _items(*statuses: TodoStatus) -> list[TodoItem]:
    return [
        TodoItem(content=f"task {i}", status=s, active_form=f"doing task {i}")
        for i, s in enumerate(statuses)
    ]


def test_todo_state_progress_and_active_task() -> None:
    """Progress counts completed items; the active task is the in-progress one."""
    state = TodoState()
    assert state.get_in_progress_task() == ""
    assert state.get_progress() == (0, 0)

    previous = state.set_todos(_items(
        TodoStatus.COMPLETED, TodoStatus.IN_PROGRESS, TodoStatus.PENDING,
    ))
    assert previous == []
    assert state.get_progress() == (1, 3)
    assert state.get_in_progress_task() == "doing task 1"
    assert json.loads(state.to_json())[0] == {
        "content": "task 0", "status": "completed", "active_form": "doing task 0",
    }


def test_todo_state_returns_copies() -> None:
    """Callers cannot mutate the stored list."""
    state = TodoState()
    state.set_todos(_items(TodoStatus.PENDING))
    state.get_todos().clear()
    assert len(state.get_todos()) == 1


def test_todo_subscriber_drops_oldest_when_full() -> None:
    """A slow subscriber keeps the newest snapshots."""
    state = TodoState()
    sub = state.subscribe(maxsize=2)
    for n in range(1, 4):
        state.set_todos(_items(*[TodoStatus.PENDING] * n))

    assert [len(sub.get_nowait()) for _ in range(2)] == [2, 3]
    state.unsubscribe(sub)
    state.set_todos([])
    assert sub.empty()


def test_todo_state_concurrent_writers() -> None:
    """Concurrent set_todos calls never interleave."""
    state = TodoState()

    def writer(n: int) -> None:
        for _ in range(200):
            state.set_todos(_items(*[TodoStatus.COMPLETED] * n))
            completed, total = state.get_progress()
            assert completed == total

    threads = [threading.Thread(target=writer, args=(n,)) for n in (1, 2, 3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert state.get_progress()[1] in (1, 2, 3)


@pytest.mark.asyncio
async def test_event_bus_consumer_runs_alongside_producer() -> None:
    """A live consumer sees every event while the producer runs."""
    bus = EventBus(maxsize=2)

    async def produce() -> None:
        for i in range(10):
            await bus.publish(StreamEvent(type=EventType.TEXT, content=str(i)))
        bus.close()

    producer = asyncio.create_task(produce())
    received = [event.content async for event in bus.consume()]
    await producer
    assert received == [str(i) for i in range(10)]
