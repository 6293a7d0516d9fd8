"""Tests for the file, search and todo tools and the dispatch boundary."""
from __future__ import annotations

import json
import os

import pytest

from hexrun.engine.models import TodoStatus
from hexrun.engine.todo_state import TodoState
from hexrun.engine.tools import Tool, ToolContext, ToolRegistry, make_schema


@pytest.fixture
def registry(tmp_path) -> ToolRegistry:
    return ToolRegistry(ToolContext(work_dir=str(tmp_path), todo_state=TodoState()))


async def _call(registry: ToolRegistry, name: str, **args) -> str:
    return await registry.invoke(name, args)


# ── Registry / schema ─────────────────────────────────────────


def test_registry_exposes_nine_tools(registry: ToolRegistry) -> None:
    """The default registry holds the nine built-in tools."""
    assert sorted(registry.all()) == [
        "bash", "edit", "glob", "grep", "ls", "multiedit", "read", "todos", "write",
    ]
    assert registry.get("read") is not None
    assert registry.get("nope") is None


def test_make_schema_types_and_required() -> None:
    """Shorthand types map to JSON schema; "?" marks optional."""
    tools = {
        "b": Tool(description="B", schema={"n": "number?", "flag": "boolean"}, func=lambda a: ""),
        "a": Tool(description="A", schema={"path": "string"}, func=lambda a: ""),
    }
    defs = make_schema(tools)

    assert [d.name for d in defs] == ["a", "b"]
    b = defs[1].input_schema
    assert b["type"] == "object"
    assert b["properties"]["n"] == {"type": "integer"}
    assert b["properties"]["flag"] == {"type": "boolean"}
    assert b["required"] == ["flag"]


def test_schema_passes_structured_params_through(registry: ToolRegistry) -> None:
    """Dict param specs are used as-is."""
    schema = {d.name: d for d in registry.schema()}["multiedit"].input_schema
    assert schema["properties"]["edits"]["type"] == "array"
    assert schema["required"] == ["file_path", "edits"]


@pytest.mark.asyncio
async def test_unknown_tool_returns_error(registry: ToolRegistry) -> None:
    """Unknown tools answer with an error string."""
    assert await _call(registry, "teleport") == "error: unknown tool teleport"


@pytest.mark.asyncio
async def test_argument_error_is_reported_to_model(registry: ToolRegistry) -> None:
    """Argument errors become "error: <field> <reason>"."""
    assert await _call(registry, "read") == "error: path is required"
    assert await _call(registry, "read", path=3) == "error: path must be a string"
    result = await _call(registry, "read", path="x", offset="two")
    assert result == "error: offset must be a number"


@pytest.mark.asyncio
async def test_crashing_tool_becomes_error_result(tmp_path) -> None:
    """An exception inside a tool becomes an error result."""
    def boom(args):
        raise RuntimeError("kaput")

    reg = ToolRegistry(
        ToolContext(work_dir=str(tmp_path)),
        tools={"boom": Tool(description="", schema={}, func=boom)},
    )
    assert await reg.invoke("boom", {}) == "error: tool boom failed: kaput"


# ── read / write / ls ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_write_creates_parents_then_read_numbers_lines(registry, tmp_path) -> None:
    """write creates parent dirs; read numbers lines."""
    assert await _call(registry, "write", path="a/b/c.txt", content="one\ntwo\nthree") == "ok"
    assert (tmp_path / "a" / "b" / "c.txt").read_text() == "one\ntwo\nthree"

    out = await _call(registry, "read", path="a/b/c.txt")
    assert out == "   1| one\n   2| two\n   3| three\n"


@pytest.mark.asyncio
async def test_read_offset_and_limit(registry, tmp_path) -> None:
    """offset and limit select a window of lines."""
    (tmp_path / "f.txt").write_text("a\nb\nc\nd")
    assert await _call(registry, "read", path="f.txt", offset=1, limit=2) == "   2| b\n   3| c\n"
    assert await _call(registry, "read", path="f.txt", offset=3, limit=10) == "   4| d\n"


@pytest.mark.asyncio
async def test_read_missing_file(registry) -> None:
    """Reading a missing file returns an error string."""
    assert (await _call(registry, "read", path="missing.txt")).startswith("error: ")


@pytest.mark.asyncio
async def test_ls_suffixes_directories(registry, tmp_path) -> None:
    """Directories are listed with a trailing slash."""
    (tmp_path / "sub").mkdir()
    (tmp_path / "b.txt").write_text("")
    (tmp_path / "a.txt").write_text("")
    assert await _call(registry, "ls") == "a.txt\nb.txt\nsub/\n"
    assert await _call(registry, "ls", path="sub") == ""


# ── edit ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_edit_ambiguous_then_replace_all(registry, tmp_path) -> None:
    """Ambiguous matches need replace_all."""
    target = tmp_path / "f.txt"
    target.write_text("foo bar foo")

    result = await _call(registry, "edit", path="f.txt", old="foo", new="baz")
    assert result == "error: old_string appears 2 times, use all=true"
    assert target.read_text() == "foo bar foo"

    assert await _call(registry, "edit", path="f.txt", old="foo", new="baz", all=True) == "ok"
    assert target.read_text() == "baz bar baz"


@pytest.mark.asyncio
async def test_edit_not_found(registry, tmp_path) -> None:
    """A missing old string is reported."""
    (tmp_path / "f.txt").write_text("hello")
    assert await _call(registry, "edit", path="f.txt", old="bye", new="x") == "error: old_string not found"


@pytest.mark.asyncio
async def test_edit_and_reverse_edit_restore_content(registry, tmp_path) -> None:
    """An edit followed by its reverse restores the file."""
    target = tmp_path / "f.py"
    original = "def main():\n    return 1\n"
    target.write_text(original)

    await _call(registry, "edit", path="f.py", old="return 1", new="return 2")
    assert target.read_text() != original
    await _call(registry, "edit", path="f.py", old="return 2", new="return 1")
    assert target.read_text() == original


# ── multiedit ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_multiedit_applies_sequentially(registry, tmp_path) -> None:
    """Each edit sees the result of the previous one."""
    target = tmp_path / "f.txt"
    target.write_text("alpha beta gamma")

    result = await _call(registry, "multiedit", file_path="f.txt", edits=[
        {"old_string": "alpha", "new_string": "one"},
        {"old_string": "one beta", "new_string": "two"},
    ])
    assert result == "Applied 2 edits successfully"
    assert target.read_text() == "two gamma"


@pytest.mark.asyncio
async def test_multiedit_partial_failure_keeps_going(registry, tmp_path) -> None:
    """Failed edits are reported; the rest still apply."""
    target = tmp_path / "f.txt"
    target.write_text("x x y")

    result = await _call(registry, "multiedit", file_path="f.txt", edits=[
        {"old_string": "x", "new_string": "z"},
        {"old_string": "missing", "new_string": "q"},
        {"old_string": "y", "new_string": "w"},
    ])
    first, second = result.split("\n")
    assert first == "Applied 1 of 3 edits (2 failed)"
    failed = json.loads(second[len("failed_edits: "):])
    assert [f["index"] for f in failed] == [1, 2]
    assert "appears 2 times" in failed[0]["error"]
    assert failed[1]["error"] == "old_string not found in content"
    assert target.read_text() == "x x w"


@pytest.mark.asyncio
async def test_multiedit_never_writes_when_nothing_applied(registry, tmp_path) -> None:
    """The file is untouched when no edit applies."""
    target = tmp_path / "f.txt"
    target.write_text("keep")
    mtime = os.stat(target).st_mtime_ns

    result = await _call(registry, "multiedit", file_path="f.txt", edits=[
        {"old_string": "nope", "new_string": "x"},
    ])
    assert result.startswith("error: no changes made - all 1 edit(s) failed")
    assert os.stat(target).st_mtime_ns == mtime

    result = await _call(registry, "multiedit", file_path="f.txt", edits=[
        {"old_string": "keep", "new_string": "keep"},
    ])
    assert result == "error: no changes made - all edits resulted in identical content"


@pytest.mark.asyncio
async def test_multiedit_validation(registry, tmp_path) -> None:
    """Empty edit lists and missing files are rejected."""
    assert await _call(registry, "multiedit", file_path="f.txt", edits=[]) == (
        "error: at least one edit operation is required"
    )
    result = await _call(registry, "multiedit", file_path="gone.txt", edits=[
        {"old_string": "a", "new_string": "b"},
    ])
    assert result.startswith("error: file not found: ")


# ── glob / grep ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_glob_sorts_newest_first(registry, tmp_path) -> None:
    """Matches are ordered by modification time, newest first."""
    for name, mtime in (("old.py", 1000), ("new.py", 3000), ("mid.py", 2000)):
        path = tmp_path / name
        path.write_text("")
        os.utime(path, (mtime, mtime))

    assert await _call(registry, "glob", pat="*.py") == "new.py\nmid.py\nold.py\n"


@pytest.mark.asyncio
async def test_glob_breaks_mtime_ties_by_path(registry, tmp_path) -> None:
    """Equal mtimes are ordered by path."""
    for name in ("b.txt", "a.txt", "c.txt"):
        path = tmp_path / name
        path.write_text("")
        os.utime(path, (5000, 5000))

    assert await _call(registry, "glob", pat="*.txt") == "a.txt\nb.txt\nc.txt\n"


@pytest.mark.asyncio
async def test_glob_no_match(registry) -> None:
    """No matches is reported as such."""
    assert await _call(registry, "glob", pat="*.nothing") == "none"


@pytest.mark.asyncio
async def test_grep_skips_vcs_and_node_modules(registry, tmp_path) -> None:
    """.git and node_modules are not searched."""
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("import os\n  TODO fix\n")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config").write_text("TODO ignored\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "x.js").write_text("TODO ignored\n")

    result = await _call(registry, "grep", pat="TODO")
    assert result == os.path.join("src", "app.py") + ":2:TODO fix"


@pytest.mark.asyncio
async def test_grep_caps_hits_and_reports_bad_regex(registry, tmp_path) -> None:
    """Hits are capped and invalid patterns reported."""
    (tmp_path / "many.txt").write_text("hit\n" * 80)
    assert len((await _call(registry, "grep", pat="hit")).split("\n")) == 50
    assert await _call(registry, "grep", pat="zzz") == "none"
    assert (await _call(registry, "grep", pat="(")).startswith("error: invalid regex: ")


# ── todos ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_todos_reports_transitions(registry) -> None:
    """The todos tool summarizes status transitions."""
    state = registry.ctx.todo_state

    first = await _call(registry, "todos", todos=[
        {"content": "Write code", "status": "in_progress", "active_form": "Writing code"},
        {"content": "Add tests", "status": "pending", "active_form": "Adding tests"},
    ])
    assert first == (
        "Todo list updated. Status: 1 pending, 1 in progress, 0 completed. "
        "Started: Writing code. Continue with current tasks."
    )

    second = await _call(registry, "todos", todos=[
        {"content": "Write code", "status": "completed", "active_form": "Writing code"},
        {"content": "Add tests", "status": "in_progress", "active_form": "Adding tests"},
    ])
    assert second == (
        "Todo list updated. Status: 0 pending, 1 in progress, 1 completed. "
        "Started: Adding tests. Completed: [Write code]. Continue with current tasks."
    )
    assert state.get_progress() == (1, 2)
    assert state.get_in_progress_task() == "Adding tests"


@pytest.mark.asyncio
async def test_todos_invalid_status_leaves_state_untouched(registry) -> None:
    """An invalid status rejects the whole update."""
    state = registry.ctx.todo_state
    await _call(registry, "todos", todos=[{"content": "A", "status": "pending"}])

    result = await _call(registry, "todos", todos=[
        {"content": "A", "status": "completed"},
        {"content": "B", "status": "blocked"},
    ])
    assert result == "error: status 'blocked' is invalid, must be pending/in_progress/completed"
    assert [t.status for t in state.get_todos()] == [TodoStatus.PENDING]


@pytest.mark.asyncio
async def test_todos_rejects_non_string_status(registry) -> None:
    """A non-string status is an argument error, not a tool crash."""
    result = await _call(registry, "todos", todos=[{"content": "A", "status": ["pending"]}])
    assert result == "error: status ['pending'] is invalid, must be pending/in_progress/completed"
    assert registry.ctx.todo_state.get_todos() == []


@pytest.mark.asyncio
async def test_todos_without_state(tmp_path) -> None:
    """The todos tool needs a todo state."""
    reg = ToolRegistry(ToolContext(work_dir=str(tmp_path)))
    result = await reg.invoke("todos", {"todos": []})
    assert result == "error: todo state not initialized"
