"""Tests for history repair and gateway cleaning."""

from agent.history import FALLBACK_PROMPT, clean_for_gateway, repair_history, validate_adjacency
from agent.messages import Message, RawBlock, Role, TextBlock, ToolCallBlock, ToolResultBlock


def _call(tid, name="read_file"):
    return ToolCallBlock(id=tid, name=name, params={"path": "a.txt"})


def _result(tid, content="ok"):
    return ToolResultBlock(tool_call_id=tid, content=content)


def _user(content):
    return Message(role=Role.USER, content=content)


def _assistant(content):
    return Message(role=Role.ASSISTANT, content=content)


# ------------------------------------------------------------------
# repair_history
# ------------------------------------------------------------------

def test_repair_removes_orphaned_call_and_emptied_message():
    history = [
        _user("read a.txt"),
        _assistant([_call("x")]),
    ]
    repaired = repair_history(history)
    assert len(repaired) == 1
    assert repaired[0].content == "read a.txt"


def test_repair_keeps_text_beside_orphaned_call():
    history = [_user("go"), _assistant([TextBlock(text="Let me look."), _call("x")])]
    repaired = repair_history(history)
    assert len(repaired) == 2
    assert repaired[1].content == [TextBlock(text="Let me look.")]
    assert repaired[1].id == history[1].id
    # input untouched
    assert len(history[1].content) == 2


def test_repair_removes_orphaned_result():
    history = [_user("go"), _user([_result("ghost")]), _assistant("hello")]
    repaired = repair_history(history)
    assert [m.content for m in repaired] == ["go", "hello"]


def test_repair_keeps_pairs_even_when_not_adjacent():
    history = [
        _user("go"),
        _assistant([_call("a")]),
        _assistant("Error: Tool execution failed: boom"),
        _user([_result("a")]),
    ]
    assert repair_history(history) == history


def test_repair_is_idempotent():
    history = [
        _user("go"),
        _assistant([TextBlock(text="t"), _call("a"), _call("b")]),
        _user([_result("a"), _result("z")]),
    ]
    once = repair_history(history)
    twice = repair_history(once)
    assert [m.to_dict() for m in once] == [m.to_dict() for m in twice]


def test_repair_with_no_orphans_returns_same_messages():
    history = [_user("go"), _assistant([_call("a")]), _user([_result("a")]), _assistant("done")]
    repaired = repair_history(history)
    assert all(a is b for a, b in zip(history, repaired))


# ------------------------------------------------------------------
# clean_for_gateway
# ------------------------------------------------------------------

def test_clean_keeps_adjacent_pair():
    history = [_user("go"), _assistant([_call("a")]), _user([_result("a")])]
    cleaned = clean_for_gateway(history)
    assert [m["role"] for m in cleaned] == ["user", "assistant", "user"]
    assert cleaned[1]["content"][0]["type"] == "tool_use"
    assert cleaned[2]["content"][0]["tool_use_id"] == "a"
    assert validate_adjacency(cleaned) == []


def test_clean_drops_pair_separated_by_another_message():
    history = [
        _user("go"),
        _assistant([TextBlock(text="checking"), _call("a")]),
        _assistant("Error: Tool execution failed: boom"),
        _user([_result("a")]),
    ]
    cleaned = clean_for_gateway(history)
    assert cleaned == [
        {"role": "user", "content": "go"},
        {"role": "assistant", "content": [{"type": "text", "text": "checking"}]},
        {"role": "assistant", "content": "Error: Tool execution failed: boom"},
    ]
    assert validate_adjacency(cleaned) == []


def test_clean_drops_unanswered_extra_calls():
    history = [
        _user("go"),
        _assistant([_call("a"), _call("b")]),
        _user([_result("a")]),
    ]
    cleaned = clean_for_gateway(history)
    assert [b["id"] for b in cleaned[1]["content"]] == ["a"]
    assert validate_adjacency(cleaned) == []


def test_clean_passes_raw_blocks_through():
    image = {"type": "image", "source": {"type": "base64", "data": "AAAA"}}
    cleaned = clean_for_gateway([_user([TextBlock(text="see"), RawBlock(data=image)])])
    assert cleaned[0]["content"][1] == image


def test_clean_falls_back_to_placeholder_when_nothing_survives():
    history = [_assistant([_call("a")]), _user([_result("b")])]
    assert clean_for_gateway(history) == [{"role": "user", "content": FALLBACK_PROMPT}]


def test_clean_never_returns_empty():
    assert clean_for_gateway([]) == [{"role": "user", "content": FALLBACK_PROMPT}]


def test_validate_adjacency_reports_violations():
    problems = validate_adjacency([
        {"role": "assistant", "content": [{"type": "tool_use", "id": "a", "name": "x", "input": {}}]},
        {"role": "assistant", "content": "oops"},
        {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "a", "content": ""}]},
    ])
    assert any("tool_use a" in p for p in problems)
    assert any("tool_result a" in p for p in problems)
