"""End-to-end tests for ConversationOrchestrator with fake collaborators."""

import json

from agent import events as event_types
from agent.continuation import ConversationState
from agent.core import denial_note
from agent.execution import loop_warning
from agent.loop_guard import LoopGuard
from agent.messages import Message, Role, ToolResultBlock, ToolStatus
from gateway import GatewayError, GatewayResponse
from sessions import FileSessionStore

from conftest import text_response, tool_response


async def test_text_answer(make_orchestrator):
    orch = make_orchestrator([text_response("Hi there")])
    assert await orch.send_message("  hello  ") is True
    assert [(m.role, m.content) for m in orch.history] == [
        (Role.USER, "hello"),
        (Role.ASSISTANT, "Hi there"),
    ]
    assert orch.state == ConversationState.IDLE
    request = orch.gateway.requests[0]
    assert request.conversation_id == "proj-1"
    assert request.messages == [{"role": "user", "content": "hello"}]
    assert len(request.tools) == len(orch.registry)


async def test_blank_message_rejected(make_orchestrator):
    orch = make_orchestrator()
    assert await orch.send_message("   ") is False
    assert orch.history == []
    assert orch.gateway.requests == []


async def test_tool_call_waits_for_approval_then_continues(make_orchestrator, backend):
    orch = make_orchestrator([
        tool_response("list_files", {}, call_id="toolu_1", text="Looking around."),
        text_response("The project has one file."),
    ])
    await orch.send_message("what is in here?")

    assert orch.state == ConversationState.AWAITING_APPROVAL
    assert orch.queue.current.id == "toolu_1"
    assert orch.invocations["toolu_1"].status == ToolStatus.PENDING
    assert not any(c[0] == "list_directory" for c in backend.calls)

    await orch.approve_current()

    assert orch.invocations["toolu_1"].status == ToolStatus.COMPLETED
    roles = [m.role for m in orch.history]
    assert roles == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
    result = orch.history[2].content[0]
    assert isinstance(result, ToolResultBlock)
    assert result.tool_call_id == "toolu_1"
    assert "[FILE] src/app.py" in result.content
    assert orch.history[3].content == "The project has one file."
    assert orch.state == ConversationState.IDLE

    second = orch.gateway.requests[1].messages
    assert second[1]["content"][1]["type"] == "tool_use"
    assert second[2]["content"][0]["tool_use_id"] == "toolu_1"


async def test_denial_adds_note_and_does_not_continue(make_orchestrator, backend):
    orch = make_orchestrator([tool_response("execute_command", {"command": "rm -rf /"}, call_id="t1")])
    await orch.send_message("clean up")
    await orch.deny_current()

    assert orch.invocations["t1"].status == ToolStatus.DENIED
    assert orch.history[-1].role == Role.ASSISTANT
    assert orch.history[-1].content == denial_note(1)
    assert len(orch.gateway.requests) == 1
    assert not any(c[0] == "exec_command" for c in backend.calls)


def test_denial_note_wording():
    assert denial_note(1) == "Tool use denied. How else can I help you?"
    assert denial_note(3) == "Denied 3 tool(s). How else can I help you?"


async def test_auto_approve_runs_whole_loop(make_orchestrator):
    orch = make_orchestrator(
        [
            tool_response("read_file", {"path": "src/app.py"}, call_id="t1"),
            tool_response("search_files", {"pattern": "print"}, call_id="t2"),
            text_response("It prints hi."),
        ],
        auto_approve=True,
    )
    await orch.send_message("what does app.py do?")
    assert len(orch.gateway.requests) == 3
    assert orch.history[-1].content == "It prints hi."
    assert orch.queue.is_empty
    assert orch.executor.pending == set()
    assert orch.state == ConversationState.IDLE


async def test_only_first_of_several_tool_calls_runs(make_orchestrator, backend):
    response = GatewayResponse(content=[
        {"type": "tool_use", "id": "a", "name": "list_files", "input": {}},
        {"type": "tool_use", "id": "b", "name": "read_file", "input": {"path": "src/app.py"}},
    ])
    orch = make_orchestrator([response, text_response("ok")], auto_approve=True)
    await orch.send_message("look")

    assert not any(c[0] == "read_file" for c in backend.calls)
    followup = orch.gateway.requests[1].messages
    assert [b["id"] for b in followup[1]["content"]] == ["a"]


async def test_gateway_error_pauses_until_next_user_message(make_orchestrator, events):
    orch = make_orchestrator([GatewayError("upstream 502"), text_response("back online")])
    await orch.send_message("hello")

    assert orch.history[-1].content == "Error: upstream 502"
    assert orch.state == ConversationState.PAUSED
    assert any(e.type == event_types.ERROR and e.content == "upstream 502" for e in events)

    assert await orch.send_message("try again") is True
    assert orch.history[-1].content == "back online"
    assert orch.state == ConversationState.IDLE


async def test_gateway_error_during_continuation_stops_the_loop(make_orchestrator):
    orch = make_orchestrator(
        [tool_response("list_files", {}, call_id="t1"), GatewayError("rate limited")],
        auto_approve=True,
    )
    await orch.send_message("go")
    assert orch.history[-1].content == "Error: rate limited"
    assert len(orch.gateway.requests) == 2
    assert orch.state == ConversationState.PAUSED


async def test_empty_response_appends_nothing(make_orchestrator):
    orch = make_orchestrator([GatewayResponse(content=[])])
    await orch.send_message("hello")
    assert len(orch.history) == 1


async def test_tool_status_events(make_orchestrator, events):
    orch = make_orchestrator([tool_response("list_files", {}, call_id="t1")], auto_approve=True)
    await orch.send_message("go")
    statuses = [e.content for e in events if e.type == event_types.TOOL_STATUS]
    assert statuses == ["executing", "completed"]
    assert any(e.type == event_types.MESSAGE for e in events)


async def test_snapshot(make_orchestrator):
    orch = make_orchestrator([tool_response("list_files", {}, call_id="t1")])
    await orch.send_message("go")
    snap = orch.snapshot()
    assert snap["conversation_id"] == "proj-1"
    assert snap["state"] == "awaiting_approval"
    assert snap["approval"]["current"]["id"] == "t1"
    assert snap["pending"] == []
    assert len(snap["messages"]) == 2


# ------------------------------------------------------------------
# Persistence
# ------------------------------------------------------------------

async def test_messages_are_persisted_in_stored_form(make_orchestrator, store):
    orch = make_orchestrator(
        [tool_response("list_files", {}, call_id="t1"), text_response("done")],
        session_store=store,
    )
    session_id = await orch.open_session("proj-1")
    await orch.send_message("go")
    await orch.approve_current()

    stored = store.messages[session_id]
    assert [m["role"] for m in stored] == ["user", "assistant", "user", "assistant"]
    assert stored[0]["content"] == "go"
    blocks = json.loads(stored[1]["content"])
    assert blocks[0]["type"] == "tool_use"
    assert stored[1]["metadata"]["toolUse"]["id"] == "t1"
    assert json.loads(stored[2]["content"])[0]["tool_use_id"] == "t1"


async def test_reopen_restores_conversation_without_resuming(make_orchestrator, store):
    first = make_orchestrator([tool_response("list_files", {}, call_id="t1")], session_store=store, auto_approve=True)
    session_id = await first.open_session("proj-1")
    # stop right after the tool result: the continuation call fails
    first.gateway.script.append(GatewayError("offline"))
    await first.send_message("go")
    # drop the error notice so the stored tail is the tool result
    store.messages[session_id].pop()

    second = make_orchestrator(session_store=store)
    assert await second.open_session("proj-1") == session_id
    assert [m.role for m in second.history] == [Role.USER, Role.ASSISTANT, Role.USER]
    assert second.invocations["t1"].status == ToolStatus.COMPLETED
    assert second.state == ConversationState.IDLE
    assert second.gateway.requests == []


async def test_open_session_creates_when_none_exist(make_orchestrator, store):
    orch = make_orchestrator(session_store=store)
    session_id = await orch.open_session("proj-1")
    assert store.sessions[session_id]["title"] == "Agent Chat"
    assert orch.history == []


async def test_load_history_repairs_and_skips_unknown_roles(make_orchestrator):
    orch = make_orchestrator()
    await orch.load_history([
        {"role": "system", "content": "ignored"},
        {"role": "user", "content": "go"},
        {"role": "assistant", "content": json.dumps([
            {"type": "tool_use", "id": "orphan", "name": "list_files", "input": {}},
        ])},
    ])
    assert [m.content for m in orch.history] == ["go"]


async def test_persist_failure_does_not_break_conversation(make_orchestrator, store):
    orch = make_orchestrator([text_response("still here")], session_store=store)
    await orch.open_session("proj-1")
    store.fail_appends = True
    await orch.send_message("hello")
    assert orch.history[-1].content == "still here"


async def test_concurrent_results_all_reach_the_file_store(make_orchestrator, tmp_path):
    store = FileSessionStore(str(tmp_path / "sessions"))
    script = [
        tool_response("ask_followup_question", {"question": f"q{n}"}, call_id=f"t{n}")
        for n in range(12)
    ]
    orch = make_orchestrator(script + [text_response("all answered")], session_store=store)
    session_id = await orch.open_session("proj-1")
    for n in range(12):
        await orch.send_message(f"ask {n}")
    assert orch.queue.pending_count == 12

    await orch.approve_all()

    stored = [Message.from_dict(m) for m in await store.get_messages(session_id)]
    results = [m for m in stored if any(isinstance(b, ToolResultBlock) for b in m.blocks)]
    assert len(results) == 12
    assert stored[-1].content == "all answered"


# ------------------------------------------------------------------
# Bulk approval and the loop guard
# ------------------------------------------------------------------

async def test_approve_all_continues_once_after_the_whole_batch(make_orchestrator):
    orch = make_orchestrator([
        tool_response("ask_followup_question", {"question": "Which file?"}, call_id="t1"),
        tool_response("read_file", {}, call_id="t2"),
        tool_response("attempt_completion", {"result": "Finished"}, call_id="t3"),
        text_response("All three handled."),
    ])
    for text in ("first", "second", "third"):
        await orch.send_message(text)
    assert orch.queue.pending_count == 3
    assert len(orch.gateway.requests) == 3

    await orch.approve_all()

    assert len(orch.gateway.requests) == 4
    results = [m for m in orch.history if any(isinstance(b, ToolResultBlock) for b in m.blocks)]
    assert sorted(m.blocks[0].tool_call_id for m in results) == ["t1", "t2", "t3"]
    assert orch.history[-1].content == "All three handled."
    assert orch.executor.pending == set()
    assert orch.state == ConversationState.IDLE


async def test_configured_loop_guard_is_the_one_in_use(make_orchestrator, clock):
    guard = LoopGuard(threshold=1, clock=clock)
    orch = make_orchestrator(
        [
            tool_response("list_files", {}, call_id="t1"),
            tool_response("list_files", {}, call_id="t2"),
            text_response("never sent"),
        ],
        loop_guard=guard,
        auto_approve=True,
    )
    assert orch.executor.loop_guard is guard

    await orch.send_message("look twice")

    assert orch.invocations["t1"].status == ToolStatus.COMPLETED
    assert orch.invocations["t2"].status == ToolStatus.ERROR
    assert orch.history[-1].content == loop_warning("list_files", 1)
    assert len(orch.gateway.requests) == 2


async def test_tool_execution_error_leaves_conversation_paused(make_orchestrator, backend):
    orch = make_orchestrator(
        [tool_response("list_files", {}, call_id="t1"), text_response("recovered")],
        auto_approve=True,
    )
    backend.unreachable = True
    await orch.send_message("look")

    assert orch.history[-1].content.startswith("Error: Tool execution failed: ")
    assert orch.state == ConversationState.PAUSED
    assert len(orch.gateway.requests) == 1

    backend.unreachable = False
    await orch.send_message("try again")
    assert orch.history[-1].content == "recovered"
    assert orch.state == ConversationState.IDLE
