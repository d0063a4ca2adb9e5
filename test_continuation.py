"""Tests for the continuation scheduler."""

import pytest

from agent.approval import ApprovalQueue
from agent.continuation import ContinuationScheduler, ConversationState
from agent.messages import Message, Role, ToolCallBlock, ToolInvocation, ToolResultBlock


async def _noop(*args):
    pass


@pytest.fixture
def queue():
    return ApprovalQueue(_noop, _noop)


@pytest.fixture
def calls():
    return []


@pytest.fixture
def scheduler(calls):
    async def resume():
        calls.append("resume")
    return ContinuationScheduler(resume)


def _turn(tid="t1"):
    return [
        Message(role=Role.USER, content="go"),
        Message(role=Role.ASSISTANT, content=[ToolCallBlock(id=tid, name="list_files")]),
        Message(role=Role.USER, content=[ToolResultBlock(tool_call_id=tid, content="ok")]),
    ]


async def test_resumes_once_per_result_message(scheduler, queue, calls):
    history = _turn()
    assert await scheduler.maybe_resume(history, set(), queue) is True
    assert await scheduler.maybe_resume(history, set(), queue) is False
    assert calls == ["resume"]
    assert scheduler.last_processed_id == history[-1].id


async def test_waits_for_in_flight_tools(scheduler, queue, calls):
    history = _turn()
    assert await scheduler.maybe_resume(history, {"t2"}, queue) is False
    assert await scheduler.maybe_resume(history, set(), queue) is True
    assert calls == ["resume"]


async def test_waits_for_pending_approvals(scheduler, queue, calls):
    history = _turn()
    await queue.enqueue(ToolInvocation(id="t2", name="read_file"))
    assert not scheduler.should_resume(history, set(), queue)
    await queue.deny_all()
    assert scheduler.should_resume(history, set(), queue)


def test_no_resume_without_tool_results(scheduler, queue):
    history = [Message(role=Role.USER, content="hello")]
    assert not scheduler.should_resume(history, set(), queue)
    assert not scheduler.should_resume([], set(), queue)
    history.append(Message(role=Role.ASSISTANT, content="hi"))
    assert not scheduler.should_resume(history, set(), queue)


def test_no_resume_after_error_notice(scheduler, queue):
    history = [
        Message(role=Role.USER, content="go"),
        Message(role=Role.ASSISTANT, content="Error: Tool execution failed: timeout"),
        Message(role=Role.USER, content=[ToolResultBlock(tool_call_id="t1", content="late")]),
    ]
    assert not scheduler.should_resume(history, set(), queue)


def test_pause_blocks_until_cleared(scheduler, queue):
    history = _turn()
    scheduler.pause()
    assert not scheduler.should_resume(history, set(), queue)
    assert scheduler.state(history, set(), queue) == ConversationState.PAUSED
    scheduler.clear_pause()
    assert scheduler.should_resume(history, set(), queue)


async def test_reentrant_evaluation_does_not_double_resume(queue):
    history = _turn()
    calls = []
    holder = {}

    async def resume():
        calls.append("resume")
        # an evaluation triggered from inside the continuation itself
        assert await holder["s"].maybe_resume(history, set(), queue) is False

    scheduler = ContinuationScheduler(resume)
    holder["s"] = scheduler
    await scheduler.maybe_resume(history, set(), queue)
    assert calls == ["resume"]
    assert scheduler.processing is False


async def test_result_landing_during_continuation_is_picked_up(queue):
    history = _turn()
    calls = []

    async def resume():
        calls.append(history[-1].id)
        if len(calls) == 1:
            history.append(Message(role=Role.ASSISTANT, content=[ToolCallBlock(id="t2", name="list_files")]))
            history.append(Message(role=Role.USER, content=[ToolResultBlock(tool_call_id="t2", content="ok")]))

    scheduler = ContinuationScheduler(resume)
    await scheduler.maybe_resume(history, set(), queue)
    assert len(calls) == 2
    assert calls[0] != calls[1]


def test_state_is_paused_after_error_notice(scheduler, queue):
    history = [
        Message(role=Role.USER, content="go"),
        Message(role=Role.ASSISTANT, content="Error: Tool execution failed: timeout"),
    ]
    assert scheduler.state(history, set(), queue) == ConversationState.PAUSED
    history.append(Message(role=Role.USER, content=[ToolResultBlock(tool_call_id="t1", content="late")]))
    assert scheduler.state(history, set(), queue) == ConversationState.PAUSED
    history.append(Message(role=Role.USER, content="next"))
    assert scheduler.state(history, set(), queue) == ConversationState.IDLE


async def test_state_reports_phase(scheduler, queue):
    history = _turn()
    assert scheduler.state(history, set(), queue, in_flight=True) == ConversationState.AWAITING_ASSISTANT
    assert scheduler.state(history, {"t9"}, queue) == ConversationState.EXECUTING_TOOLS
    await queue.enqueue(ToolInvocation(id="t2", name="read_file"))
    assert scheduler.state(history, set(), queue) == ConversationState.AWAITING_APPROVAL
    await queue.deny_all()
    assert scheduler.state(history, set(), queue) == ConversationState.IDLE
