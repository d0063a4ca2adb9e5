"""
History repair and gateway projection.

Two passes over the ordered message list:

- ``repair_history``: load-time, structural. A tool call survives if a result
  for it exists anywhere in the history (and vice versa). Used on histories
  restored from storage, which partial writes may have left with orphans.
- ``clean_for_gateway``: send-time, positional. A tool call survives only if
  the very next message is a user message holding its result. The gateway
  rejects any other pairing, so this is stricter than repair.
"""

import logging
from typing import Any, Dict, List, Sequence, Set, Tuple

from .messages import (
    Message,
    Role,
    ToolCallBlock,
    ToolResultBlock,
    content_to_wire,
    extract_text,
)

logger = logging.getLogger(__name__)

FALLBACK_PROMPT = "Hello, I need help with this project."


def _tool_call_ids(message: Message) -> List[str]:
    return [b.id for b in message.blocks if isinstance(b, ToolCallBlock) and b.id]


def _tool_result_ids(message: Message) -> List[str]:
    return [b.tool_call_id for b in message.blocks if isinstance(b, ToolResultBlock) and b.tool_call_id]


# ------------------------------------------------------------------
# Load-time repair
# ------------------------------------------------------------------

def repair_history(messages: Sequence[Message]) -> List[Message]:
    """Drop orphaned tool calls/results and messages left empty by that.

    Lossy: orphaned tool activity is discarded. Idempotent. The input list and
    its messages are not modified; repaired messages are shallow copies.
    """
    call_index: Dict[str, int] = {}
    result_index: Dict[str, int] = {}
    for idx, msg in enumerate(messages):
        for tid in _tool_call_ids(msg):
            call_index[tid] = idx
        for tid in _tool_result_ids(msg):
            result_index[tid] = idx

    orphan_calls = [tid for tid in call_index if tid not in result_index]
    orphan_results = [tid for tid in result_index if tid not in call_index]
    if orphan_calls or orphan_results:
        logger.info(
            f"[Repair] {len(messages)} messages, {len(call_index)} tool calls, "
            f"{len(result_index)} tool results, orphaned calls={orphan_calls}, "
            f"orphaned results={orphan_results}"
        )

    repaired: List[Message] = []
    for msg in messages:
        if not isinstance(msg.content, list):
            repaired.append(msg)
            continue

        kept = []
        for block in msg.content:
            if isinstance(block, ToolCallBlock):
                if block.id in result_index:
                    kept.append(block)
                else:
                    logger.warning(f"[Repair] Removing orphaned tool call: {block.id}")
            elif isinstance(block, ToolResultBlock):
                if block.tool_call_id in call_index:
                    kept.append(block)
                else:
                    logger.warning(f"[Repair] Removing orphaned tool result: {block.tool_call_id}")
            else:
                kept.append(block)

        if not kept:
            logger.warning(f"[Repair] Dropping message left empty: {msg.id}")
            continue
        if len(kept) == len(msg.content):
            repaired.append(msg)
        else:
            repaired.append(Message(
                role=msg.role,
                content=kept,
                id=msg.id,
                timestamp=msg.timestamp,
                tool_invocation=msg.tool_invocation,
            ))

    if len(repaired) != len(messages):
        logger.info(f"[Repair] History repaired: {len(messages)} -> {len(repaired)} messages")
    return repaired


# ------------------------------------------------------------------
# Send-time cleaning
# ------------------------------------------------------------------

def adjacent_pairs(messages: Sequence[Message]) -> Set[Tuple[int, str]]:
    """``(i, id)`` for every call in assistant message i answered in user message i+1."""
    pairs: Set[Tuple[int, str]] = set()
    for i in range(len(messages) - 1):
        current, nxt = messages[i], messages[i + 1]
        if current.role != Role.ASSISTANT or nxt.role != Role.USER:
            continue
        if not isinstance(current.content, list) or not isinstance(nxt.content, list):
            continue
        result_ids = set(_tool_result_ids(nxt))
        for tid in _tool_call_ids(current):
            if tid in result_ids:
                pairs.add((i, tid))
    return pairs


def clean_for_gateway(messages: Sequence[Message]) -> List[Dict[str, Any]]:
    """Project the history to ``{role, content}`` dicts safe to send.

    Never returns an empty list: falls back to the user messages as plain text,
    then to a single placeholder prompt.
    """
    pairs = adjacent_pairs(messages)

    cleaned: List[Dict[str, Any]] = []
    for idx, msg in enumerate(messages):
        if not isinstance(msg.content, list):
            cleaned.append({"role": msg.role.value, "content": msg.content})
            continue

        kept = []
        for block in msg.content:
            if isinstance(block, ToolCallBlock):
                if (idx, block.id) in pairs:
                    kept.append(block)
                else:
                    logger.warning(f"[Gateway] Excluding non-adjacent tool call: {block.id}")
            elif isinstance(block, ToolResultBlock):
                if (idx - 1, block.tool_call_id) in pairs:
                    kept.append(block)
                else:
                    logger.warning(f"[Gateway] Excluding non-adjacent tool result: {block.tool_call_id}")
            else:
                kept.append(block)

        if not kept:
            logger.warning(f"[Gateway] Skipping empty message at index {idx}")
            continue
        cleaned.append({"role": msg.role.value, "content": content_to_wire(kept)})

    if cleaned:
        logger.debug(f"[Gateway] {len(messages)} messages -> {len(cleaned)}, {len(pairs)} valid pairs")
        return cleaned

    logger.error("[Gateway] Cleaning produced no messages, falling back to user text")
    fallback = []
    for msg in messages:
        if msg.role != Role.USER:
            continue
        text = extract_text(msg.content, sep="\n")
        if text.strip():
            fallback.append({"role": Role.USER.value, "content": text})
    if fallback:
        return fallback

    logger.error("[Gateway] No usable user text, sending placeholder prompt")
    return [{"role": Role.USER.value, "content": FALLBACK_PROMPT}]


def validate_adjacency(wire_messages: Sequence[Dict[str, Any]]) -> List[str]:
    """List violations of the adjacency rule in already-projected messages."""
    problems: List[str] = []

    def _ids(content: Any, block_type: str, key: str) -> List[str]:
        if not isinstance(content, list):
            return []
        return [b.get(key, "") for b in content if isinstance(b, dict) and b.get("type") == block_type]

    for i, msg in enumerate(wire_messages):
        calls = _ids(msg.get("content"), "tool_use", "id")
        results = _ids(msg.get("content"), "tool_result", "tool_use_id")
        if calls and msg.get("role") != Role.ASSISTANT.value:
            problems.append(f"message {i}: tool_use in {msg.get('role')} message")
        for tid in calls:
            nxt = wire_messages[i + 1] if i + 1 < len(wire_messages) else None
            if nxt is None or nxt.get("role") != Role.USER.value:
                problems.append(f"message {i}: tool_use {tid} not followed by a user message")
            elif tid not in _ids(nxt.get("content"), "tool_result", "tool_use_id"):
                problems.append(f"message {i}: tool_use {tid} has no result in message {i + 1}")
        for tid in results:
            prev = wire_messages[i - 1] if i > 0 else None
            if prev is None or tid not in _ids(prev.get("content"), "tool_use", "id"):
                problems.append(f"message {i}: tool_result {tid} has no call in message {i - 1}")
    return problems
