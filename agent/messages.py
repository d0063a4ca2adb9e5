"""
Message and content block types for the conversation history.

Blocks mirror the Anthropic wire format: ``text``, ``tool_use`` and
``tool_result``. Anything else (images, documents) is carried as a RawBlock so
it survives a load/save round trip untouched.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ToolStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    DENIED = "denied"
    ERROR = "error"


@dataclass
class TextBlock:
    text: str = ""


@dataclass
class ToolCallBlock:
    """The model asked to run tool ``name`` with ``params``."""
    id: str
    name: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResultBlock:
    """What the tool call ``tool_call_id`` returned."""
    tool_call_id: str
    content: Any = ""
    is_error: bool = False


@dataclass
class RawBlock:
    """Block type we do not interpret (image, document, ...)."""
    data: Dict[str, Any] = field(default_factory=dict)


ContentBlock = Union[TextBlock, ToolCallBlock, ToolResultBlock, RawBlock]
Content = Union[str, List[ContentBlock]]


@dataclass
class ToolInvocation:
    """Lifecycle record for one tool call. One per ToolCallBlock id, mutated in place."""
    id: str
    name: str
    params: Dict[str, Any] = field(default_factory=dict)
    status: ToolStatus = ToolStatus.PENDING

    @classmethod
    def from_call(cls, block: ToolCallBlock) -> "ToolInvocation":
        return cls(id=block.id, name=block.name, params=dict(block.params or {}))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tool": self.name,
            "params": self.params,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolInvocation":
        try:
            status = ToolStatus(data.get("status", "pending"))
        except ValueError:
            status = ToolStatus.PENDING
        return cls(
            id=data.get("id", ""),
            name=data.get("tool") or data.get("name", ""),
            params=dict(data.get("params") or {}),
            status=status,
        )


def new_message_id() -> str:
    return f"msg-{uuid.uuid4().hex}"


@dataclass
class Message:
    role: Role
    content: Content
    id: str = field(default_factory=new_message_id)
    timestamp: float = field(default_factory=time.time)
    tool_invocation: Optional[ToolInvocation] = None

    @property
    def blocks(self) -> List[ContentBlock]:
        """Content as a block list (empty for plain text messages)."""
        return self.content if isinstance(self.content, list) else []

    def to_wire(self) -> Dict[str, Any]:
        """Gateway projection: ``{role, content}``."""
        return {"role": self.role.value, "content": content_to_wire(self.content)}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": content_to_wire(self.content),
            "timestamp": self.timestamp,
        }
        if self.tool_invocation is not None:
            data["metadata"] = {"toolUse": self.tool_invocation.to_dict()}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Build a message from its stored form.

        Stored content may be a JSON string holding a block list (the session
        store flattens block content to text). The legacy ``tool`` role is a
        user message carrying tool results. Raises ValueError on unknown roles.
        """
        role_raw = data.get("role", "")
        if role_raw == "tool":
            role_raw = "user"
        role = Role(role_raw)

        raw_content = data.get("content", "")
        if isinstance(raw_content, str) and raw_content[:1] in ("[", "{"):
            try:
                raw_content = json.loads(raw_content)
            except ValueError:
                pass
        if isinstance(raw_content, dict):
            raw_content = [raw_content]

        timestamp = data.get("timestamp")
        if not isinstance(timestamp, (int, float)):
            timestamp = time.time()

        metadata = data.get("metadata") or {}
        tool_use = metadata.get("toolUse") if isinstance(metadata, dict) else None

        return cls(
            id=data.get("id") or new_message_id(),
            role=role,
            content=content_from_wire(raw_content),
            timestamp=float(timestamp),
            tool_invocation=ToolInvocation.from_dict(tool_use) if isinstance(tool_use, dict) else None,
        )


# ------------------------------------------------------------------
# Wire conversion
# ------------------------------------------------------------------

def block_to_dict(block: ContentBlock) -> Dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolCallBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.params}
    if isinstance(block, ToolResultBlock):
        out = {"type": "tool_result", "tool_use_id": block.tool_call_id, "content": block.content}
        if block.is_error:
            out["is_error"] = True
        return out
    return dict(block.data)


def block_from_dict(data: Any) -> ContentBlock:
    if not isinstance(data, dict):
        return TextBlock(text=str(data))
    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(text=data.get("text") or "")
    if block_type == "tool_use":
        return ToolCallBlock(
            id=data.get("id", ""),
            name=data.get("name", ""),
            params=dict(data.get("input") or {}),
        )
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_call_id=data.get("tool_use_id", ""),
            content=data.get("content", ""),
            is_error=bool(data.get("is_error", False)),
        )
    return RawBlock(data=dict(data))


def content_to_wire(content: Content) -> Any:
    if isinstance(content, str):
        return content
    return [block_to_dict(b) for b in content]


def content_from_wire(content: Any) -> Content:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return [block_from_dict(b) for b in content]
    return str(content)


# ------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------

def extract_tool_calls(message: Optional[Message]) -> List[ToolCallBlock]:
    if message is None:
        return []
    return [b for b in message.blocks if isinstance(b, ToolCallBlock)]


def extract_text(content: Optional[Content], sep: str = "") -> str:
    """Concatenate every text block; other block kinds are ignored."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return sep.join(b.text for b in content if isinstance(b, TextBlock))


def has_tool_results(message: Optional[Message]) -> bool:
    if message is None:
        return False
    return any(isinstance(b, ToolResultBlock) for b in message.blocks)


def is_error_notice(message: Optional[Message]) -> bool:
    """Assistant error notices are plain text starting with ``Error:``."""
    return (
        message is not None
        and message.role == Role.ASSISTANT
        and isinstance(message.content, str)
        and message.content.startswith("Error:")
    )
