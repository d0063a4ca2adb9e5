"""
LLM gateway interface and the HTTP implementation.

The gateway speaks the Anthropic Messages wire format: messages are
``{role, content}`` dicts, content is a string or a list of block dicts.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from api_client import ApiClient, ApiError, TokenGetter

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """LLM gateway call failed"""
    pass


@dataclass
class GatewayRequest:
    conversation_id: str
    messages: List[Dict[str, Any]]
    tools: List[Dict[str, Any]] = field(default_factory=list)
    stream: bool = False


@dataclass
class GatewayResponse:
    """Assistant turn: ``content`` is a string or a list of wire blocks."""
    content: Any
    stop_reason: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=dict)


class LLMGateway(ABC):
    @abstractmethod
    async def chat(self, request: GatewayRequest) -> GatewayResponse:
        """One non-streaming assistant turn. Raises GatewayError."""

    async def close(self) -> None:
        pass


class HttpGateway(LLMGateway):
    """Gateway served by the agent API at ``POST /ai/agent/chat``."""

    def __init__(
        self,
        api_url: str,
        token_getter: Optional[TokenGetter] = None,
        timeout: float = 120.0,
        api: Optional[ApiClient] = None,
    ):
        self.api = api or ApiClient(api_url, token_getter=token_getter, timeout=timeout)

    async def chat(self, request: GatewayRequest) -> GatewayResponse:
        body = {
            "projectId": request.conversation_id,
            "messages": request.messages,
            "tools": request.tools,
            "stream": request.stream,
        }
        logger.info(f"Gateway call: {len(request.messages)} messages, {len(request.tools)} tools")
        try:
            data = await self.api.post("/ai/agent/chat", body)
        except ApiError as e:
            raise GatewayError(str(e)) from e

        if not isinstance(data, dict) or "content" not in data:
            raise GatewayError("Gateway response has no content")
        return GatewayResponse(
            content=data.get("content"),
            stop_reason=data.get("stop_reason"),
            usage=data.get("usage") or {},
        )

    async def close(self) -> None:
        await self.api.aclose()
