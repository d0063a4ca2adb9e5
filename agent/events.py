"""
Orchestrator event data types.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional


@dataclass
class AgentEvent:
    """Event emitted as the conversation changes"""
    type: str  # message, tool_status, approval, state, error
    content: str = ""
    data: Optional[Dict[str, Any]] = None


# Event types
MESSAGE = "message"
TOOL_STATUS = "tool_status"
APPROVAL = "approval"
STATE = "state"
ERROR = "error"
