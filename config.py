"""
Configuration module for Sandbox Codex.
Handles all environment variables, gateway/backend selection, and orchestrator settings.
"""

import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class ApiConfig:
    """Settings for the HTTP gateway, sandbox backend and session store"""
    api_url: str = os.getenv("API_URL", "http://localhost:4000")
    api_token: str = os.getenv("API_TOKEN", "")
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "60"))

    def has_token(self) -> bool:
        return bool(self.api_token)


@dataclass
class AWSConfig:
    """AWS-specific configuration"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Model-specific configuration (Bedrock gateway only)"""
    model_id: str = os.getenv("BEDROCK_MODEL_ID", "us.anthropic.claude-sonnet-4-5-20250929-v1:0")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "8192"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE", "1")) if os.getenv("TEMPERATURE") else None
    system_prompt: str = os.getenv(
        "SYSTEM_PROMPT",
        "You are a coding assistant working inside a remote sandbox. "
        "Use the provided tools to inspect and change the project.",
    )


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Sandbox Codex"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug_mode: bool = os.getenv("DEBUG_MODE", "false").lower() == "true"
    # "http" talks to the reference agent API, "bedrock" calls Amazon Bedrock directly
    gateway_provider: str = os.getenv("GATEWAY_PROVIDER", "http")
    # "http" uses the remote sandbox API, "local" runs tools against working_directory
    backend_provider: str = os.getenv("BACKEND_PROVIDER", "http")
    working_directory: str = os.getenv("WORKING_DIRECTORY", ".")
    project_id: str = os.getenv("PROJECT_ID", "")
    workspace_id: str = os.getenv("WORKSPACE_ID", "")
    user_id: str = os.getenv("USER_ID", "")
    # YOLO mode: every tool call bypasses the approval queue
    auto_approve_all: bool = os.getenv("AUTO_APPROVE_ALL", "false").lower() == "true"
    # Loop guard: refuse the same tool+params after this many runs inside the window
    loop_guard_threshold: int = int(os.getenv("LOOP_GUARD_THRESHOLD", "3"))
    loop_guard_window: float = float(os.getenv("LOOP_GUARD_WINDOW", "30"))
    # Session persistence: "http" (remote API) or "file" (JSON files under sessions_dir)
    session_store: str = os.getenv("SESSION_STORE", "http")
    sessions_dir: str = os.getenv(
        "SESSIONS_DIR",
        os.path.join(os.path.expanduser("~"), ".sandbox-codex", "sessions"),
    )


# Create global config instances
api_config = ApiConfig()
aws_config = AWSConfig()
model_config = ModelConfig()
app_config = AppConfig()


def get_credentials_info() -> str:
    if aws_config.has_profile():
        return f"Using AWS profile: {aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        if aws_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default credential chain"
