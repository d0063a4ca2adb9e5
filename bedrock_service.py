"""
Amazon Bedrock gateway.
Calls Anthropic Claude models through the Bedrock runtime ``invoke_model`` API.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from config import aws_config, model_config, get_credentials_info
from gateway import GatewayError, GatewayRequest, GatewayResponse, LLMGateway

logger = logging.getLogger(__name__)

_REGION_PREFIXES = ("us.", "eu.", "ap.")


class BedrockError(GatewayError):
    """Custom exception for Bedrock service errors"""
    pass


def _ensure_non_empty_content(content: Any) -> Any:
    """API requires non-empty content for every message."""
    if isinstance(content, str):
        return content if content.strip() else "(no content)"
    if isinstance(content, list):
        out = []
        for b in content:
            if isinstance(b, dict) and b.get("type") == "text" and not (b.get("text") or "").strip():
                out.append({**b, "text": "(no content)"})
            else:
                out.append(b)
        return out or [{"type": "text", "text": "(no content)"}]
    return content if content is not None else [{"type": "text", "text": "(no content)"}]


class BedrockService(LLMGateway):
    """
    Gateway backed by Amazon Bedrock.
    The blocking boto3 call runs in the default executor.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        region: Optional[str] = None,
        max_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
        client: Any = None,
    ):
        self.model_id = model_id or model_config.model_id
        self.region = region or aws_config.region
        self.max_tokens = max_tokens or model_config.max_tokens
        self.system_prompt = system_prompt if system_prompt is not None else model_config.system_prompt
        self.client = client or self._create_client()
        logger.info(f"BedrockService initialized with model: {self.model_id}")

    def _create_client(self) -> Any:
        """Create and configure the Bedrock runtime client"""
        try:
            session_kwargs = {"region_name": self.region}

            if aws_config.has_profile():
                session_kwargs["profile_name"] = aws_config.profile_name
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            logger.info(get_credentials_info())
            session = boto3.Session(**session_kwargs)
            return session.client("bedrock-runtime")

        except NoCredentialsError:
            raise BedrockError("AWS credentials not configured.")
        except (BotoCoreError, ValueError) as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    def _get_model_identifier(self) -> str:
        """Cross-region inference profile id for the configured model"""
        if self.model_id.startswith(_REGION_PREFIXES) or not self.model_id.startswith("anthropic."):
            return self.model_id
        region_prefix = "eu" if self.region.startswith("eu-") else "ap" if self.region.startswith("ap-") else "us"
        return f"{region_prefix}.{self.model_id}"

    def _format_request_body(self, messages: List[Dict], tools: Optional[List[Dict]] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": m["role"], "content": _ensure_non_empty_content(m.get("content"))}
                for m in messages
                if m.get("role") != "system"
            ],
        }
        if model_config.temperature is not None:
            body["temperature"] = model_config.temperature
        if self.system_prompt:
            body["system"] = self.system_prompt
        if tools:
            body["tools"] = tools
        return body

    def _parse_response(self, response_body: Dict) -> GatewayResponse:
        """Keep text and tool_use blocks; thinking blocks are dropped."""
        content = [
            block for block in response_body.get("content") or []
            if isinstance(block, dict) and block.get("type") in ("text", "tool_use")
        ]
        usage = response_body.get("usage") or {}
        return GatewayResponse(
            content=content,
            stop_reason=response_body.get("stop_reason"),
            usage={
                "input_tokens": usage.get("input_tokens", 0),
                "output_tokens": usage.get("output_tokens", 0),
            },
        )

    def _invoke(self, body: Dict[str, Any]) -> Dict[str, Any]:
        model_identifier = self._get_model_identifier()
        logger.info(f"Invoking model: {model_identifier}")
        try:
            response = self.client.invoke_model(
                modelId=model_identifier,
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
            return json.loads(response["body"].read())
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            error_message = e.response.get("Error", {}).get("Message", str(e))
            logger.error(f"Bedrock API error: {error_code} - {error_message}")
            if error_code in ["ExpiredTokenException", "InvalidSignatureException"]:
                raise BedrockError("AWS credentials expired. Please refresh.")
            raise BedrockError(f"Bedrock API error: {error_message}")
        except NoCredentialsError:
            raise BedrockError("AWS credentials not configured.")
        except BotoCoreError as e:
            logger.error(f"Bedrock call failed: {e}")
            raise BedrockError(f"Bedrock call failed: {e}")
        except ValueError as e:
            raise BedrockError(f"Failed to parse model response: {e}")

    async def chat(self, request: GatewayRequest) -> GatewayResponse:
        body = self._format_request_body(request.messages, request.tools)
        loop = asyncio.get_running_loop()
        response_body = await loop.run_in_executor(None, self._invoke, body)
        return self._parse_response(response_body)
