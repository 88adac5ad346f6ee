"""
Amazon Bedrock Converse handler.
Owns the provider wire format: internal messages are converted to and from
Bedrock content blocks here and nowhere else.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Union

import aiohttp

from .config import BedrockConfig
from .errors import ConfigurationError, ProviderConnectionError

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class ToolUseBlock:
    tool_use_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    result: Any
    is_error: bool = False


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass(frozen=True)
class Message:
    """A message in the conversation."""
    role: str  # "user" or "assistant"
    content: tuple[ContentBlock, ...]

    @classmethod
    def text(cls, role: str, text: str) -> "Message":
        return cls(role=role, content=(TextBlock(text),))

    @property
    def text_content(self) -> Optional[str]:
        """First text block, or None for pure tool-use / tool-result messages."""
        for block in self.content:
            if isinstance(block, TextBlock) and block.text:
                return block.text
        return None


@dataclass
class LLMResponse:
    """One Converse round trip."""
    text: Optional[str] = None
    tool_calls: list[ToolUseBlock] = field(default_factory=list)
    stop_reason: str = "end_turn"

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


def _block_to_wire(block: ContentBlock) -> dict:
    if isinstance(block, TextBlock):
        return {"text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"toolUse": {"toolUseId": block.tool_use_id, "name": block.name, "input": block.input}}
    return {
        "toolResult": {
            "toolUseId": block.tool_use_id,
            "content": [{"json": block.result}],
            "status": "error" if block.is_error else "success",
        }
    }


def to_bedrock_messages(
    messages: Sequence[Message], system_prompt: str
) -> tuple[list[dict], str]:
    """
    Convert internal history to Converse messages.

    Converse requires the first message to come from the user, so any leading
    assistant turns (the greeting) are folded into the system prompt.
    """
    leading = []
    index = 0
    while index < len(messages) and messages[index].role == "assistant":
        text = messages[index].text_content
        if text:
            leading.append(text)
        index += 1

    if leading:
        said = " ".join(leading)
        system_prompt = f"{system_prompt}\n\nYou already said to the caller: \"{said}\"\nNow respond to their reply."

    wire = [
        {"role": msg.role, "content": [_block_to_wire(b) for b in msg.content]}
        for msg in messages[index:]
    ]
    return wire, system_prompt


def parse_bedrock_response(payload: dict) -> LLMResponse:
    """Convert a Converse response body into an LLMResponse."""
    content = payload.get("output", {}).get("message", {}).get("content", []) or []
    texts = []
    tool_calls = []
    for block in content:
        if "text" in block and block["text"]:
            texts.append(block["text"])
        elif "toolUse" in block:
            tool_use = block["toolUse"]
            tool_calls.append(ToolUseBlock(
                tool_use_id=tool_use.get("toolUseId", ""),
                name=tool_use.get("name", ""),
                input=tool_use.get("input") or {},
            ))
    return LLMResponse(
        text=" ".join(texts) if texts else None,
        tool_calls=tool_calls,
        stop_reason=payload.get("stopReason", "end_turn"),
    )


class LLMHandler:
    """Handles Bedrock Claude via the Converse API."""

    provider_name = "bedrock"

    def __init__(self, config: BedrockConfig):
        if not config.api_key:
            raise ConfigurationError("BEDROCK_API_KEY is required for the dialogue engine")
        self.config = config
        self.api_key = config.api_key
        self.region = config.region
        self._base_url = f"https://bedrock-runtime.{self.region}.amazonaws.com/model"

    async def converse(
        self,
        messages: Sequence[Message],
        system_prompt: str,
        tool_config: Optional[dict] = None,
        *,
        model_id: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """
        Run one Converse round trip.

        Transient failures (throttling, 5xx, dropped connections) are retried once.

        Raises:
            ProviderConnectionError: when the request fails
        """
        wire_messages, system_text = to_bedrock_messages(messages, system_prompt)

        # Use config defaults if not specified
        payload: dict[str, Any] = {
            "messages": wire_messages,
            "inferenceConfig": {
                "maxTokens": max_tokens if max_tokens is not None else self.config.max_tokens,
                "temperature": temperature if temperature is not None else self.config.temperature,
            },
        }
        if system_text:
            payload["system"] = [{"text": system_text}]
        if tool_config:
            payload["toolConfig"] = tool_config

        endpoint = f"{self._base_url}/{model_id or self.config.model_id}/converse"

        try:
            return await self._make_request(endpoint, payload)
        except ProviderConnectionError as e:
            if not e.transient:
                raise
            logger.warning(f"Bedrock transient error, retrying once: {e}")
            return await self._make_request(endpoint, payload)

    async def _make_request(self, endpoint: str, payload: dict) -> LLMResponse:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        start_time = time.time()

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    endpoint,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ProviderConnectionError(
                            f"Bedrock API error {response.status}: {error_text}",
                            provider=self.provider_name,
                            transient=response.status in TRANSIENT_STATUSES,
                        )
                    result = await response.json()
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise ProviderConnectionError(
                f"Bedrock connection error: {e}", provider=self.provider_name, transient=True
            ) from e
        except aiohttp.ClientError as e:
            raise ProviderConnectionError(
                f"Bedrock request error: {e}", provider=self.provider_name
            ) from e

        parsed = parse_bedrock_response(result)
        logger.info(
            f"Bedrock response in {(time.time() - start_time) * 1000:.0f}ms "
            f"(stop_reason={parsed.stop_reason}, tools={len(parsed.tool_calls)})"
        )
        return parsed
