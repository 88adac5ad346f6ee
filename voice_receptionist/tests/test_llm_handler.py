"""
Bedrock Converse wire-format and retry tests. No network access.
"""

import pytest

from voice_receptionist.src.config import BedrockConfig
from voice_receptionist.src.errors import ConfigurationError, ProviderConnectionError
from voice_receptionist.src.llm_handler import (
    LLMHandler,
    LLMResponse,
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    parse_bedrock_response,
    to_bedrock_messages,
)


def test_tool_blocks_to_wire():
    history = [
        Message.text("user", "Is Tony free?"),
        Message("assistant", (TextBlock("Let me check."), ToolUseBlock("t1", "check_availability", {"date": "2026-10-20"}))),
        Message("user", (ToolResultBlock("t1", {"error": "bad date"}, is_error=True),)),
    ]

    wire, system = to_bedrock_messages(history, "prompt")

    assert system == "prompt"
    assert wire[1]["content"] == [
        {"text": "Let me check."},
        {"toolUse": {"toolUseId": "t1", "name": "check_availability", "input": {"date": "2026-10-20"}}},
    ]
    assert wire[2]["content"] == [
        {"toolResult": {"toolUseId": "t1", "content": [{"json": {"error": "bad date"}}], "status": "error"}}
    ]


def test_parse_response_with_tool_use():
    payload = {
        "output": {"message": {"role": "assistant", "content": [
            {"text": "One moment."},
            {"toolUse": {"toolUseId": "abc", "name": "get_business_info", "input": {"topic": "hours"}}},
        ]}},
        "stopReason": "tool_use",
    }

    response = parse_bedrock_response(payload)

    assert response.text == "One moment."
    assert response.wants_tools
    assert response.tool_calls == [ToolUseBlock("abc", "get_business_info", {"topic": "hours"})]
    assert response.stop_reason == "tool_use"


def test_parse_empty_response():
    response = parse_bedrock_response({})
    assert response.text is None
    assert not response.wants_tools


def test_missing_api_key_rejected():
    with pytest.raises(ConfigurationError):
        LLMHandler(BedrockConfig(api_key=""))


@pytest.mark.asyncio
async def test_converse_builds_payload(monkeypatch):
    handler = LLMHandler(BedrockConfig(api_key="test-key", region="us-west-2", model_id="model-a"))
    requests = []

    async def fake_request(endpoint, payload):
        requests.append((endpoint, payload))
        return LLMResponse(text="Hi!")

    monkeypatch.setattr(handler, "_make_request", fake_request)

    await handler.converse([Message.text("user", "Hello")], "Be brief.", {"tools": []}, max_tokens=50)

    endpoint, payload = requests[0]
    assert endpoint == "https://bedrock-runtime.us-west-2.amazonaws.com/model/model-a/converse"
    assert payload["system"] == [{"text": "Be brief."}]
    assert payload["inferenceConfig"]["maxTokens"] == 50
    assert payload["toolConfig"] == {"tools": []}


@pytest.mark.asyncio
async def test_transient_error_retried_once(monkeypatch):
    handler = LLMHandler(BedrockConfig(api_key="test-key"))
    outcomes = [
        ProviderConnectionError("429 throttled", provider="bedrock", transient=True),
        LLMResponse(text="Sorry about that."),
    ]

    async def fake_request(endpoint, payload):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(handler, "_make_request", fake_request)

    response = await handler.converse([Message.text("user", "Hello")], "prompt")
    assert response.text == "Sorry about that."


@pytest.mark.asyncio
async def test_permanent_error_not_retried(monkeypatch):
    handler = LLMHandler(BedrockConfig(api_key="test-key"))
    attempts = []

    async def fake_request(endpoint, payload):
        attempts.append(endpoint)
        raise ProviderConnectionError("400 validation", provider="bedrock")

    monkeypatch.setattr(handler, "_make_request", fake_request)

    with pytest.raises(ProviderConnectionError):
        await handler.converse([Message.text("user", "Hello")], "prompt")
    assert len(attempts) == 1
