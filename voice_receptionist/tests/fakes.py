"""
Provider fakes and helpers shared by the tests.
"""

import asyncio
from typing import AsyncIterator, Iterable, Optional

from voice_receptionist.src.call_session import AudioSink
from voice_receptionist.src.errors import ProviderConnectionError
from voice_receptionist.src.llm_handler import LLMResponse, ToolUseBlock
from voice_receptionist.src.stt_handler import STTHandler
from voice_receptionist.src.tts_handler import TTSHandler


class FakeSTT(STTHandler):
    """STT driven directly by tests through the provider entry points."""

    provider_name = "fake"

    def __init__(self, fail_start: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.fail_start = fail_start
        self.sent: list[bytes] = []
        self.disconnects = 0

    async def _connect(self) -> None:
        if self.fail_start:
            raise ProviderConnectionError("connection refused", provider="fake")

    async def _send(self, audio: bytes) -> None:
        self.sent.append(audio)

    async def _disconnect(self) -> None:
        self.disconnects += 1

    async def say(self, text: str, is_final: bool = True) -> None:
        await self._handle_transcript(text, is_final, 0.95)

    async def end_utterance(self) -> None:
        await self._handle_utterance_end()


class FakeTTS(TTSHandler):
    """TTS that yields scripted mu-law audio, one chunk per loop iteration."""

    provider_name = "fake"

    def __init__(
        self,
        chunks: int = 4,
        chunk_bytes: int = 800,
        failures: Optional[list] = None,
        delay: float = 0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.chunks = chunks
        self.chunk_bytes = chunk_bytes
        self.failures = list(failures or [])
        self.delay = delay
        self.texts: list[str] = []
        self.interrupts = 0

    def interrupt(self) -> None:
        self.interrupts += 1
        super().interrupt()

    async def _stream_audio(self, text: str) -> AsyncIterator[bytes]:
        self.texts.append(text)
        failure = self.failures.pop(0) if self.failures else None
        for i in range(self.chunks):
            if failure is not None and i == failure[0]:
                raise failure[1]
            await asyncio.sleep(self.delay)
            yield bytes([0x7F]) * self.chunk_bytes


class FakeLLM:
    """Scripted stand-in for LLMHandler.converse."""

    def __init__(self, responses: Iterable = ()):
        self.responses = list(responses)
        self.calls: list[dict] = []

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    async def converse(self, messages, system_prompt, tool_config=None, *, model_id=None, max_tokens=None, temperature=None):
        self.calls.append({
            "messages": list(messages),
            "system_prompt": system_prompt,
            "tool_config": tool_config,
            "model_id": model_id,
        })
        if not self.responses:
            return LLMResponse(text="Okay.")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return LLMResponse(text=response)
        return response


def tool_call(name: str, tool_use_id: str = "tool-1", **arguments) -> LLMResponse:
    return LLMResponse(
        tool_calls=[ToolUseBlock(tool_use_id=tool_use_id, name=name, input=arguments)],
        stop_reason="tool_use",
    )


class FakeSink(AudioSink):
    def __init__(self):
        self.media: list[bytes] = []
        self.marks: list[str] = []

    async def send_media(self, payload: bytes) -> None:
        self.media.append(payload)

    async def send_mark(self, name: str) -> None:
        self.marks.append(name)


async def settle(rounds: int = 20) -> None:
    """Let spawned tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Poll until predicate() is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
