"""
Deepgram adapter tests. Message routing is exercised without a live socket.
"""

from types import SimpleNamespace

import pytest

from voice_receptionist.src.config import DeepgramConfig
from voice_receptionist.src.deepgram_stt import DeepgramSTT
from voice_receptionist.src.deepgram_tts import DeepgramTTS
from voice_receptionist.src.errors import ConfigurationError


def _results(text: str, is_final: bool):
    alternative = SimpleNamespace(transcript=text, confidence=0.93)
    return SimpleNamespace(type="Results", is_final=is_final, channel=SimpleNamespace(alternatives=[alternative]))


def test_adapters_require_api_key():
    with pytest.raises(ConfigurationError):
        DeepgramSTT(DeepgramConfig(api_key=""))
    with pytest.raises(ConfigurationError):
        DeepgramTTS(DeepgramConfig(api_key=""))


def test_tts_quantum_for_linear16_source():
    tts = DeepgramTTS(DeepgramConfig(api_key="test-key", tts_encoding="linear16", tts_sample_rate=24000))
    assert tts.chunk_size == 4800


@pytest.mark.asyncio
async def test_results_and_utterance_end_routed():
    stt = DeepgramSTT(DeepgramConfig(api_key="test-key"), silence_window_ms=5000)
    events = []

    async def on_transcript(result):
        events.append((result.text, result.is_final, result.confidence))

    async def on_utterance_end():
        events.append("utterance_end")

    stt.on_transcript(on_transcript)
    stt.on_utterance_end(on_utterance_end)

    await stt._process_message(_results("um I need a", False))
    await stt._process_message(_results("I need a haircut", True))
    await stt._process_message(SimpleNamespace(type="SpeechStarted"))
    await stt._process_message(SimpleNamespace(type="UtteranceEnd"))

    assert events == [
        ("I need a", False, 0.93),
        ("I need a haircut", True, 0.93),
        "utterance_end",
    ]
    stt._cancel_silence_timer()


@pytest.mark.asyncio
async def test_empty_results_ignored():
    stt = DeepgramSTT(DeepgramConfig(api_key="test-key"))
    events = []

    async def on_transcript(result):
        events.append(result)

    stt.on_transcript(on_transcript)
    await stt._process_message(SimpleNamespace(type="Results", is_final=True, channel=SimpleNamespace(alternatives=[])))
    await stt._process_message(_results("", True))

    assert events == []
