"""
STT handler contract tests, driven through a fake provider.
"""

import asyncio

import pytest

from voice_receptionist.src.audio_utils import AudioEncoding, AudioFrame
from voice_receptionist.src.errors import ProviderConnectionError

from .fakes import FakeSTT


def _recording_stt(**kwargs):
    stt = FakeSTT(**kwargs)
    events = []

    async def on_transcript(result):
        events.append(("transcript", result.text, result.is_final))

    async def on_utterance_end():
        events.append(("utterance_end",))

    async def on_error(error):
        events.append(("error", str(error)))

    async def on_close():
        events.append(("close",))

    stt.on_transcript(on_transcript)
    stt.on_utterance_end(on_utterance_end)
    stt.on_error(on_error)
    stt.on_close(on_close)
    return stt, events


def test_filler_words_removed():
    stt = FakeSTT()
    assert stt.filter_fillers("Um, I need a uh haircut") == "I need a haircut"
    assert stt.filter_fillers("you know, Tuesday works") == "Tuesday works"
    assert stt.filter_fillers("Uh-huh") == ""
    assert stt.filter_fillers("Umbrella ahead") == "Umbrella ahead"


@pytest.mark.asyncio
async def test_filler_only_transcript_is_not_delivered():
    stt, events = _recording_stt(silence_window_ms=1000)
    await stt.start()

    await stt.say("um uh", is_final=False)
    assert events == []

    await stt.say("I want a fade")
    assert events == [("transcript", "I want a fade", True)]
    await stt.stop()


@pytest.mark.asyncio
async def test_silence_after_final_ends_utterance():
    stt, events = _recording_stt(silence_window_ms=20)
    await stt.start()

    await stt.say("book me for", is_final=False)
    await stt.say("book me for Tuesday")
    await asyncio.sleep(0.06)

    assert events[-1] == ("utterance_end",)
    assert events.count(("utterance_end",)) == 1
    await stt.stop()


@pytest.mark.asyncio
async def test_interim_transcripts_do_not_end_utterance():
    stt, events = _recording_stt(silence_window_ms=20)
    await stt.start()

    await stt.say("hello there", is_final=False)
    await asyncio.sleep(0.06)

    assert ("utterance_end",) not in events
    await stt.stop()


@pytest.mark.asyncio
async def test_provider_utterance_end_fires_once_per_final_run():
    stt, events = _recording_stt(silence_window_ms=1000)
    await stt.start()

    await stt.say("hi")
    await stt.end_utterance()
    await stt.end_utterance()

    assert events.count(("utterance_end",)) == 1
    await stt.stop()


@pytest.mark.asyncio
async def test_audio_dropped_before_start_and_after_stop():
    stt, _ = _recording_stt()
    frame = AudioFrame(bytes([0xFF]) * 160)

    await stt.send_audio(frame)
    await stt.start()
    await stt.send_audio(frame)
    await stt.stop()
    await stt.send_audio(frame)

    assert stt.sent == [frame.data]


@pytest.mark.asyncio
async def test_audio_converted_to_provider_format():
    stt = FakeSTT()
    await stt.start()

    await stt.send_audio(AudioFrame(bytes(480), AudioEncoding.PCM16, 24000))

    assert stt.sent == [bytes([0xFF]) * 80]
    await stt.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_closes_once():
    stt, events = _recording_stt()
    await stt.start()

    await stt.stop()
    await stt.stop()

    assert events.count(("close",)) == 1
    assert stt.disconnects == 1


@pytest.mark.asyncio
async def test_no_events_after_stop():
    stt, events = _recording_stt(silence_window_ms=20)
    await stt.start()
    await stt.say("hello")
    await stt.stop()
    events.clear()

    await stt.say("too late")
    await asyncio.sleep(0.06)

    assert events == []


@pytest.mark.asyncio
async def test_start_failure_raises_connection_error():
    stt = FakeSTT(fail_start=True)
    with pytest.raises(ProviderConnectionError):
        await stt.start()
    assert not stt.state.is_connected


@pytest.mark.asyncio
async def test_send_failure_reports_error():
    stt, events = _recording_stt()
    await stt.start()

    async def broken_send(audio):
        raise ProviderConnectionError("socket closed", provider="fake")

    stt._send = broken_send
    await stt.send_audio(AudioFrame(bytes([0xFF]) * 160))

    assert events == [("error", "socket closed")]
    assert not stt.state.is_connected
