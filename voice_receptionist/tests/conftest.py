"""
Shared test fixtures.
"""

import pytest

from voice_receptionist.src.business import load_business_profile
from voice_receptionist.src.call_session import SessionManager
from voice_receptionist.src.config import DEFAULT_BUSINESS_PROFILE
from voice_receptionist.src.conversation import DialogueEngine
from voice_receptionist.src.store import InMemoryBookingStore

from .fakes import FakeLLM, FakeSTT, FakeTTS


@pytest.fixture
def profile():
    return load_business_profile(DEFAULT_BUSINESS_PROFILE)


@pytest.fixture
def store():
    return InMemoryBookingStore()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def engine(llm, store, profile):
    return DialogueEngine(llm, store, profile)


@pytest.fixture
def stt_instances():
    return []


@pytest.fixture
def tts_instances():
    return []


@pytest.fixture
def manager(engine, store, stt_instances, tts_instances):
    def stt_factory():
        stt = FakeSTT(silence_window_ms=20)
        stt_instances.append(stt)
        return stt

    def tts_factory():
        tts = FakeTTS(chunk_ms=100)
        tts_instances.append(tts)
        return tts

    return SessionManager(engine, store, stt_factory, tts_factory, debounce_ms=50)
