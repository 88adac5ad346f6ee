"""
Voice Receptionist - AI-powered inbound phone receptionist.

Uses Telnyx media streams for telephony, Deepgram for STT/TTS, and Amazon Bedrock for LLM.
"""

from .src import (
    load_config,
    Config,
    SessionManager,
    DialogueEngine,
    STTHandler,
    TTSHandler,
    LLMHandler,
)

__all__ = [
    "load_config",
    "Config",
    "SessionManager",
    "DialogueEngine",
    "STTHandler",
    "TTSHandler",
    "LLMHandler",
]
