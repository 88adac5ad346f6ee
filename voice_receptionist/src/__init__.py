"""
Voice Receptionist source modules.
"""

from .config import load_config, Config, DeepgramConfig, BedrockConfig, CallConfig, ServerConfig
from .errors import (
    VoiceAgentError,
    ProviderConnectionError,
    ConfigurationError,
    ToolExecutionError,
    LoopExceededError,
    PersistenceError,
)
from .stt_handler import STTHandler, STTState, TranscriptResult
from .tts_handler import TTSHandler, TTSState
from .llm_handler import LLMHandler, LLMResponse, Message
from .conversation import ConversationState, DialogueEngine
from .store import BookingStore, InMemoryBookingStore
from .audio_utils import AudioFrame, AudioEncoding, base64_decode, base64_encode, mulaw_to_pcm, pcm_to_mulaw, resample_pcm
from .call_session import CallSession, CallState, SessionManager

__all__ = [
    # Config
    "load_config",
    "Config",
    "DeepgramConfig",
    "BedrockConfig",
    "CallConfig",
    "ServerConfig",
    # Errors
    "VoiceAgentError",
    "ProviderConnectionError",
    "ConfigurationError",
    "ToolExecutionError",
    "LoopExceededError",
    "PersistenceError",
    # Handlers
    "STTHandler",
    "STTState",
    "TranscriptResult",
    "TTSHandler",
    "TTSState",
    "LLMHandler",
    "LLMResponse",
    "Message",
    "ConversationState",
    "DialogueEngine",
    "BookingStore",
    "InMemoryBookingStore",
    # Utils
    "AudioFrame",
    "AudioEncoding",
    "base64_decode",
    "base64_encode",
    "mulaw_to_pcm",
    "pcm_to_mulaw",
    "resample_pcm",
    # Sessions
    "CallSession",
    "CallState",
    "SessionManager",
]
