"""
Configuration management for the voice receptionist.
Loads settings from environment variables with validation.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Load .env from voice_receptionist dir, project root, or current directory
_src_dir = Path(__file__).parent
_package_dir = _src_dir.parent
_project_root = _package_dir.parent
load_dotenv(_package_dir / '.env')
load_dotenv(_project_root / '.env')
load_dotenv()

DEFAULT_BUSINESS_PROFILE = _package_dir / "data" / "classic-cuts.json"

DEFAULT_FILLER_WORDS = (
    "um", "uh", "uh-huh", "mm-hmm", "er", "ah", "hmm", "you know", "i mean", "like",
)


def _get_credential(key: str) -> str:
    """Get a credential, warning when it is missing. Adapters refuse to start without it."""
    value = os.getenv(key)
    if not value:
        logger.warning(f"Missing environment variable {key}")
        return ""
    return value


def _get_optional_env(key: str, default: str = "") -> str:
    """Get an optional environment variable with a default."""
    return os.getenv(key, default)


def _get_optional_int(key: str, default: int) -> int:
    """Get an optional integer environment variable with a default."""
    value = os.getenv(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got '{value}'") from None


def _get_optional_float(key: str, default: float) -> float:
    """Get an optional float environment variable with a default."""
    value = os.getenv(key)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got '{value}'") from None


def _get_optional_list(key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """Get a comma separated environment variable as a tuple."""
    value = os.getenv(key)
    if not value:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class DeepgramConfig:
    """Deepgram API configuration."""
    api_key: str
    stt_model: str = "nova-2"
    tts_model: str = "aura-asteria-en"
    sample_rate: int = 8000
    encoding: str = "mulaw"
    endpointing_ms: int = 300
    utterance_end_ms: int = 1000
    tts_encoding: str = "mulaw"
    tts_sample_rate: int = 8000


@dataclass(frozen=True)
class BedrockConfig:
    """AWS Bedrock configuration."""
    api_key: str
    region: str = "us-east-2"
    model_id: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"
    summary_model_id: str = "anthropic.claude-3-5-haiku-20241022-v1:0"
    max_tokens: int = 200
    temperature: float = 0.7
    max_tool_iterations: int = 5
    timeout: int = 30


@dataclass(frozen=True)
class CallConfig:
    """Per-call orchestration tuning."""
    debounce_ms: int = 700
    silence_window_ms: int = 300
    tts_chunk_ms: int = 100
    filler_words: tuple[str, ...] = DEFAULT_FILLER_WORDS
    business_profile_path: str = str(DEFAULT_BUSINESS_PROFILE)


@dataclass(frozen=True)
class ServerConfig:
    """WebSocket server configuration."""
    host: str = "0.0.0.0"
    port: int = 3100


@dataclass(frozen=True)
class Config:
    """Main configuration container."""
    deepgram: DeepgramConfig
    bedrock: BedrockConfig
    call: CallConfig
    server: ServerConfig


def load_config() -> Config:
    """Load and validate all configuration from environment variables."""
    return Config(
        deepgram=DeepgramConfig(
            api_key=_get_credential("DEEPGRAM_API_KEY"),
            stt_model=_get_optional_env("DEEPGRAM_STT_MODEL", "nova-2"),
            tts_model=_get_optional_env("DEEPGRAM_TTS_MODEL", "aura-asteria-en"),
            endpointing_ms=_get_optional_int("DEEPGRAM_ENDPOINTING_MS", 300),
            utterance_end_ms=_get_optional_int("DEEPGRAM_UTTERANCE_END_MS", 1000),
            tts_encoding=_get_optional_env("DEEPGRAM_TTS_ENCODING", "mulaw"),
            tts_sample_rate=_get_optional_int("DEEPGRAM_TTS_SAMPLE_RATE", 8000),
        ),
        bedrock=BedrockConfig(
            api_key=_get_credential("BEDROCK_API_KEY"),
            region=_get_optional_env("AWS_REGION", "us-east-2"),
            model_id=_get_optional_env(
                "BEDROCK_MODEL_ID", "anthropic.claude-3-5-sonnet-20241022-v2:0"
            ),
            summary_model_id=_get_optional_env(
                "BEDROCK_SUMMARY_MODEL_ID", "anthropic.claude-3-5-haiku-20241022-v1:0"
            ),
            max_tokens=_get_optional_int("BEDROCK_MAX_TOKENS", 200),
            temperature=_get_optional_float("BEDROCK_TEMPERATURE", 0.7),
            max_tool_iterations=_get_optional_int("BEDROCK_MAX_TOOL_ITERATIONS", 5),
            timeout=_get_optional_int("BEDROCK_TIMEOUT", 30),
        ),
        call=CallConfig(
            debounce_ms=_get_optional_int("CALL_DEBOUNCE_MS", 700),
            silence_window_ms=_get_optional_int("STT_SILENCE_WINDOW_MS", 300),
            tts_chunk_ms=_get_optional_int("TTS_CHUNK_MS", 100),
            filler_words=_get_optional_list("STT_FILLER_WORDS", DEFAULT_FILLER_WORDS),
            business_profile_path=_get_optional_env(
                "BUSINESS_PROFILE_PATH", str(DEFAULT_BUSINESS_PROFILE)
            ),
        ),
        server=ServerConfig(
            host=_get_optional_env("SERVER_HOST", "0.0.0.0"),
            port=_get_optional_int("SERVER_PORT", 3100),
        ),
    )
