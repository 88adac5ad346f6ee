"""
Deepgram Text-to-Speech provider.
Streams the /v1/speak response body so playback can start before synthesis finishes.
"""

import asyncio
import logging
from typing import AsyncIterator

import aiohttp

from .audio_utils import AudioEncoding
from .config import DeepgramConfig
from .errors import ConfigurationError, ProviderConnectionError
from .tts_handler import TTSHandler

logger = logging.getLogger(__name__)

DEEPGRAM_SPEAK_URL = "https://api.deepgram.com/v1/speak"

# Throttling and upstream availability; everything else is surfaced as-is
TRANSIENT_STATUSES = {429, 502, 503, 504}


class DeepgramTTS(TTSHandler):
    """Handles Deepgram TTS for real-time speech synthesis."""

    provider_name = "deepgram"

    def __init__(self, config: DeepgramConfig, chunk_ms: int = 100):
        """
        Initialize the TTS handler.

        Args:
            config: Deepgram configuration
            chunk_ms: Playout quantum length in milliseconds

        Raises:
            ConfigurationError: if no API key is configured
        """
        if not config.api_key:
            raise ConfigurationError("DEEPGRAM_API_KEY is required for text-to-speech")
        super().__init__(chunk_ms=chunk_ms)
        self.config = config
        self.source_encoding = AudioEncoding(config.tts_encoding)
        self.source_sample_rate = config.tts_sample_rate

    async def _stream_audio(self, text: str) -> AsyncIterator[bytes]:
        params = {
            "model": self.config.tts_model,
            "encoding": self.source_encoding.value,
            "sample_rate": str(self.source_sample_rate),
            "container": "none",
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Token {self.config.api_key}",
        }
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=10, sock_read=15)

        logger.debug(f"Deepgram TTS request ({len(text)} chars)")
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    DEEPGRAM_SPEAK_URL,
                    params=params,
                    json={"text": text},
                    headers=headers,
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ProviderConnectionError(
                            f"Deepgram TTS error {response.status}: {error_text}",
                            provider=self.provider_name,
                            transient=response.status in TRANSIENT_STATUSES,
                        )
                    async for chunk in response.content.iter_any():
                        yield chunk
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise ProviderConnectionError(
                f"Deepgram TTS connection error: {e}", provider=self.provider_name, transient=True
            ) from e
        except aiohttp.ClientError as e:
            raise ProviderConnectionError(
                f"Deepgram TTS request failed: {e}", provider=self.provider_name
            ) from e
