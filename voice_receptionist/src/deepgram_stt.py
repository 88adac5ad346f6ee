"""
Deepgram Speech-to-Text provider.
Live transcription over the Deepgram websocket with interim results and
provider-side utterance end events.
"""

import asyncio
import logging
from typing import Iterable, Optional

from deepgram import AsyncDeepgramClient
from deepgram.core.events import EventType

from .config import DEFAULT_FILLER_WORDS, DeepgramConfig
from .errors import ConfigurationError, ProviderConnectionError
from .stt_handler import STTHandler

logger = logging.getLogger(__name__)


class DeepgramSTT(STTHandler):
    """Handles Deepgram live STT for real-time transcription."""

    provider_name = "deepgram"

    def __init__(
        self,
        config: DeepgramConfig,
        silence_window_ms: int = 300,
        filler_words: Iterable[str] = DEFAULT_FILLER_WORDS,
    ):
        """
        Initialize the STT handler.

        Args:
            config: Deepgram configuration
            silence_window_ms: Silence after the last final transcript that ends an utterance
            filler_words: Tokens stripped from transcripts before delivery

        Raises:
            ConfigurationError: if no API key is configured
        """
        if not config.api_key:
            raise ConfigurationError("DEEPGRAM_API_KEY is required for speech-to-text")
        super().__init__(silence_window_ms=silence_window_ms, filler_words=filler_words)
        self.config = config
        self.client = AsyncDeepgramClient(api_key=config.api_key)
        self.connection = None
        self._context_manager = None
        self._listen_task: Optional[asyncio.Task] = None

    async def _connect(self) -> None:
        try:
            self._context_manager = self.client.listen.v1.connect(
                model=self.config.stt_model,
                encoding=self.config.encoding,
                sample_rate=str(self.config.sample_rate),
                channels="1",
                punctuate="true",
                interim_results="true",  # Partial transcripts drive barge-in
                endpointing=str(self.config.endpointing_ms),
                utterance_end_ms=str(self.config.utterance_end_ms),
                vad_events="true",
                smart_format="true",
            )
            self.connection = await self._context_manager.__aenter__()
        except Exception as e:
            self._context_manager = None
            self.connection = None
            raise ProviderConnectionError(
                f"Failed to connect to Deepgram STT: {e}", provider=self.provider_name
            ) from e

        self.connection.on(EventType.OPEN, self._handle_open)
        self.connection.on(EventType.CLOSE, self._handle_close)
        self.connection.on(EventType.MESSAGE, self._handle_message)
        self.connection.on(EventType.ERROR, self._handle_error)

        self._listen_task = asyncio.create_task(self.connection.start_listening())
        logger.info("Connected to Deepgram STT")

    async def _send(self, audio: bytes) -> None:
        if self.connection is None:
            return
        await self.connection.send_media(audio)

    async def _disconnect(self) -> None:
        if self.connection:
            try:
                await self.connection.send_close_stream()
            except Exception as e:
                logger.debug(f"Error sending close stream: {e}")

        if self._listen_task and not self._listen_task.done():
            self._listen_task.cancel()

        if self._context_manager:
            try:
                await self._context_manager.__aexit__(None, None, None)
            except Exception as e:
                logger.debug(f"Error closing context manager: {e}")
            finally:
                self.connection = None
                self._context_manager = None
                self._listen_task = None

    def _handle_open(self, _) -> None:
        logger.debug("STT connection opened")

    def _handle_close(self, _) -> None:
        logger.debug("STT connection closed")
        self._spawn(self._handle_provider_close())

    def _handle_message(self, message) -> None:
        self._spawn(self._process_message(message))

    def _handle_error(self, error) -> None:
        exc = error if isinstance(error, Exception) else ProviderConnectionError(
            str(error), provider=self.provider_name
        )
        self._spawn(self._handle_provider_error(exc))

    async def _process_message(self, message) -> None:
        """Route a Deepgram message into the shared STT pipeline."""
        try:
            msg_type = getattr(message, "type", None)
            if msg_type == "Results":
                await self._process_results(message)
            elif msg_type == "UtteranceEnd":
                logger.info("STT: Utterance end")
                await self._handle_utterance_end()
            elif msg_type == "SpeechStarted":
                logger.debug("STT: Speech started")
            else:
                logger.debug(f"STT: Unknown message type: {msg_type}")
        except Exception as e:
            logger.error(f"Error processing message: {e}", exc_info=True)

    async def _process_results(self, result) -> None:
        channel = getattr(result, "channel", None)
        alternatives = getattr(channel, "alternatives", None) or []
        if not alternatives:
            return

        alt = alternatives[0]
        transcript = getattr(alt, "transcript", "") or ""
        is_final = bool(getattr(result, "is_final", False))
        confidence = getattr(alt, "confidence", 0.0) or 0.0
        await self._handle_transcript(transcript, is_final, confidence)
