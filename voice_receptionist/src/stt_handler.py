"""
Speech-to-Text adapter contract.
Provider implementations subclass STTHandler and feed raw results into it;
filler filtering, silence-based utterance end and event delivery live here.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from .audio_utils import AudioEncoding, AudioFrame, TELEPHONY_SAMPLE_RATE, convert_frame
from .config import DEFAULT_FILLER_WORDS

logger = logging.getLogger(__name__)


@dataclass
class TranscriptResult:
    """Result from speech transcription."""
    text: str
    is_final: bool
    confidence: float = 0.0


@dataclass
class STTState:
    """Tracks STT state for a session."""
    is_connected: bool = False
    is_stopped: bool = False
    awaiting_utterance_end: bool = False
    audio_count: int = 0


def compile_filler_pattern(filler_words: Iterable[str]) -> Optional[re.Pattern]:
    """Build a case-insensitive whole-word pattern for the filler tokens."""
    # Longest first so "uh-huh" wins over "uh"
    words = sorted({w.strip().lower() for w in filler_words if w.strip()}, key=len, reverse=True)
    if not words:
        return None
    alternation = "|".join(re.escape(w) for w in words)
    return re.compile(rf"(?<![\w-])(?:{alternation})(?![\w-])[,.]?", re.IGNORECASE)


class STTHandler(ABC):
    """Streaming transcription session shared by every STT provider."""

    provider_name = "stt"
    input_encoding = AudioEncoding.MULAW
    input_sample_rate = TELEPHONY_SAMPLE_RATE

    def __init__(
        self,
        silence_window_ms: int = 300,
        filler_words: Iterable[str] = DEFAULT_FILLER_WORDS,
    ):
        self.state = STTState()
        self.silence_window = silence_window_ms / 1000
        self._filler_pattern = compile_filler_pattern(filler_words)
        self._silence_timer: Optional[asyncio.TimerHandle] = None
        self._close_emitted = False
        self._tasks: set[asyncio.Task] = set()

        # Callbacks
        self._on_transcript: Optional[Callable[[TranscriptResult], Awaitable[None]]] = None
        self._on_utterance_end: Optional[Callable[[], Awaitable[None]]] = None
        self._on_error: Optional[Callable[[Exception], Awaitable[None]]] = None
        self._on_close: Optional[Callable[[], Awaitable[None]]] = None

    def on_transcript(self, callback: Callable[[TranscriptResult], Awaitable[None]]) -> None:
        """Register callback for transcript events (partial and final)."""
        self._on_transcript = callback

    def on_utterance_end(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Register callback for the end of a caller utterance."""
        self._on_utterance_end = callback

    def on_error(self, callback: Callable[[Exception], Awaitable[None]]) -> None:
        """Register callback for provider errors."""
        self._on_error = callback

    def on_close(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Register callback for session close. Delivered exactly once."""
        self._on_close = callback

    @abstractmethod
    async def _connect(self) -> None:
        """Open the provider stream. Raise ProviderConnectionError on failure."""

    @abstractmethod
    async def _send(self, audio: bytes) -> None:
        """Send audio already converted to the provider's input format."""

    @abstractmethod
    async def _disconnect(self) -> None:
        """Flush and close the provider stream."""

    async def start(self) -> None:
        """Open the streaming session."""
        if self.state.is_connected:
            return
        await self._connect()
        self.state.is_connected = True
        logger.info(f"{self.provider_name} STT session started")

    async def send_audio(self, frame: AudioFrame) -> None:
        """
        Stream a frame of caller audio.

        Frames are dropped silently until start() completes and after stop().
        """
        if self.state.is_stopped or not self.state.is_connected:
            return

        frame = convert_frame(frame, self.input_encoding, self.input_sample_rate)
        try:
            await self._send(frame.data)
            self.state.audio_count += 1
            if self.state.audio_count == 1 or self.state.audio_count % 500 == 0:
                logger.info(f"Sent {self.state.audio_count} audio chunks to STT")
        except Exception as e:
            logger.error(f"Error sending audio to STT: {e}")
            self.state.is_connected = False
            await self._dispatch(self._on_error, e)

    async def stop(self) -> None:
        """Close the session. Safe to call more than once."""
        if self.state.is_stopped:
            return
        self.state.is_stopped = True
        self.state.is_connected = False
        self._cancel_silence_timer()

        try:
            await self._disconnect()
        except Exception as e:
            logger.debug(f"Error closing STT stream: {e}")

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

        await self._emit_close()

    def filter_fillers(self, text: str) -> str:
        """Strip filler tokens and collapse whitespace."""
        if self._filler_pattern is not None:
            text = self._filler_pattern.sub(" ", text)
        return re.sub(r"\s+", " ", text).strip()

    async def _handle_transcript(self, text: str, is_final: bool, confidence: float = 0.0) -> None:
        """Entry point for provider transcripts."""
        if self.state.is_stopped or not text or not text.strip():
            return

        if is_final:
            self.state.awaiting_utterance_end = True
            self._arm_silence_timer()

        cleaned = self.filter_fillers(text)
        if not cleaned:
            return

        logger.info(f"STT transcript: '{cleaned}' (final={is_final})")
        await self._dispatch(
            self._on_transcript,
            TranscriptResult(text=cleaned, is_final=is_final, confidence=confidence),
        )

    async def _handle_utterance_end(self) -> None:
        """Entry point for the silence window and provider end-of-utterance signals."""
        self._cancel_silence_timer()
        if self.state.is_stopped or not self.state.awaiting_utterance_end:
            return
        self.state.awaiting_utterance_end = False
        logger.debug("Utterance end detected")
        await self._dispatch(self._on_utterance_end)

    async def _handle_provider_error(self, error: Exception) -> None:
        logger.error(f"{self.provider_name} STT error: {error}")
        await self._dispatch(self._on_error, error)

    async def _handle_provider_close(self) -> None:
        """The provider ended the stream on its own."""
        if self.state.is_stopped:
            return
        logger.info(f"{self.provider_name} STT stream closed by provider")
        await self.stop()

    def _arm_silence_timer(self) -> None:
        self._cancel_silence_timer()
        loop = asyncio.get_running_loop()
        self._silence_timer = loop.call_later(self.silence_window, self._on_silence_elapsed)

    def _cancel_silence_timer(self) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None

    def _on_silence_elapsed(self) -> None:
        self._silence_timer = None
        self._spawn(self._handle_utterance_end())

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _emit_close(self) -> None:
        if self._close_emitted:
            return
        self._close_emitted = True
        await self._dispatch(self._on_close)

    async def _dispatch(self, callback: Optional[Callable[..., Awaitable[None]]], *args) -> None:
        if callback is None:
            return
        try:
            await callback(*args)
        except Exception as e:
            logger.error(f"Error in STT callback: {e}", exc_info=True)
