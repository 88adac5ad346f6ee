"""
Text-to-Speech adapter contract.
Provider implementations supply a raw audio stream; slicing into playout
quanta, transport encoding, cancellation and the single transient retry
live here.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from .audio_utils import AudioEncoding, AudioFrame, TELEPHONY_SAMPLE_RATE, convert_frame
from .errors import ProviderConnectionError

logger = logging.getLogger(__name__)


@dataclass
class TTSState:
    """Tracks TTS state for a session."""
    is_speaking: bool = False
    chunks_emitted: int = 0


class TTSHandler(ABC):
    """Streaming speech synthesis shared by every TTS provider."""

    provider_name = "tts"
    source_encoding = AudioEncoding.MULAW
    source_sample_rate = TELEPHONY_SAMPLE_RATE

    def __init__(self, chunk_ms: int = 100):
        self.chunk_ms = chunk_ms
        self.state = TTSState()

        # Callbacks
        self._on_audio: Optional[Callable[[bytes], Awaitable[None]]] = None
        self._on_error: Optional[Callable[[Exception], Awaitable[None]]] = None
        self._on_done: Optional[Callable[[], Awaitable[None]]] = None

        # Control flags
        self._cancel_event = asyncio.Event()
        self._stream_task: Optional[asyncio.Task] = None

    def on_audio(self, callback: Callable[[bytes], Awaitable[None]]) -> None:
        """Register callback for audio chunks (mu-law 8kHz, one playout quantum each)."""
        self._on_audio = callback

    def on_error(self, callback: Callable[[Exception], Awaitable[None]]) -> None:
        """Register callback for synthesis failures."""
        self._on_error = callback

    def on_done(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Register callback fired once at the end of every synthesize() call."""
        self._on_done = callback

    @property
    def sample_width(self) -> int:
        return 1 if self.source_encoding == AudioEncoding.MULAW else 2

    @property
    def chunk_size(self) -> int:
        """Bytes of provider audio per playout quantum."""
        size = self.source_sample_rate * self.sample_width * self.chunk_ms // 1000
        return max(self.sample_width, size - size % self.sample_width)

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @abstractmethod
    def _stream_audio(self, text: str) -> AsyncIterator[bytes]:
        """
        Yield raw provider audio in source_encoding at source_sample_rate.

        Raises:
            ProviderConnectionError: with transient=True for throttling,
                timeouts and dropped connections
        """

    async def synthesize(self, text: str) -> None:
        """
        Synthesize text and stream it out through the audio callback.

        Returns once the provider stream is exhausted, the synthesis failed,
        or interrupt() was called. The done callback always fires.
        """
        self._cancel_event.clear()
        self.state.chunks_emitted = 0

        if not text or not text.strip():
            await self._dispatch(self._on_done)
            return

        self.state.is_speaking = True
        self._stream_task = asyncio.create_task(self._synthesize_with_retry(text))
        try:
            await self._stream_task
        except asyncio.CancelledError:
            if not self._cancel_event.is_set():
                raise
            logger.info("TTS synthesis interrupted")
        except Exception as e:
            logger.error(f"{self.provider_name} TTS synthesis failed: {e}")
            await self._dispatch(self._on_error, e)
        finally:
            self._stream_task = None
            self.state.is_speaking = False
            await self._dispatch(self._on_done)

    def interrupt(self) -> None:
        """Cancel in-flight synthesis (barge-in). Safe to call more than once."""
        if self._cancel_event.is_set():
            return
        logger.info("Cancelling TTS")
        self._cancel_event.set()
        self.state.is_speaking = False
        if self._stream_task and not self._stream_task.done():
            self._stream_task.cancel()

    async def _synthesize_with_retry(self, text: str) -> None:
        try:
            await self._run_stream(text)
        except ProviderConnectionError as e:
            if not e.transient or self._cancel_event.is_set():
                raise
            logger.warning(f"{self.provider_name} TTS transient error, retrying once: {e}")
            # Resume after the quanta the caller has already heard
            await self._run_stream(text, skip=self.state.chunks_emitted)

    async def _run_stream(self, text: str, skip: int = 0) -> None:
        size = self.chunk_size
        buffer = bytearray()
        index = 0

        async for data in self._stream_audio(text):
            if self._cancel_event.is_set():
                return
            buffer.extend(data)

            while len(buffer) >= size:
                quantum = bytes(buffer[:size])
                del buffer[:size]
                if index >= skip:
                    await self._emit_quantum(quantum)
                index += 1
                if self._cancel_event.is_set():
                    return

        tail = len(buffer) - len(buffer) % self.sample_width
        if tail and index >= skip:
            await self._emit_quantum(bytes(buffer[:tail]))

    async def _emit_quantum(self, quantum: bytes) -> None:
        if self._cancel_event.is_set():
            return
        frame = convert_frame(
            AudioFrame(quantum, self.source_encoding, self.source_sample_rate),
            AudioEncoding.MULAW,
            TELEPHONY_SAMPLE_RATE,
        )
        self.state.chunks_emitted += 1
        await self._dispatch(self._on_audio, frame.data)

    async def _dispatch(self, callback: Optional[Callable[..., Awaitable[None]]], *args) -> None:
        if callback is None:
            return
        try:
            await callback(*args)
        except Exception as e:
            logger.error(f"Error in TTS callback: {e}", exc_info=True)
