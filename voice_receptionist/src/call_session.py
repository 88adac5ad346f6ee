"""
Per-call orchestration.
Wires STT output into debounced utterance detection, runs dialogue turns,
streams replies through TTS, handles barge-in and finalizes calls.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from .audio_utils import AudioFrame
from .conversation import ConversationState, DialogueEngine, get_transcript, split_sentences
from .errors import ConfigurationError, PersistenceError
from .store import BookingStore
from .stt_handler import STTHandler, TranscriptResult
from .tts_handler import TTSHandler

logger = logging.getLogger(__name__)

TERMINAL_CALL_STATUSES = frozenset({"completed", "failed", "busy", "no-answer", "canceled"})

FALLBACK_REPLY = "I'm sorry, I didn't catch that. Could you say that again?"


class CallState(str, Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    ENDING = "ending"
    ENDED = "ended"


class AudioSink(ABC):
    """Outbound half of the transport."""

    @abstractmethod
    async def send_media(self, payload: bytes) -> None:
        """Send one chunk of mu-law 8kHz audio to the caller."""

    @abstractmethod
    async def send_mark(self, name: str) -> None:
        """Send a playout marker that the carrier echoes back once played."""


# Inbound transport events

@dataclass(frozen=True)
class StartEvent:
    phone_number: str
    direction: str = "inbound"
    stream_id: Optional[str] = None
    sink: Optional[AudioSink] = None


@dataclass(frozen=True)
class MediaEvent:
    frame: AudioFrame


@dataclass(frozen=True)
class MarkEvent:
    name: str


@dataclass(frozen=True)
class StopEvent:
    reason: str = "stop"


TransportEvent = Union[StartEvent, MediaEvent, MarkEvent, StopEvent]


@dataclass
class CallSummary:
    transcript: str
    summary: str
    duration: int


@dataclass
class CallSession:
    """Manages a single call with all its components."""
    session_id: str
    phone_number: str
    direction: str
    conversation: ConversationState
    stt: Optional[STTHandler] = None
    tts: Optional[TTSHandler] = None
    sink: Optional[AudioSink] = None
    stream_id: Optional[str] = None
    call_record_id: Optional[int] = None
    state: CallState = CallState.INITIALIZING
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_monotonic: float = field(default_factory=time.monotonic)
    is_bot_speaking: bool = False
    utterance_parts: list[str] = field(default_factory=list)
    debounce_timer: Optional[asyncio.TimerHandle] = None
    speak_task: Optional[asyncio.Task] = None
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    tasks: set[asyncio.Task] = field(default_factory=set)
    response_count: int = 0
    tts_audio_sent: int = 0
    inbound_count: int = 0
    last_mark: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.state == CallState.ACTIVE


STTFactory = Callable[[], STTHandler]
TTSFactory = Callable[[], TTSHandler]


class SessionManager:
    """Registry of active calls and the event handlers that drive them."""

    def __init__(
        self,
        engine: DialogueEngine,
        store: BookingStore,
        stt_factory: Optional[STTFactory] = None,
        tts_factory: Optional[TTSFactory] = None,
        debounce_ms: int = 700,
    ):
        self.engine = engine
        self.store = store
        self.stt_factory = stt_factory
        self.tts_factory = tts_factory
        self.debounce = debounce_ms / 1000
        self.sessions: dict[str, CallSession] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self._end_requested: set[str] = set()

    def get_active_call(self, session_id: str) -> Optional[CallSession]:
        return self.sessions.get(session_id)

    def list_active_calls(self) -> list[CallSession]:
        return list(self.sessions.values())

    async def feed(self, session_id: str, event: TransportEvent) -> Optional[CallSession]:
        """Dispatch one inbound transport event. Events for unknown or ended calls are ignored."""
        if isinstance(event, StartEvent):
            is_new = session_id not in self.sessions and session_id not in self._pending
            session = await self.initialize_call(
                session_id, event.phone_number, event.direction, sink=event.sink, stream_id=event.stream_id
            )
            if is_new and session.is_active:
                self._spawn(session, self.send_greeting(session))
            return session

        session = self.sessions.get(session_id)
        if session is None:
            logger.debug(f"Ignoring {type(event).__name__} for unknown call {session_id}")
            return None

        if isinstance(event, MediaEvent):
            await self._handle_media(session, event.frame)
        elif isinstance(event, MarkEvent):
            logger.debug(f"Mark event for {session_id}: {event.name}")
            session.last_mark = event.name
        elif isinstance(event, StopEvent):
            logger.info(f"Stream stopped for {session_id} ({event.reason})")
            await self.end_call(session_id)
        return session

    async def initialize_call(
        self,
        session_id: str,
        phone_number: str,
        direction: str = "inbound",
        sink: Optional[AudioSink] = None,
        stream_id: Optional[str] = None,
    ) -> CallSession:
        """
        Create, start and register a call session.

        The session only becomes visible in the registry once fully built.
        A second start for a live call returns the existing session.
        """
        existing = self.sessions.get(session_id)
        if existing is not None:
            logger.warning(f"Call {session_id} already active, ignoring duplicate start")
            return existing

        pending = self._pending.get(session_id)
        if pending is not None:
            return await pending

        task = asyncio.ensure_future(
            self._build_session(session_id, phone_number, direction, sink, stream_id)
        )
        self._pending[session_id] = task
        try:
            session = await task
        finally:
            self._pending.pop(session_id, None)
            end_requested = session_id in self._end_requested
            self._end_requested.discard(session_id)

        if end_requested:
            logger.info(f"Call {session_id} hung up during setup, ending it now")
            try:
                await self.end_call(session_id)
            except PersistenceError as e:
                logger.error(f"Failed to persist call {session_id}: {e}")
        return session

    async def _build_session(
        self,
        session_id: str,
        phone_number: str,
        direction: str,
        sink: Optional[AudioSink],
        stream_id: Optional[str],
    ) -> CallSession:
        logger.info(f"Initializing call {session_id} from {phone_number} ({direction})")

        customer = None
        try:
            customer = await self.store.find_customer_by_phone(phone_number)
        except PersistenceError as e:
            logger.error(f"Customer lookup failed for {phone_number}: {e}")

        call_record_id = None
        try:
            record = await self.store.create_call_record(
                call_id=session_id,
                phone_number=phone_number,
                direction=direction,
                customer_id=customer.id if customer else None,
            )
            call_record_id = record.id
        except PersistenceError as e:
            logger.error(f"Could not create call record for {session_id}: {e}")

        session = CallSession(
            session_id=session_id,
            phone_number=phone_number,
            direction=direction,
            conversation=self.engine.create_conversation(phone_number, customer),
            stt=self._build_adapter(self.stt_factory, "STT"),
            tts=self._build_adapter(self.tts_factory, "TTS"),
            sink=sink,
            stream_id=stream_id,
            call_record_id=call_record_id,
        )
        self._setup_callbacks(session)

        if session.stt is not None:
            try:
                await session.stt.start()
            except ConnectionError as e:
                logger.error(f"STT failed to start for {session_id}, continuing without transcription: {e}")
                session.stt = None

        session.state = CallState.ACTIVE
        self.sessions[session_id] = session
        logger.info(f"Call {session_id} active (stt={session.stt is not None}, tts={session.tts is not None})")
        return session

    @staticmethod
    def _build_adapter(factory, label: str):
        if factory is None:
            return None
        try:
            return factory()
        except ConfigurationError as e:
            logger.error(f"{label} unavailable, call runs degraded: {e}")
            return None

    def _setup_callbacks(self, session: CallSession) -> None:
        """Set up callbacks between handlers."""

        async def on_transcript(result: TranscriptResult):
            self._handle_transcript(session, result)

        async def on_utterance_end():
            if self.debounce > 0:
                logger.debug(f"STT utterance end on {session.session_id}, debounce timer decides the turn")
                return
            self._flush_utterance(session)

        async def on_stt_error(error: Exception):
            logger.error(f"STT error for {session.session_id}: {error}")

        async def on_stt_close():
            if session.is_active:
                logger.warning(f"STT closed for {session.session_id}, call continues without transcription")

        async def on_tts_audio(chunk: bytes):
            await self._forward_audio(session, chunk)

        async def on_tts_error(error: Exception):
            logger.error(f"TTS error for {session.session_id}: {error}")

        if session.stt is not None:
            session.stt.on_transcript(on_transcript)
            session.stt.on_utterance_end(on_utterance_end)
            session.stt.on_error(on_stt_error)
            session.stt.on_close(on_stt_close)
        if session.tts is not None:
            session.tts.on_audio(on_tts_audio)
            session.tts.on_error(on_tts_error)

    async def _handle_media(self, session: CallSession, frame: AudioFrame) -> None:
        if not session.is_active or session.stt is None:
            return
        session.inbound_count += 1
        if session.inbound_count == 1 or session.inbound_count % 500 == 0:
            logger.info(f"Inbound #{session.inbound_count} for {session.session_id}")
        await session.stt.send_audio(frame)

    def _handle_transcript(self, session: CallSession, result: TranscriptResult) -> None:
        if not session.is_active:
            return

        if session.is_bot_speaking:
            self._barge_in(session)

        if result.is_final:
            session.utterance_parts.append(result.text)
            if self.debounce > 0:
                self._arm_debounce(session)

    def _barge_in(self, session: CallSession) -> None:
        """Caller spoke over the bot: stop playback, leave any LLM call running."""
        logger.info(f"Caller interrupted bot on {session.session_id} (sent {session.tts_audio_sent} chunks)")
        session.is_bot_speaking = False
        if session.tts is not None:
            session.tts.interrupt()

    def _arm_debounce(self, session: CallSession) -> None:
        self._cancel_debounce(session)
        loop = asyncio.get_running_loop()
        session.debounce_timer = loop.call_later(self.debounce, self._on_debounce_elapsed, session)

    @staticmethod
    def _cancel_debounce(session: CallSession) -> None:
        if session.debounce_timer is not None:
            session.debounce_timer.cancel()
            session.debounce_timer = None

    def _on_debounce_elapsed(self, session: CallSession) -> None:
        session.debounce_timer = None
        self._flush_utterance(session)

    def _flush_utterance(self, session: CallSession) -> None:
        """
        Hand the accumulated utterance to the dialogue engine.

        Exactly one signal ends a turn. With a positive debounce only the
        timer flushes and STT utterance ends are ignored; with debounce_ms=0
        the STT utterance end is the sole trigger.
        """
        self._cancel_debounce(session)
        if not session.is_active:
            return

        text = " ".join(session.utterance_parts).strip()
        session.utterance_parts = []
        if not text:
            return

        logger.info(f"User said: {text}")
        self._spawn(session, self._handle_utterance(session, text))

    async def _handle_utterance(self, session: CallSession, text: str) -> None:
        async with session.turn_lock:
            if not session.is_active:
                return
            try:
                response = await self.engine.process_user_message(session.conversation, text)
            except Exception as e:
                logger.error(f"Error processing utterance: {e}", exc_info=True)
                response = FALLBACK_REPLY
                messages = session.conversation.messages
                if messages and messages[-1].role == "user":
                    session.conversation.add_assistant_message(response)

        logger.info(f"Bot response: {response}")
        if session.is_active:
            await self.speak(session, response)

    async def send_greeting(self, session: CallSession) -> None:
        """Speak the opening line."""
        greeting = self.engine.get_greeting(session.conversation)
        logger.info(f"Sending greeting: {greeting}")
        await self.speak(session, greeting)

    async def speak(self, session: CallSession, text: str) -> None:
        """
        Stream a reply to the caller.

        A reply still playing is interrupted and allowed to wind down first;
        replies never queue behind each other.
        """
        if session.tts is None or session.sink is None:
            logger.warning(f"Cannot speak on {session.session_id}: no TTS or audio stream")
            return

        while session.speak_task is not None and not session.speak_task.done():
            logger.info(f"New response supersedes the one playing on {session.session_id}")
            session.is_bot_speaking = False
            session.tts.interrupt()
            await asyncio.wait({session.speak_task})

        if not session.is_active:
            return

        task = asyncio.create_task(self._speak(session, text))
        session.speak_task = task
        await task

    async def _speak(self, session: CallSession, text: str) -> None:
        session.response_count += 1
        session.is_bot_speaking = True
        try:
            for sentence in split_sentences(text):
                if not session.is_bot_speaking:
                    break
                await session.tts.synthesize(sentence)
        finally:
            session.is_bot_speaking = False
            if session.sink is not None and session.is_active:
                try:
                    await session.sink.send_mark(f"response-{session.response_count}")
                except Exception as e:
                    logger.error(f"Error sending playout mark: {e}")

    async def _forward_audio(self, session: CallSession, chunk: bytes) -> None:
        if not session.is_bot_speaking or session.sink is None:
            return
        try:
            await session.sink.send_media(chunk)
        except Exception as e:
            logger.error(f"Error sending TTS audio: {e}")
            return
        session.tts_audio_sent += 1
        if session.tts_audio_sent == 1 or session.tts_audio_sent % 50 == 0:
            logger.info(f"TTS audio #{session.tts_audio_sent}: {len(chunk)} bytes")

    async def handle_call_status(self, session_id: str, status: str) -> Optional[CallSummary]:
        """Carrier status callback; terminal statuses end the call."""
        if status.lower() not in TERMINAL_CALL_STATUSES:
            logger.debug(f"Call {session_id} status {status}")
            return None
        logger.info(f"Call {session_id} reached terminal status {status}")
        return await self.end_call(session_id)

    async def end_call(self, session_id: str) -> Optional[CallSummary]:
        """
        Tear down a call and persist its outcome.

        Returns None when the call is unknown or already ending. A call still
        initializing is ended as soon as it is registered.

        Raises:
            PersistenceError: if the final call record update failed; the
                session is torn down and deregistered regardless
        """
        session = self.sessions.get(session_id)
        if session is None and session_id in self._pending:
            logger.info(f"Call {session_id} still initializing, will end once ready")
            self._end_requested.add(session_id)
            return None
        if session is None or session.state in (CallState.ENDING, CallState.ENDED):
            return None

        logger.info(f"Ending call {session_id}")
        session.state = CallState.ENDING
        self._cancel_debounce(session)
        session.utterance_parts = []
        session.is_bot_speaking = False
        if session.tts is not None:
            session.tts.interrupt()

        current = asyncio.current_task()
        pending = [t for t in session.tasks if t is not current and not t.done()]
        if session.speak_task is not None and session.speak_task is not current and not session.speak_task.done():
            pending.append(session.speak_task)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if session.stt is not None:
            await session.stt.stop()

        transcript = get_transcript(session.conversation)
        summary = await self.engine.generate_summary(session.conversation)
        duration = int(time.monotonic() - session.started_monotonic)

        error: Optional[PersistenceError] = None
        try:
            if session.call_record_id is not None:
                await self.store.update_call_record(session.call_record_id, {
                    "duration": duration,
                    "transcript": transcript,
                    "summary": summary,
                    "lead_captured": session.conversation.lead_captured,
                    "appointment_booked": session.conversation.appointment_booked,
                    "status": "completed",
                })
            else:
                logger.warning(f"No call record for {session_id}, outcome not persisted")
        except PersistenceError as e:
            logger.error(f"Failed to persist call {session_id}: {e}")
            error = e
        finally:
            self.sessions.pop(session_id, None)
            session.state = CallState.ENDED

        logger.info(f"Call {session_id} ended. Duration: {duration}s")
        if error is not None:
            raise error
        return CallSummary(transcript=transcript, summary=summary, duration=duration)

    async def shutdown(self) -> None:
        """End every active call."""
        for session_id in list(self.sessions):
            try:
                await self.end_call(session_id)
            except PersistenceError as e:
                logger.error(f"Error ending call {session_id} during shutdown: {e}")

    def _spawn(self, session: CallSession, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        session.tasks.add(task)
        task.add_done_callback(session.tasks.discard)
        return task
