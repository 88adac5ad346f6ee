"""
WebSocket server for Telnyx media streams.
Translates Telnyx stream messages into call session events and carries
synthesized audio back to the caller.
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import certifi
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from .audio_utils import AudioFrame, base64_decode, base64_encode
from .business import load_business_profile
from .call_session import AudioSink, MarkEvent, MediaEvent, SessionManager, StartEvent, StopEvent
from .config import Config
from .conversation import DialogueEngine
from .deepgram_stt import DeepgramSTT
from .deepgram_tts import DeepgramTTS
from .errors import PersistenceError
from .llm_handler import LLMHandler
from .store import BookingStore, InMemoryBookingStore

os.environ['SSL_CERT_FILE'] = certifi.where()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    manager: Optional[SessionManager] = getattr(app.state, "session_manager", None)
    if manager is not None:
        await manager.shutdown()


app = FastAPI(title="Voice Receptionist WebSocket Server", lifespan=lifespan)


class TelnyxMediaSink(AudioSink):
    """Sends audio and playout marks back over the Telnyx stream."""

    def __init__(self, websocket: WebSocket, stream_id: Optional[str]):
        self.websocket = websocket
        self.stream_id = stream_id

    async def send_media(self, payload: bytes) -> None:
        await self.websocket.send_json({
            "event": "media",
            "stream_id": self.stream_id,
            "media": {"payload": base64_encode(payload)},
        })

    async def send_mark(self, name: str) -> None:
        await self.websocket.send_json({
            "event": "mark",
            "stream_id": self.stream_id,
            "mark": {"name": name},
        })


def build_session_manager(config: Config, store: Optional[BookingStore] = None) -> SessionManager:
    """Wire Deepgram, Bedrock and the booking store into a session manager."""
    profile = load_business_profile(config.call.business_profile_path)
    store = store or InMemoryBookingStore()
    engine = DialogueEngine(
        llm=LLMHandler(config.bedrock),
        store=store,
        profile=profile,
        max_tool_iterations=config.bedrock.max_tool_iterations,
        summary_model_id=config.bedrock.summary_model_id,
    )

    def stt_factory() -> DeepgramSTT:
        return DeepgramSTT(
            config.deepgram,
            silence_window_ms=config.call.silence_window_ms,
            filler_words=config.call.filler_words,
        )

    def tts_factory() -> DeepgramTTS:
        return DeepgramTTS(config.deepgram, chunk_ms=config.call.tts_chunk_ms)

    logger.info(f"Session manager ready for {profile.name}")
    return SessionManager(
        engine=engine,
        store=store,
        stt_factory=stt_factory,
        tts_factory=tts_factory,
        debounce_ms=config.call.debounce_ms,
    )


def init_session_manager(manager: SessionManager) -> None:
    """Attach the session manager the endpoints dispatch to."""
    app.state.session_manager = manager


def get_session_manager() -> Optional[SessionManager]:
    return getattr(app.state, "session_manager", None)


def _start_event(message: dict, websocket: WebSocket) -> tuple[str, StartEvent]:
    start = message.get("start") or {}
    stream_id = message.get("stream_id") or start.get("stream_id")
    call_id = (
        start.get("call_control_id")
        or message.get("call_control_id")
        or stream_id
    )
    phone_number = start.get("from") or message.get("from") or "unknown"
    direction = start.get("direction") or "inbound"
    event = StartEvent(
        phone_number=phone_number,
        direction=direction,
        stream_id=stream_id,
        sink=TelnyxMediaSink(websocket, stream_id),
    )
    return call_id, event


@app.websocket("/telnyx")
async def telnyx_websocket(websocket: WebSocket):
    """WebSocket endpoint for Telnyx media streaming."""
    await websocket.accept()
    logger.info("Telnyx WebSocket connected!")

    manager = get_session_manager()
    call_id: Optional[str] = None

    try:
        while True:
            data = await websocket.receive_text()
            message = json.loads(data)
            event = message.get("event")

            if manager is None:
                logger.error("No session manager configured, dropping stream")
                break

            if event == "connected":
                logger.info("Telnyx stream connected")

            elif event == "start":
                call_id, start_event = _start_event(message, websocket)
                logger.info(f"Stream started: stream_id={start_event.stream_id}, call_id={call_id}")
                await manager.feed(call_id, start_event)

            elif event == "media":
                if not call_id:
                    continue
                media = message.get("media", {})
                if media.get("track", "inbound") != "inbound":
                    continue
                payload = media.get("payload")
                if payload:
                    await manager.feed(call_id, MediaEvent(AudioFrame(base64_decode(payload))))

            elif event == "mark":
                if call_id:
                    name = (message.get("mark") or {}).get("name") or message.get("name", "")
                    await manager.feed(call_id, MarkEvent(name))

            elif event == "stop":
                logger.info(f"Stream stopped: {call_id}")
                if call_id:
                    await manager.feed(call_id, StopEvent())
                break

    except WebSocketDisconnect:
        logger.info("Telnyx WebSocket disconnected")
    except PersistenceError as e:
        logger.error(f"Could not persist call {call_id}: {e}")
    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
    finally:
        if call_id and manager is not None:
            try:
                await manager.end_call(call_id)
            except PersistenceError as e:
                logger.error(f"Could not persist call {call_id}: {e}")


@app.post("/webhook")
async def telnyx_webhook(request: Request):
    """HTTP endpoint for Telnyx call control webhooks."""
    try:
        payload = await request.json()
    except ValueError as e:
        return JSONResponse({"status": "error", "message": f"Invalid JSON: {e}"}, status_code=400)

    data = payload.get("data", {})
    event_type = data.get("event_type", "")
    event_payload = data.get("payload", {})
    call_id = event_payload.get("call_control_id")

    logger.info(f"Webhook event: {event_type}")

    manager = get_session_manager()
    if manager is not None and call_id and event_type == "call.hangup":
        try:
            await manager.handle_call_status(call_id, "completed")
        except PersistenceError as e:
            logger.error(f"Webhook error: {e}")
            return JSONResponse({"status": "error", "message": str(e)}, status_code=500)

    return JSONResponse({"status": "ok"})


@app.get("/calls")
async def active_calls():
    """Active calls and their state."""
    manager = get_session_manager()
    if manager is None:
        return {"calls": []}
    return {
        "calls": [
            {
                "call_id": session.session_id,
                "phone_number": session.phone_number,
                "direction": session.direction,
                "state": session.state.value,
                "started_at": session.started_at.isoformat(),
                "is_bot_speaking": session.is_bot_speaking,
            }
            for session in manager.list_active_calls()
        ]
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    manager = get_session_manager()
    return {
        "status": "healthy",
        "active_calls": len(manager.list_active_calls()) if manager else 0,
    }
