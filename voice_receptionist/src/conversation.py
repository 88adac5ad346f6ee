"""
Dialogue engine.
Keeps the per-call conversation history and runs the bounded tool-calling
loop against the LLM provider.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .business import BusinessProfile
from .errors import LoopExceededError, ProviderConnectionError
from .llm_handler import LLMHandler, Message, TextBlock, ToolResultBlock
from .prompts import SUMMARY_PROMPT, build_greeting, build_system_prompt
from .store import BookingStore, Customer
from .tools import TOOL_CONFIG, ToolExecutor

logger = logging.getLogger(__name__)

APOLOGY_TEXT = "I'm sorry, I'm having a bit of trouble. Could you repeat that?"
EMPTY_REPLY_TEXT = "I'm sorry, could you repeat that?"
SUMMARY_FAILED_TEXT = "Summary generation failed"
NO_SUMMARY_TEXT = "No summary available"


@dataclass
class ConversationState:
    """Tracks one caller's conversation. History only ever grows."""
    system_prompt: str
    customer_phone: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    lead_captured: bool = False
    appointment_booked: bool = False
    _messages: list[Message] = field(default_factory=list, repr=False)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def add_user_message(self, content: str) -> None:
        """Add a user message to the conversation history."""
        self.append(Message.text("user", content))

    def add_assistant_message(self, content: str) -> None:
        """Add an assistant message to the conversation history."""
        self.append(Message.text("assistant", content))


# Sentence boundary detection

ABBREVIATIONS = frozenset({
    "mr", "mrs", "ms", "dr", "st", "jr", "sr", "vs", "etc", "e.g", "i.e", "a.m", "p.m",
})

_BOUNDARY = re.compile(r"[.?!]+[\"')\]]*(?=\s|$)")


def _is_abbreviation(text: str, mark_index: int) -> bool:
    if text[mark_index] != ".":
        return False
    start = mark_index
    while start > 0 and not text[start - 1].isspace():
        start -= 1
    token = text[start:mark_index].lower().lstrip("(\"'")
    return token in ABBREVIATIONS


def find_sentence_end(text: str, start: int = 0) -> int:
    """Index just past the first sentence boundary at or after start, or -1."""
    for match in _BOUNDARY.finditer(text, start):
        if _is_abbreviation(text, match.start()):
            continue
        if not text[:match.start()].strip():
            continue
        return match.end()
    return -1


def split_sentences(text: str) -> list[str]:
    """Split a reply into speakable sentences; the tail without a terminal mark is kept."""
    buffer = SentenceBuffer()
    sentences = buffer.feed(text)
    tail = buffer.flush()
    if tail:
        sentences.append(tail)
    return sentences


class SentenceBuffer:
    """Accumulates streamed text and releases complete sentences."""

    def __init__(self):
        self._text = ""

    def feed(self, delta: str) -> list[str]:
        self._text += delta
        sentences = []
        while True:
            end = find_sentence_end(self._text)
            if end < 0:
                break
            sentence = self._text[:end].strip()
            self._text = self._text[end:]
            if sentence:
                sentences.append(sentence)
        return sentences

    def flush(self) -> Optional[str]:
        remainder = self._text.strip()
        self._text = ""
        return remainder or None


def get_transcript(state: ConversationState) -> str:
    """Caller/Bot transcript of the text-bearing messages, tool traffic excluded."""
    lines = []
    for message in state.messages:
        text = message.text_content
        if text:
            speaker = "Caller" if message.role == "user" else "Bot"
            lines.append(f"{speaker}: {text}")
    return "\n".join(lines)


class DialogueEngine:
    """Runs conversation turns for every call against one LLM provider."""

    def __init__(
        self,
        llm: LLMHandler,
        store: BookingStore,
        profile: BusinessProfile,
        max_tool_iterations: int = 5,
        summary_model_id: Optional[str] = None,
    ):
        self.llm = llm
        self.store = store
        self.profile = profile
        self.max_tool_iterations = max_tool_iterations
        self.summary_model_id = summary_model_id
        self.tools = ToolExecutor(store, profile)

    def create_conversation(self, caller_phone: str, customer: Optional[Customer] = None) -> ConversationState:
        """New conversation for a caller; returning customers are recognised by name."""
        name = customer.name if customer else None
        return ConversationState(
            system_prompt=build_system_prompt(self.profile, name),
            customer_phone=caller_phone,
            customer_name=name,
            customer_email=customer.email if customer else None,
            lead_captured=customer is not None,
        )

    def get_greeting(self, state: ConversationState) -> str:
        """Opening line for the call, recorded as the first assistant message."""
        greeting = build_greeting(self.profile, state.customer_name)
        state.add_assistant_message(greeting)
        return greeting

    async def process_user_message(self, state: ConversationState, user_text: str) -> str:
        """
        Run one conversational turn.

        Never raises for turn-level failures: a provider error or an exhausted
        tool loop yields the fixed apology instead.
        """
        state.add_user_message(user_text)
        logger.info(f"Generating response for: {user_text[:100]}")

        try:
            return await self._run_tool_loop(state)
        except LoopExceededError as e:
            logger.warning(f"{e}; giving up on this turn")
        except ProviderConnectionError as e:
            logger.error(f"LLM unavailable for this turn: {e}")
        # Keep user/assistant alternation for the next turn
        state.add_assistant_message(APOLOGY_TEXT)
        return APOLOGY_TEXT

    async def _run_tool_loop(self, state: ConversationState) -> str:
        for iteration in range(1, self.max_tool_iterations + 1):
            response = await self.llm.converse(state.messages, state.system_prompt, TOOL_CONFIG)

            if not response.wants_tools:
                text = (response.text or "").strip() or EMPTY_REPLY_TEXT
                state.add_assistant_message(text)
                logger.info(f"Response complete after {iteration} call(s): {text[:100]}")
                return text

            content: list = []
            if response.text:
                content.append(TextBlock(response.text))
            content.extend(response.tool_calls)
            state.append(Message(role="assistant", content=tuple(content)))

            results = []
            for call in response.tool_calls:
                invocation = await self.tools.execute(call, state)
                results.append(ToolResultBlock(
                    tool_use_id=invocation.tool_use_id,
                    result=invocation.result,
                    is_error=invocation.is_error,
                ))
            state.append(Message(role="user", content=tuple(results)))

        raise LoopExceededError(self.max_tool_iterations)

    async def generate_summary(self, state: ConversationState) -> str:
        """Short summary of the call; never raises."""
        transcript = get_transcript(state)
        if not transcript:
            return NO_SUMMARY_TEXT

        try:
            response = await self.llm.converse(
                [Message.text("user", transcript)],
                SUMMARY_PROMPT,
                model_id=self.summary_model_id,
                max_tokens=200,
                temperature=0.3,
            )
        except Exception as e:
            logger.error(f"Error generating summary: {e}")
            return SUMMARY_FAILED_TEXT

        return (response.text or "").strip() or NO_SUMMARY_TEXT
