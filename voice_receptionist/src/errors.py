"""
Error taxonomy for the call orchestration engine.
Turn-level failures degrade the conversation; only session-level failures end a call.
"""

from typing import Optional


class VoiceAgentError(Exception):
    """Base class for all voice receptionist errors."""


class ProviderConnectionError(VoiceAgentError, ConnectionError):
    """STT, TTS or LLM transport failure."""

    def __init__(self, message: str, provider: Optional[str] = None, transient: bool = False):
        super().__init__(message)
        self.provider = provider
        self.transient = transient


class ConfigurationError(VoiceAgentError):
    """Missing or invalid configuration, usually credentials."""


class ToolExecutionError(VoiceAgentError):
    """A tool call failed. Reported back to the LLM, never raised out of a turn."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name
        self.message = message


class LoopExceededError(VoiceAgentError):
    """The tool-calling loop hit its iteration bound without producing text."""

    def __init__(self, iterations: int):
        super().__init__(f"Tool loop exceeded {iterations} iterations")
        self.iterations = iterations


class PersistenceError(VoiceAgentError):
    """The booking/directory store failed."""
