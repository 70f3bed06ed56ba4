"""On-device capability tracking, sessions, and the Ollama backend."""

from .ollama import OllamaBackend, OllamaSession
from .registry import CapabilityRegistry
from .sessions import SessionManager

__all__ = [
    "CapabilityRegistry",
    "OllamaBackend",
    "OllamaSession",
    "SessionManager",
]
