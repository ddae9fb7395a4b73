"""
ollama_session
==============

Session-oriented client for the Ollama inference server: model management,
one-shot queries, multi-turn chat with optional thinking and tool calling,
and embeddings.
"""
from .errors import (
    NotReadyError,
    OllamaSessionError,
    RemoteError,
    UnavailableError,
    UnknownToolError,
    ValidationError,
)
from .messages import History, Image, Reply, Turn
from .options import OptionsSet
from .session import Session
from .tools import Tool, ToolOutput, ToolRegistry
from .transport import OllamaTransport

__all__ = [
    "Session",
    "OllamaTransport",
    "OptionsSet",
    "Tool",
    "ToolRegistry",
    "ToolOutput",
    "History",
    "Image",
    "Reply",
    "Turn",
    "OllamaSessionError",
    "ValidationError",
    "NotReadyError",
    "UnavailableError",
    "RemoteError",
    "UnknownToolError",
]

__version__ = "0.1.0"
