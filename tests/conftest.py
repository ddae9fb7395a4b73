"""Shared fixtures: a session wired to a mocked transport."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from ollama_session.errors import RemoteError
from ollama_session.session import Session
from ollama_session.transport import (
    ChatResult,
    EmbedResult,
    GenerateResult,
    ModelInfo,
    OllamaTransport,
    ResponseStats,
)

MODELS = {
    "a": ModelInfo("a", capabilities=("completion",)),
    "b": ModelInfo("b", capabilities=("completion", "thinking", "tools")),
    "c": ModelInfo("c", capabilities=("embedding",)),
}


def _model_info(name):
    try:
        return MODELS[name]
    except KeyError:
        raise RemoteError(f"show: model '{name}' not found", status_code=404) from None


@pytest.fixture
def transport():
    mock = MagicMock(spec=OllamaTransport)
    mock.host = "http://localhost:11434"
    mock.list_models.return_value = ["a", "b", "c"]
    mock.list_running_models.return_value = ["b"]
    mock.model_info.side_effect = _model_info
    mock.generate.return_value = GenerateResult(
        response="  the answer  ",
        thinking=" some reasoning ",
        stats=ResponseStats(model="b", eval_count=3),
    )
    mock.chat.return_value = ChatResult(
        content=" hi there ",
        thinking="pondering",
        stats=ResponseStats(model="b", eval_count=2),
    )
    mock.embed.return_value = EmbedResult(embeddings=[[0.1, 0.2], [0.3, 0.4]])
    return mock


@pytest.fixture
def session(transport):
    return Session(transport=transport)


@pytest.fixture
def chat_session(transport):
    return Session(model="b", mode="chat", transport=transport)
