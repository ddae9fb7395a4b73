"""
ollama_session.session
======================

Stateful front end to an Ollama server.

A :class:`Session` owns the active model, timeouts, system message, custom
options, the optional thinking / tool-calling extensions and the chat history.
It validates arguments, assembles requests and hands them to the transport,
one synchronous request at a time::

    session = Session(model="qwen3:4b", mode="chat")
    session.chat("Why is the sky blue?").text
    session.chat("Explain it to a five year old.").text
    len(session.history)        # 2
"""
from __future__ import annotations

import logging
from typing import Any, Callable, FrozenSet, List, Optional, Sequence, Tuple, TypeVar, Union

from .errors import NotReadyError, RemoteError, UnavailableError, ValidationError
from .messages import History, ImageInput, Reply, Turn, build_tool_turn, build_user_turn
from .options import OptionsSet
from .tools import Tool, ToolOutput, ToolRegistry
from .transport import (
    DEFAULT_TIMEOUT,
    ModelInfo,
    ModelSummary,
    OllamaTransport,
    ResponseStats,
)

__all__ = ["Session", "MODES", "THINKING_LEVELS"]

LOGGER = logging.getLogger(__name__)

MODES: Tuple[str, ...] = ("query", "chat", "embed")
THINKING_LEVELS: Tuple[str, ...] = ("low", "medium", "high")
TIMEOUT_HINT: str = (
    "If you get a time out error, try to increase the 'read_timeout' and "
    "'write_timeout' parameters to allow the server more time."
)

ModelRef = Union[str, int]
Tools = Union[Tool, ToolRegistry]
T = TypeVar("T")


def _check_mode(mode: Any) -> str:
    if not isinstance(mode, str) or mode.lower() not in MODES:
        raise ValidationError(f"unsupported mode {mode!r}; use one of {MODES}.", field="mode")
    return mode.lower()


def _check_timeout(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"'{name}' must be a positive integer (seconds).", field=name)
    return value


class Session:
    """One conversation with one Ollama server; not safe to share between threads."""

    def __init__(
        self,
        server_url: Optional[str] = None,
        model: Optional[ModelRef] = None,
        mode: str = "query",
        transport: Optional[OllamaTransport] = None,
    ) -> None:
        self._mode = _check_mode(mode)
        self._transport = transport if transport is not None else OllamaTransport(server_url)
        self._active_model: Optional[str] = None
        self._capabilities: FrozenSet[str] = frozenset()
        self._thinking: Union[bool, str, None] = None
        self._tools: Optional[Tools] = None
        self._read_timeout = DEFAULT_TIMEOUT
        self._write_timeout = DEFAULT_TIMEOUT
        self._system_message = ""
        self._options = OptionsSet()
        self._history = History()
        self._last_stats: Optional[ResponseStats] = None
        self._available: Tuple[str, ...] = self._probe()

        if model is not None:
            self._load(model, require_embedding=self._mode == "embed")

    def __repr__(self) -> str:
        return (
            f"Session(server_url={self.server_url!r}, mode={self._mode!r}, "
            f"active_model={self._active_model!r})"
        )

    def __call__(self, prompt: Any, images: Optional[ImageInput] = None) -> Any:
        """Send *prompt* the way the current mode dictates."""
        if self._mode == "chat":
            return self.chat(prompt, images)
        if self._mode == "embed":
            if images is not None:
                raise ValidationError("images are not accepted in 'embed' mode.", field="images")
            return self.embed(prompt)
        return self.query(prompt, images)

    # ---------- Connection & state accessors --------------------------------

    @property
    def server_url(self) -> str:
        return self._transport.host

    @server_url.setter
    def server_url(self, url: str) -> None:
        """Point the session at another server; the old one is kept on failure."""
        if not isinstance(url, str) or not url:
            raise ValidationError("server URL must be a non-empty string.", field="server_url")
        previous = self._transport.host
        self._transport.host = url
        try:
            self._available = self._probe()
        except UnavailableError:
            self._transport.host = previous
            raise
        LOGGER.info("Switched to Ollama server at %s", self._transport.host)
        self._forget_model()

    @property
    def mode(self) -> str:
        return self._mode

    def set_mode(self, mode: str) -> None:
        self._mode = _check_mode(mode)

    @property
    def active_model(self) -> Optional[str]:
        return self._active_model

    @active_model.setter
    def active_model(self, model: ModelRef) -> None:
        self.load_model(model)

    @property
    def capabilities(self) -> FrozenSet[str]:
        return self._capabilities

    @property
    def available_models(self) -> Tuple[str, ...]:
        """Model names as of the last listing or management operation."""
        return self._available

    @property
    def running_models(self) -> List[str]:
        return self.list_running_models()

    @property
    def history(self) -> Tuple[Turn, ...]:
        return tuple(self._history)

    @property
    def last_stats(self) -> Optional[ResponseStats]:
        return self._last_stats

    @property
    def options(self) -> OptionsSet:
        return self._options

    def set_options(self, **options: Any) -> None:
        """Set custom options by name; ``None`` reverts one to the server default."""
        self._options.update(options)

    @property
    def read_timeout(self) -> int:
        return self._read_timeout

    @read_timeout.setter
    def read_timeout(self, seconds: int) -> None:
        self._read_timeout = _check_timeout("read_timeout", seconds)

    @property
    def write_timeout(self) -> int:
        return self._write_timeout

    @write_timeout.setter
    def write_timeout(self, seconds: int) -> None:
        self._write_timeout = _check_timeout("write_timeout", seconds)

    @property
    def system_message(self) -> str:
        return self._system_message

    @system_message.setter
    def system_message(self, message: str) -> None:
        if not isinstance(message, str):
            raise ValidationError("system message must be a string.", field="system_message")
        if self._mode == "chat" and len(self._history):
            raise NotReadyError(
                "system message cannot be modified during a chat session; "
                "clear the history first."
            )
        self._system_message = message

    @property
    def thinking(self) -> Union[bool, str, None]:
        return self._thinking

    @thinking.setter
    def thinking(self, value: Union[bool, str]) -> None:
        if not (isinstance(value, bool) or (isinstance(value, str) and value in THINKING_LEVELS)):
            raise ValidationError(
                f"'thinking' must be a boolean or one of {THINKING_LEVELS}.", field="thinking"
            )
        self._require_capability("thinking")
        self._thinking = value

    @property
    def tools(self) -> Optional[Tools]:
        return self._tools

    @tools.setter
    def tools(self, value: Optional[Tools]) -> None:
        if value is None:
            self._tools = None
            return
        if not isinstance(value, (Tool, ToolRegistry)):
            raise ValidationError("'tools' must be a Tool or a ToolRegistry.", field="tools")
        self._require_capability("tools")
        self._tools = value

    # ---------- Model management -------------------------------------------

    def list_models(self) -> List[str]:
        names = self._transport.list_models()
        self._available = tuple(names)
        return list(names)

    def list_running_models(self) -> List[str]:
        return self._transport.list_running_models()

    def describe_models(self, running: bool = False) -> List[ModelSummary]:
        rows = self._transport.describe_models(running=running)
        if not running:
            self._available = tuple(row.name for row in rows)
        return rows

    def model_info(self, model: Optional[ModelRef] = None) -> ModelInfo:
        """Details of *model*, or of the active model when omitted."""
        if model is None:
            if self._active_model is None:
                raise NotReadyError("model_info: no model has been loaded yet.")
            name = self._active_model
        else:
            name = self._resolve(model, "model_info")
        return self._transport.model_info(name)

    def load_model(self, model: ModelRef) -> None:
        """Load *model* (a name or a 1-based position in ``available_models``)."""
        self._load(model)

    def unload_model(self, model: ModelRef) -> None:
        name = self._resolve(model, "unload_model")
        if name == self._active_model:
            embedding = "embedding" in self._capabilities
        else:
            embedding = self._transport.model_info(name).supports("embedding")
        self._transport.unload_model(name, embedding=embedding)
        LOGGER.info("Unloaded model '%s'", name)
        if name == self._active_model:
            self._forget_model()

    def delete_model(self, model: ModelRef) -> None:
        name = self._resolve(model, "delete_model")
        self._transport.delete_model(name)
        LOGGER.info("Deleted model '%s'", name)
        self.list_models()
        if name == self._active_model:
            self._forget_model()

    def pull_model(self, model: str) -> None:
        if not isinstance(model, str) or not model:
            raise ValidationError("pull_model: model must be a non-empty string.", field="model")
        self._with_hint(self._transport.pull_model, model, **self._timeouts())
        LOGGER.info("Pulled model '%s'", model)
        self.list_models()

    def copy_model(self, source: ModelRef, target: str) -> None:
        name = self._resolve(source, "copy_model")
        if not isinstance(target, str) or not target:
            raise ValidationError("copy_model: target must be a non-empty string.", field="target")
        self._transport.copy_model(name, target)
        LOGGER.info("Copied model '%s' to '%s'", name, target)
        self.list_models()

    # ---------- Inference ---------------------------------------------------

    def query(self, prompt: str, images: Optional[ImageInput] = None) -> Reply:
        """One-shot generation; nothing is added to the history."""
        self._require_model("query")
        if self._mode == "embed":
            raise NotReadyError("query: not available in 'embed' mode.")
        turn = build_user_turn(prompt, images, homogeneous=True)

        result = self._with_hint(
            self._transport.generate,
            self._active_model,
            turn.user_text,
            options=self._options.to_wire(),
            system=self._system_message,
            think=self._thinking,
            images=[img.to_wire() for img in turn.user_images],
            **self._timeouts(),
        )
        self._last_stats = result.stats
        thinking = result.thinking.strip() if self._thinking and result.thinking else None
        return Reply(text=result.response.strip(), thinking=thinking)

    def chat(self, prompt: Any, images: Optional[ImageInput] = None) -> Reply:
        """
        Send the next chat turn along with the whole history.

        With tools enabled *prompt* may instead be a sequence of
        ``(result, tool_name)`` pairs, as returned by :meth:`run_tools`.
        The turn only enters the history once the server has answered.
        """
        self._require_model("chat")
        if self._mode != "chat":
            raise NotReadyError(
                f"chat: session is in '{self._mode}' mode; call set_mode('chat') first."
            )
        turn = self._pending_turn(prompt, images)
        tools = self._tools.to_wire() if self._tools is not None else None
        if isinstance(tools, dict):
            tools = [tools]

        result = self._with_hint(
            self._transport.chat,
            self._active_model,
            self._history.to_messages(turn),
            options=self._options.to_wire(),
            system=self._system_message,
            think=self._thinking,
            tools=tools,
            **self._timeouts(),
        )
        reply = turn.answer(
            result.content,
            thinking=result.thinking if self._thinking else None,
            tool_calls=result.tool_calls if self._tools is not None else None,
        )
        self._history.append(turn)
        self._last_stats = result.stats
        return reply

    def run_tools(self, tool_calls: Any) -> List[ToolOutput]:
        """Execute the tool calls of a reply with the session's tools."""
        if self._tools is None:
            raise NotReadyError("run_tools: no tools have been assigned.")
        if isinstance(tool_calls, Reply):
            tool_calls = tool_calls.tool_calls
        if not tool_calls:
            return []
        if isinstance(self._tools, Tool):
            return self._tools.call(tool_calls)
        return self._tools.dispatch(tool_calls)

    def embed(self, inputs: Union[str, Sequence[str]], dims: int = 0) -> List[List[float]]:
        """Return one embedding vector per input text, in input order."""
        self._require_model("embed")
        if self._mode != "embed":
            raise NotReadyError("embed: session is not in 'embed' mode.")
        if "embedding" not in self._capabilities:
            raise NotReadyError("embed: active model has no embedding capabilities.")

        items = [inputs] if isinstance(inputs, str) else inputs
        if (
            not isinstance(items, Sequence)
            or not items
            or any(not isinstance(item, str) or not item for item in items)
        ):
            raise ValidationError(
                "embed: input must be a non-empty string or a sequence of non-empty strings.",
                field="input",
            )
        if isinstance(dims, bool) or not isinstance(dims, int) or dims < 0:
            raise ValidationError("embed: dims must be a non-negative integer.", field="dims")

        result = self._with_hint(
            self._transport.embed,
            self._active_model,
            list(items),
            dims=dims,
            options=self._options.to_wire(),
            **self._timeouts(),
        )
        self._last_stats = result.stats
        return result.embeddings

    def clear_history(self, which: Union[str, int, Sequence[int]] = "all") -> None:
        """Drop ``"all"``, ``"first"``, ``"last"`` or 1-based positions of the history."""
        self._history.clear(which)

    # ---------- Internals ---------------------------------------------------

    def _probe(self) -> Tuple[str, ...]:
        try:
            return tuple(self._transport.list_models())
        except RemoteError as exc:
            raise UnavailableError(
                f"server is inaccessible at {self._transport.host}: {exc}"
            ) from exc

    def _timeouts(self) -> dict:
        return {"read_timeout": self._read_timeout, "write_timeout": self._write_timeout}

    def _with_hint(self, call: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return call(*args, **kwargs)
        except RemoteError as exc:
            raise RemoteError(
                f"{exc}\n   {TIMEOUT_HINT}",
                status_code=exc.status_code,
                timed_out=exc.timed_out,
            ) from exc

    def _resolve(self, model: Any, operation: str) -> str:
        if isinstance(model, bool):
            raise ValidationError(f"{operation}: invalid model reference {model!r}.", field="model")
        if isinstance(model, int):
            if not 1 <= model <= len(self._available):
                raise ValidationError(
                    f"{operation}: index {model} to 'available_models' is out of range.",
                    field="model",
                )
            return self._available[model - 1]
        if isinstance(model, float):
            raise ValidationError(f"{operation}: index must be an integer value.", field="model")
        if isinstance(model, str) and model:
            return model
        raise ValidationError(
            f"{operation}: model must be a name or an index to 'available_models'.",
            field="model",
        )

    def _load(self, model: ModelRef, require_embedding: bool = False) -> None:
        name = self._resolve(model, "load_model")
        self._forget_model()
        try:
            info = self._transport.model_info(name)
            embedding = info.supports("embedding")
            if require_embedding and not embedding:
                raise NotReadyError(f"load_model: '{name}' is not an embedding model.")
            self._transport.load_model(name, embedding=embedding, **self._timeouts())
        except RemoteError as exc:
            raise RemoteError(
                f"load_model: model '{name}' could not be loaded: {exc}",
                status_code=exc.status_code,
                timed_out=exc.timed_out,
            ) from exc

        self._active_model = name
        self._capabilities = frozenset(info.capabilities)
        if embedding:
            self._mode = "embed"
        if self._mode != "embed":
            self._thinking = "thinking" in self._capabilities
        LOGGER.info(
            "Loaded model '%s' (capabilities: %s)", name, ", ".join(sorted(self._capabilities))
        )

    def _forget_model(self) -> None:
        self._active_model = None
        self._capabilities = frozenset()
        self._thinking = None
        self._tools = None

    def _require_model(self, operation: str) -> None:
        if self._active_model is None:
            raise NotReadyError(f"{operation}: no model has been loaded yet.")

    def _require_capability(self, capability: str) -> None:
        if self._active_model is None:
            raise NotReadyError(f"cannot assign '{capability}' without an active model.")
        if capability not in self._capabilities:
            raise NotReadyError(
                f"model '{self._active_model}' does not support '{capability}'."
            )

    def _pending_turn(self, prompt: Any, images: Optional[ImageInput]) -> Turn:
        if isinstance(prompt, str):
            return build_user_turn(prompt, images)
        if self._tools is not None and isinstance(prompt, Sequence):
            if images is not None:
                raise ValidationError("images cannot accompany tool outputs.", field="images")
            return build_tool_turn(prompt)
        expected = "a string or a sequence of (result, tool_name) pairs" if self._tools else "a string"
        raise ValidationError(f"chat: prompt must be {expected}.", field="prompt")
