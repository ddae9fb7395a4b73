"""
High‑level Ollama transport
---------------------------
Implements a thin *Facade* over the official Ollama Python SDK so the rest
of the package never touches HTTP directly.

Every call either returns one of the result structures below or raises
:class:`~ollama_session.errors.RemoteError` /
:class:`~ollama_session.errors.UnavailableError`. Nothing is retried here.
"""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import httpx
import ollama                                # type: ignore[import]
import requests

from .errors import RemoteError, UnavailableError

__all__ = [
    "DEFAULT_HOST",
    "DEFAULT_TIMEOUT",
    "OllamaTransport",
    "ModelInfo",
    "ModelSummary",
    "ResponseStats",
    "GenerateResult",
    "ChatResult",
    "EmbedResult",
    "normalize_host",
]

LOGGER = logging.getLogger(__name__)
DEFAULT_HOST: str = "http://localhost:11434"
DEFAULT_TIMEOUT: int = 300
CONNECT_TIMEOUT: float = 10.0

Think = Union[bool, str, None]


def normalize_host(url: Optional[str] = None) -> str:
    """Resolve *url* (or ``$OLLAMA_HOST``) to a base URL with a scheme."""
    url = (url or os.getenv("OLLAMA_HOST") or DEFAULT_HOST).strip().rstrip("/")
    if "://" not in url:
        url = f"http://{url}"
    return url


# ──────────────────────────────────────────────────────────────────────────
# Result structures
# ──────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ModelSummary:
    """One row of the model listing."""

    name: str
    family: Optional[str] = None
    format: Optional[str] = None
    parameter_size: Optional[str] = None
    quantization: Optional[str] = None
    size_bytes: Optional[int] = None


@dataclass(frozen=True)
class ModelInfo(ModelSummary):
    capabilities: Tuple[str, ...] = ()

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class ResponseStats:
    """Timing and token counters reported with every inference response."""

    model: Optional[str] = None
    created_at: Optional[str] = None
    total_duration: Optional[int] = None          # nanoseconds
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    prompt_eval_duration: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None

    @classmethod
    def from_response(
        cls, resp: Union[ollama.GenerateResponse, ollama.ChatResponse, ollama.EmbedResponse]
    ) -> "ResponseStats":
        return cls(
            model=resp.model,
            created_at=resp.created_at,
            total_duration=resp.total_duration,
            load_duration=resp.load_duration,
            prompt_eval_count=resp.prompt_eval_count,
            prompt_eval_duration=resp.prompt_eval_duration,
            eval_count=resp.eval_count,
            eval_duration=resp.eval_duration,
        )

    @staticmethod
    def seconds(nanoseconds: Optional[int]) -> Optional[float]:
        return None if nanoseconds is None else round(nanoseconds / 1e9, 2)


@dataclass(frozen=True)
class GenerateResult:
    response: str
    thinking: Optional[str] = None
    stats: ResponseStats = field(default_factory=ResponseStats)


@dataclass(frozen=True)
class ChatResult:
    content: str
    thinking: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    stats: ResponseStats = field(default_factory=ResponseStats)


@dataclass(frozen=True)
class EmbedResult:
    embeddings: List[List[float]]
    stats: ResponseStats = field(default_factory=ResponseStats)


def _details(details: Any) -> Dict[str, Optional[str]]:
    """Flatten the SDK's ``ModelDetails`` (absent for some models)."""
    if details is None:
        return {}
    return {
        "family": details.family,
        "format": details.format,
        "parameter_size": details.parameter_size,
        "quantization": details.quantization_level,
    }


def _summary(
    model: Union[ollama.ListResponse.Model, ollama.ProcessResponse.Model],
) -> ModelSummary:
    return ModelSummary(name=model.model or "", size_bytes=model.size, **_details(model.details))


def _tool_calls(message: ollama.Message) -> Optional[List[Dict[str, Any]]]:
    calls = message.tool_calls
    if not calls:
        return None
    return [
        {
            "function": {
                "name": call.function.name,
                "arguments": dict(call.function.arguments or {}),
            }
        }
        for call in calls
    ]


# ──────────────────────────────────────────────────────────────────────────
# Transport
# ──────────────────────────────────────────────────────────────────────────
class OllamaTransport:
    """Wrapper around ``ollama.Client`` with per-call read/write timeouts."""

    def __init__(self, host: Optional[str] = None) -> None:
        self._host = normalize_host(host)
        self._clients: Dict[Tuple[float, float], ollama.Client] = {}

    @property
    def host(self) -> str:
        return self._host

    @host.setter
    def host(self, url: str) -> None:
        self._host = normalize_host(url)
        self._clients.clear()

    # ---------- Internals ---------------------------------------------------

    def _client(
        self,
        read_timeout: float = DEFAULT_TIMEOUT,
        write_timeout: float = DEFAULT_TIMEOUT,
    ) -> ollama.Client:
        key = (float(read_timeout), float(write_timeout))
        if key not in self._clients:
            timeout = httpx.Timeout(CONNECT_TIMEOUT, read=key[0], write=key[1])
            self._clients[key] = ollama.Client(host=self._host, timeout=timeout)
        return self._clients[key]

    @contextmanager
    def _rpc(self, operation: str) -> Iterator[None]:
        """Translate SDK / HTTP failures of *operation* into package errors."""
        LOGGER.debug("%s -> %s", operation, self._host)
        try:
            yield
        except ollama.ResponseError as exc:
            raise RemoteError(
                f"{operation}: {exc.error}", status_code=exc.status_code
            ) from exc
        except httpx.TimeoutException as exc:
            raise RemoteError(
                f"{operation}: request timed out ({exc.__class__.__name__})",
                timed_out=True,
            ) from exc
        except (ConnectionError, httpx.TransportError) as exc:
            raise UnavailableError(
                f"{operation}: server is inaccessible at {self._host}"
            ) from exc

    # ---------- Model management -------------------------------------------

    def list_models(self) -> List[str]:
        return [row.name for row in self.describe_models()]

    def list_running_models(self) -> List[str]:
        return [row.name for row in self.describe_models(running=True)]

    def describe_models(self, running: bool = False) -> List[ModelSummary]:
        with self._rpc("ps" if running else "list"):
            resp = self._client().ps() if running else self._client().list()
        return [_summary(model) for model in resp.models]

    def model_info(self, name: str) -> ModelInfo:
        with self._rpc("show"):
            shown = self._client().show(name)
        size = next(
            (row.size_bytes for row in self.describe_models() if row.name == name),
            None,
        )
        return ModelInfo(
            name=name,
            size_bytes=size,
            capabilities=tuple(shown.capabilities or ()),
            **_details(shown.details),
        )

    def load_model(self, name: str, embedding: bool = False, **timeouts: float) -> None:
        """An empty request makes the server load *name* into memory."""
        with self._rpc("load"):
            if embedding:
                self._client(**timeouts).embed(model=name)
            else:
                self._client(**timeouts).generate(model=name)

    def unload_model(self, name: str, embedding: bool = False) -> None:
        with self._rpc("unload"):
            if embedding:
                self._client().embed(model=name, keep_alive=0)
            else:
                self._client().generate(model=name, keep_alive=0)

    def pull_model(self, name: str, **timeouts: float) -> None:
        with self._rpc("pull"):
            resp = self._client(**timeouts).pull(name, stream=False)
        LOGGER.debug("pull %s: %s", name, resp.status)

    def copy_model(self, source: str, target: str) -> None:
        with self._rpc("copy"):
            self._client().copy(source, target)

    def delete_model(self, name: str) -> None:
        with self._rpc("delete"):
            self._client().delete(name)

    def server_version(self) -> str:
        """``GET /api/version``; the SDK has no call for it."""
        url = f"{self._host}/api/version"
        LOGGER.debug("version -> %s", url)
        try:
            response = requests.get(url, timeout=CONNECT_TIMEOUT)
            response.raise_for_status()
        except requests.exceptions.ConnectionError as exc:
            raise UnavailableError(f"version: server is inaccessible at {self._host}") from exc
        except requests.exceptions.Timeout as exc:
            raise RemoteError("version: request timed out", timed_out=True) from exc
        except requests.exceptions.HTTPError as exc:
            raise RemoteError(
                f"version: {exc}", status_code=exc.response.status_code
            ) from exc
        return response.json().get("version", "")

    # ---------- Inference ---------------------------------------------------

    def generate(
        self,
        model: str,
        prompt: str,
        options: Optional[Mapping[str, Any]] = None,
        system: Optional[str] = None,
        think: Think = None,
        images: Optional[Sequence[Any]] = None,
        **timeouts: float,
    ) -> GenerateResult:
        with self._rpc("generate"):
            resp = self._client(**timeouts).generate(
                model=model,
                prompt=prompt,
                system=system or None,
                think=think,
                images=list(images) if images else None,
                options=dict(options) if options else None,
                stream=False,
            )
        return GenerateResult(
            response=resp.response or "",
            thinking=resp.thinking,
            stats=ResponseStats.from_response(resp),
        )

    def chat(
        self,
        model: str,
        messages: Sequence[Mapping[str, Any]],
        options: Optional[Mapping[str, Any]] = None,
        system: Optional[str] = None,
        think: Think = None,
        tools: Optional[Sequence[Mapping[str, Any]]] = None,
        **timeouts: float,
    ) -> ChatResult:
        wire = list(messages)
        if system:
            wire.insert(0, {"role": "system", "content": system})
        with self._rpc("chat"):
            resp = self._client(**timeouts).chat(
                model=model,
                messages=wire,
                tools=list(tools) if tools else None,
                think=think,
                options=dict(options) if options else None,
                stream=False,
            )
        message = resp.message
        return ChatResult(
            content=message.content or "",
            thinking=message.thinking,
            tool_calls=_tool_calls(message),
            stats=ResponseStats.from_response(resp),
        )

    def embed(
        self,
        model: str,
        inputs: Sequence[str],
        dims: int = 0,
        options: Optional[Mapping[str, Any]] = None,
        **timeouts: float,
    ) -> EmbedResult:
        kwargs: Dict[str, Any] = {}
        if dims:
            kwargs["dimensions"] = dims
        with self._rpc("embed"):
            resp = self._client(**timeouts).embed(
                model=model,
                input=list(inputs),
                options=dict(options) if options else None,
                **kwargs,
            )
        return EmbedResult(
            embeddings=[list(vector) for vector in resp.embeddings],
            stats=ResponseStats.from_response(resp),
        )
