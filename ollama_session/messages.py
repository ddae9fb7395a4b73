"""
ollama_session.messages
=======================

Conversation model: images, turns, replies and the chat history.

A *turn* is one exchange: either a user message (text + optional images) or a
batch of tool results fed back to the model, followed by the assistant reply
(text, optional thinking trace, optional tool calls).
"""
from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
    overload,
)

from .errors import ValidationError
from .tools import ToolOutput

__all__ = [
    "Image",
    "Turn",
    "Reply",
    "History",
    "build_user_turn",
    "build_tool_turn",
    "classify_images",
]

LOGGER = logging.getLogger(__name__)

ImageInput = Union[str, Sequence[str]]


# ──────────────────────────────────────────────────────────────────────────
# Images
# ──────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Image:
    """An image attached to a user message: a file path or base64 data."""

    kind: str                               # "file" | "base64"
    data: str

    @classmethod
    def classify(cls, text: str) -> "Image":
        """A literal period marks a file name; base64 never contains one."""
        if not isinstance(text, str) or not text:
            raise ValidationError(
                "images must be non-empty strings (file names or base64 data).",
                field="images",
            )
        if "." in text:
            if not Path(text).is_file():
                raise ValidationError(f"image file '{text}' not found.", field="images")
            return cls("file", text)
        try:
            base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError(
                "image data is neither a file name nor valid base64.", field="images"
            ) from None
        return cls("base64", text)

    @property
    def is_file(self) -> bool:
        return self.kind == "file"

    def to_wire(self) -> Union[Path, str]:
        return Path(self.data) if self.is_file else self.data


def classify_images(images: ImageInput, homogeneous: bool = False) -> Tuple[Image, ...]:
    """
    Classify one image string or a sequence of them.

    With *homogeneous* set (one-shot queries) all entries must be of the same
    kind; chat turns tag every image separately and may mix them.
    """
    if isinstance(images, str):
        images = [images]
    elif not isinstance(images, Sequence) or isinstance(images, (bytes, bytearray)):
        raise ValidationError(
            "images must be a string or a sequence of strings.", field="images"
        )

    classified = tuple(Image.classify(item) for item in images)
    if homogeneous and len({img.kind for img in classified}) > 1:
        raise ValidationError(
            "images must either all be file names or all be base64 encoded strings.",
            field="images",
        )
    return classified


# ──────────────────────────────────────────────────────────────────────────
# Turns
# ──────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Reply:
    """Decoded assistant answer returned by ``Session.query``/``Session.chat``."""

    text: str
    thinking: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None

    def __str__(self) -> str:
        return self.text


@dataclass
class Turn:
    user_text: str = ""
    user_images: Tuple[Image, ...] = ()
    tool_outputs: Tuple[ToolOutput, ...] = ()
    assistant_text: Optional[str] = None
    assistant_thinking: Optional[str] = None
    assistant_tool_calls: Optional[List[Dict[str, Any]]] = None

    @property
    def answered(self) -> bool:
        return self.assistant_text is not None

    @property
    def is_tool_turn(self) -> bool:
        return bool(self.tool_outputs)

    def answer(
        self,
        text: str,
        thinking: Optional[str] = None,
        tool_calls: Optional[List[Dict[str, Any]]] = None,
    ) -> Reply:
        """Fill in the assistant side of this turn; allowed exactly once."""
        if self.answered:
            raise ValidationError("turn has already been answered.", field="turn")
        self.assistant_text = (text or "").strip()
        self.assistant_thinking = thinking.strip() if thinking else None
        self.assistant_tool_calls = tool_calls or None
        return self.reply()

    def reply(self) -> Reply:
        return Reply(
            text=self.assistant_text or "",
            thinking=self.assistant_thinking,
            tool_calls=self.assistant_tool_calls,
        )

    def to_messages(self) -> List[Dict[str, Any]]:
        """Role-tagged chat messages for this turn, in wire order."""
        if self.is_tool_turn:
            messages: List[Dict[str, Any]] = [
                {"role": "tool", "content": out.result, "tool_name": out.name}
                for out in self.tool_outputs
            ]
        else:
            user: Dict[str, Any] = {"role": "user", "content": self.user_text}
            if self.user_images:
                user["images"] = [img.to_wire() for img in self.user_images]
            messages = [user]

        if self.answered:
            assistant: Dict[str, Any] = {
                "role": "assistant",
                "content": self.assistant_text,
            }
            if self.assistant_thinking:
                assistant["thinking"] = self.assistant_thinking
            if self.assistant_tool_calls:
                assistant["tool_calls"] = self.assistant_tool_calls
            messages.append(assistant)
        return messages


def build_user_turn(
    text: str,
    images: Optional[ImageInput] = None,
    homogeneous: bool = False,
) -> Turn:
    """Create a pending user turn; *text* must be a non-empty string."""
    if not isinstance(text, str) or not text:
        raise ValidationError("prompt must be a non-empty string.", field="prompt")
    classified = classify_images(images, homogeneous) if images is not None else ()
    return Turn(user_text=text, user_images=classified)


def build_tool_turn(outputs: Sequence[Any]) -> Turn:
    """Create a pending turn carrying ``(result, tool_name)`` pairs."""
    records = []
    for item in outputs:
        if (
            not isinstance(item, Sequence)
            or isinstance(item, str)
            or len(item) != 2
            or not all(isinstance(part, str) for part in item)
        ):
            raise ValidationError(
                "tool outputs must be (result, tool_name) pairs of strings.",
                field="prompt",
            )
        records.append(ToolOutput(*item))
    if not records:
        raise ValidationError("tool outputs cannot be empty.", field="prompt")
    return Turn(tool_outputs=tuple(records))


# ──────────────────────────────────────────────────────────────────────────
# History
# ──────────────────────────────────────────────────────────────────────────
class History(Sequence[Turn]):
    """Ordered, answered chat turns. Positions used by :meth:`clear` are 1-based."""

    def __init__(self) -> None:
        self._turns: List[Turn] = []

    def append(self, turn: Turn) -> None:
        if not turn.answered:
            raise ValidationError("only answered turns enter the history.", field="turn")
        self._turns.append(turn)

    def to_messages(self, pending: Optional[Turn] = None) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        for turn in self._turns:
            messages.extend(turn.to_messages())
        if pending is not None:
            messages.extend(pending.to_messages())
        return messages

    def clear(self, which: Union[str, int, Sequence[int]] = "all") -> None:
        """
        Remove turns from the history.

        *which* is ``"all"``, ``"first"``, ``"last"``, a 1-based position or an
        increasing sequence of 1-based positions.
        """
        if not self._turns:
            return
        if which == "all":
            self._turns.clear()
            return
        if which == "first":
            positions: Sequence[int] = [1]
        elif which == "last":
            positions = [len(self._turns)]
        elif isinstance(which, str):
            raise ValidationError(f"invalid history selector '{which}'.", field="which")
        elif isinstance(which, Sequence):
            positions = list(which)
        else:
            positions = [which]                 # type: ignore[list-item]

        self._check_positions(positions)
        drop = {pos - 1 for pos in positions}
        self._turns = [turn for idx, turn in enumerate(self._turns) if idx not in drop]
        LOGGER.debug("Removed %d turn(s) from chat history", len(drop))

    def _check_positions(self, positions: Sequence[Any]) -> None:
        if not positions:
            raise ValidationError("no history positions given.", field="which")
        previous = 0
        for pos in positions:
            if isinstance(pos, bool) or not isinstance(pos, int):
                raise ValidationError(
                    f"history position {pos!r} is not an integer.", field="which"
                )
            if not 1 <= pos <= len(self._turns):
                raise ValidationError(
                    f"history position {pos} is out of range 1..{len(self._turns)}.",
                    field="which",
                )
            if pos <= previous:
                raise ValidationError(
                    "history positions must be strictly increasing.", field="which"
                )
            previous = pos

    # ---------- Sequence protocol -------------------------------------------

    @overload
    def __getitem__(self, index: int) -> Turn: ...

    @overload
    def __getitem__(self, index: slice) -> List[Turn]: ...

    def __getitem__(self, index):
        return self._turns[index]

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)

    def __repr__(self) -> str:
        return f"History({len(self._turns)} turns)"
