"""
ollama_session.options
======================

Validated bag of inference-tuning parameters sent as the ``options`` object of
generate, chat and embed requests.

Only explicitly set keys are sent; anything absent falls back to the server
(or Modelfile) default.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, Iterator, Mapping, Optional, Tuple, Union

import pydantic
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    field_validator,
)

from .errors import ValidationError

__all__ = ["InferenceOptions", "OPTION_NAMES", "OptionsSet"]

Number = Union[int, float]

Count = Annotated[StrictInt, Field(ge=0)]
Unit = Annotated[StrictFloat, Field(ge=0, le=1)]
Penalty = Annotated[StrictFloat, Field(ge=0)]


class InferenceOptions(BaseModel):
    """Every option the server understands, in the order it documents them."""

    model_config = ConfigDict(extra="forbid", strict=True, allow_inf_nan=False)

    num_keep: Optional[Count] = None
    seed: Optional[Count] = None
    num_predict: Optional[Count] = None
    top_k: Optional[Count] = None
    top_p: Optional[Unit] = None
    min_p: Optional[Unit] = None
    typical_p: Optional[Unit] = None
    repeat_last_n: Optional[Count] = None
    temperature: Optional[Annotated[StrictFloat, Field(ge=0, le=2)]] = None
    repeat_penalty: Optional[Penalty] = None
    presence_penalty: Optional[Penalty] = None
    frequency_penalty: Optional[Penalty] = None
    penalize_newline: Optional[StrictBool] = None
    numa: Optional[StrictBool] = None
    num_ctx: Optional[Count] = None
    num_batch: Optional[Count] = None
    num_gpu: Optional[Count] = None
    main_gpu: Optional[Count] = None
    use_mmap: Optional[StrictBool] = None
    num_thread: Optional[Count] = None

    @field_validator(
        "num_keep", "seed", "num_predict", "top_k", "repeat_last_n", "num_ctx",
        "num_batch", "num_gpu", "main_gpu", "num_thread",
        mode="before",
    )
    @classmethod
    def integral_float(cls, value: Any) -> Any:
        # 4096.0 is a count, 4096.5 is not
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return value

    @field_validator(
        "top_p", "min_p", "typical_p", "temperature", "repeat_penalty",
        "presence_penalty", "frequency_penalty",
        mode="before",
    )
    @classmethod
    def int_as_float(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return float(value)
        return value


OPTION_NAMES: Tuple[str, ...] = tuple(InferenceOptions.model_fields)


class OptionsSet:
    """Mapping of option name to validated scalar.

    >>> opts = OptionsSet()
    >>> opts.set("temperature", 0.2)
    >>> opts.to_wire()
    {'temperature': 0.2}
    >>> opts.set("temperature", None)     # back to the server default
    >>> len(opts)
    0
    """

    def __init__(self, options: Optional[Mapping[str, Any]] = None) -> None:
        self._model = InferenceOptions()
        if options:
            self.update(options)

    # ---------- Public API -------------------------------------------------

    def set(self, name: str, value: Any) -> None:
        """Validate and store one option; ``None`` removes it."""
        self.update({name: value})

    def update(self, options: Mapping[str, Any]) -> None:
        """Apply several options at once; nothing changes if any is invalid."""
        candidate: Dict[Any, Any] = self.to_wire()
        for name, value in options.items():
            if value is None and name in OPTION_NAMES:
                candidate.pop(name, None)
            else:
                candidate[name] = value
        try:
            self._model = InferenceOptions.model_validate(candidate)
        except pydantic.ValidationError as exc:
            error = exc.errors()[0]
            name = str(error["loc"][0]) if error["loc"] else ""
            if error["type"] == "extra_forbidden":
                raise ValidationError(f"invalid option name {name!r}.", field=name) from None
            raise ValidationError(f"option '{name}': {error['msg']}.", field=name) from None

    def get(self, name: str, default: Any = None) -> Any:
        return self.to_wire().get(name, default)

    def clear(self) -> None:
        self._model = InferenceOptions()

    def to_wire(self) -> Dict[str, Union[bool, Number]]:
        """Return the present options as a plain dict for the request body."""
        return self._model.model_dump(exclude_none=True)

    # ---------- Container protocol -----------------------------------------

    def __contains__(self, name: object) -> bool:
        return name in self.to_wire()

    def __getitem__(self, name: str) -> Union[bool, Number]:
        return self.to_wire()[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.to_wire())

    def __len__(self) -> int:
        return len(self.to_wire())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, OptionsSet):
            return self.to_wire() == other.to_wire()
        if isinstance(other, Mapping):
            return self.to_wire() == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"OptionsSet({self.to_wire()!r})"
