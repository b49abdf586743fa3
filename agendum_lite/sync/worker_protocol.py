"""Message protocol between the parser client and its worker thread.

Wire messages are plain dicts with these exact shapes::

    requests:  {"kind": "init"}
               {"kind": "parse", "id": 1, "content": "..."}
    responses: {"kind": "init", "ok": True}
               {"kind": "init", "ok": False, "error": "..."}
               {"kind": "parse", "id": 1, "ok": True, "result": {...}}
               {"kind": "parse", "id": 1, "ok": False, "error": "..."}

Both ends decode into the closed unions below and handle every variant.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter

from ..lite_models import ParseResult


class _Message(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class InitRequest(_Message):
    kind: Literal["init"] = "init"


class ParseRequest(_Message):
    kind: Literal["parse"] = "parse"
    id: int
    content: str


class InitOk(_Message):
    kind: Literal["init"] = "init"
    ok: Literal[True] = True


class InitFailed(_Message):
    kind: Literal["init"] = "init"
    ok: Literal[False] = False
    error: str


class ParseOk(_Message):
    kind: Literal["parse"] = "parse"
    id: int
    ok: Literal[True] = True
    result: ParseResult


class ParseFailed(_Message):
    kind: Literal["parse"] = "parse"
    id: int
    ok: Literal[False] = False
    error: str


WorkerRequest = Annotated[Union[InitRequest, ParseRequest], Field(discriminator="kind")]


def _response_tag(value: Any) -> str:
    if isinstance(value, dict):
        kind, ok = value.get("kind"), value.get("ok")
    else:
        kind, ok = getattr(value, "kind", None), getattr(value, "ok", None)
    return f"{kind}:{'ok' if ok is True else 'failed'}"


WorkerResponse = Annotated[
    Union[
        Annotated[InitOk, Tag("init:ok")],
        Annotated[InitFailed, Tag("init:failed")],
        Annotated[ParseOk, Tag("parse:ok")],
        Annotated[ParseFailed, Tag("parse:failed")],
    ],
    Discriminator(_response_tag),
]

_request_adapter: TypeAdapter = TypeAdapter(WorkerRequest)
_response_adapter: TypeAdapter = TypeAdapter(WorkerResponse)


def decode_request(message: dict[str, Any]) -> Union[InitRequest, ParseRequest]:
    """Validate a wire dict into a request variant.

    Raises:
        pydantic.ValidationError: If the dict matches no variant
    """
    return _request_adapter.validate_python(message)


def decode_response(
    message: dict[str, Any],
) -> Union[InitOk, InitFailed, ParseOk, ParseFailed]:
    """Validate a wire dict into a response variant.

    Raises:
        pydantic.ValidationError: If the dict matches no variant
    """
    return _response_adapter.validate_python(message)


def encode_message(message: _Message) -> dict[str, Any]:
    """Serialize any protocol message to its wire dict."""
    return message.model_dump()
