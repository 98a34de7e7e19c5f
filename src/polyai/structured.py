"""Schema-guided structured output.

`generate_structured` turns a record type (a pydantic model or a dataclass)
into a JSON schema, asks the provider to answer with JSON matching it, then
digs the JSON out of whatever the model actually returned and validates it
into the record type.
"""

from __future__ import annotations

import dataclasses
import enum
import json
import re
import types
import typing
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from .errors import EmptyResultError, NoJSONFoundError, SchemaGenerationError, StructuredParseError
from .provider import Provider
from .types import ChatMessage, ChatRequest

T = TypeVar("T")

_JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(.+?)```", re.DOTALL)

_ARRAY_ORIGINS = (list, tuple, set, frozenset)

SYSTEM_PROMPT_TEMPLATE = """You are not a chatbot. You are a JSON data generation engine.
Your response must strictly adhere to this schema:
{schema}
Do not wrap the output in a Markdown code block.
Do not add comment lines.
Do not write an introductory or concluding sentence.
Return only raw JSON data."""


def _is_record(tp: Any) -> bool:
    return isinstance(tp, type) and (issubclass(tp, BaseModel) or dataclasses.is_dataclass(tp))


def _record_fields(tp: type) -> list[tuple[str, Any, str]]:
    if issubclass(tp, BaseModel):
        out = []
        for field_name, info in tp.model_fields.items():
            if info.exclude:
                continue
            out.append((info.alias or field_name, info.annotation, info.description or ""))
        return out

    hints = typing.get_type_hints(tp)
    return [
        (f.name, hints.get(f.name, f.type), str(f.metadata.get("description", "")))
        for f in dataclasses.fields(tp)
        if f.init
    ]


def _unwrap(annotation: Any) -> Any:
    """Strips Optional[...] / X | None and Annotated[...] down to the underlying type."""
    while True:
        origin = typing.get_origin(annotation)
        if origin is typing.Annotated:
            annotation = typing.get_args(annotation)[0]
            continue
        if origin is typing.Union or origin is types.UnionType:
            args = [a for a in typing.get_args(annotation) if a is not type(None)]
            if not args:
                return str
            annotation = args[0]
            continue
        return annotation


def _scalar_type(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    return "string"


def _describe(annotation: Any, seen: tuple[type, ...]) -> dict[str, Any]:
    annotation = _unwrap(annotation)
    origin = typing.get_origin(annotation)

    if annotation is str:
        return {"type": "string"}
    if annotation is bool:
        return {"type": "boolean"}
    if annotation is int:
        return {"type": "integer"}
    if annotation is float:
        return {"type": "number"}

    if origin is typing.Literal:
        values = list(typing.get_args(annotation))
        return {"type": _scalar_type(values[0]) if values else "string", "enum": values}
    if isinstance(annotation, type) and issubclass(annotation, enum.Enum):
        values = [member.value for member in annotation]
        return {"type": _scalar_type(values[0]) if values else "string", "enum": values}

    if annotation in _ARRAY_ORIGINS or origin in _ARRAY_ORIGINS:
        args = [a for a in typing.get_args(annotation) if a is not Ellipsis]
        items = _describe(args[0], seen) if args else {"type": "string"}
        return {"type": "array", "items": items}

    if annotation is dict or origin is dict or (isinstance(origin, type) and issubclass(origin, Mapping)):
        return {"type": "object"}

    if _is_record(annotation):
        if annotation in seen:
            return {"type": "object"}
        return {"type": "object", "properties": _properties(annotation, (*seen, annotation))}

    return {"type": "string"}


def _properties(tp: type, seen: tuple[type, ...]) -> dict[str, Any]:
    props: dict[str, Any] = {}
    for name, annotation, description in _record_fields(tp):
        prop = _describe(annotation, seen)
        if description:
            prop = {"description": description, **prop}
        props[name] = prop
    return props


def schema_for(target: type) -> dict[str, Any]:
    if not _is_record(target):
        raise SchemaGenerationError(
            f"invalid target {target!r}: a pydantic model class or dataclass type is required"
        )
    try:
        return {"type": "object", "properties": _properties(target, (target,))}
    except (NameError, TypeError) as e:
        raise SchemaGenerationError(f"failed to inspect fields of {target.__name__}: {e}") from e


def render_schema(target: type) -> str:
    return json.dumps(schema_for(target), indent=2)


def sanitize_json(raw: str) -> str:
    """Returns the JSON region of a model response: a fenced block if present, else first '{' to last '}'."""
    match = _JSON_BLOCK_RE.search(raw)
    if match:
        return match.group(1).strip()
    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end == -1 or start > end:
        raise NoJSONFoundError(f"no JSON object found in response. Raw output: {raw}", raw=raw)
    return raw[start : end + 1]


def parse_structured(raw: str, target: type[T]) -> T:
    cleaned = sanitize_json(raw)
    if not cleaned or cleaned == "{}":
        raise EmptyResultError(f"model produced empty or void JSON. Raw output: {raw}", raw=raw, extracted=cleaned)
    try:
        if issubclass(target, BaseModel):
            return target.model_validate_json(cleaned)
        return TypeAdapter(target).validate_json(cleaned)
    except ValidationError as e:
        raise StructuredParseError(
            f"model produced malformed JSON: {e}. Cleaned output: {cleaned}", raw=raw, extracted=cleaned
        ) from e


def structured_request(request: ChatRequest, target: type) -> ChatRequest:
    system = ChatMessage.from_text("system", SYSTEM_PROMPT_TEMPLATE.format(schema=render_schema(target)))
    return request.with_leading_message(system).model_copy(update={"json_mode": True})


async def generate_structured(provider: Provider, request: ChatRequest, target: type[T]) -> T:
    """Asks `provider` for a JSON answer shaped like `target` and returns it parsed.

    Raises:
        SchemaGenerationError: `target` is not a record type
        NoJSONFoundError: the response contains no JSON object
        EmptyResultError: the JSON found is empty or `{}`
        StructuredParseError: the JSON does not validate against `target`
    """
    response = await provider.generate(structured_request(request, target))
    return parse_structured(response.content, target)


__all__ = [
    "SYSTEM_PROMPT_TEMPLATE",
    "generate_structured",
    "parse_structured",
    "render_schema",
    "sanitize_json",
    "schema_for",
    "structured_request",
]
