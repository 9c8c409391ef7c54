"""Request payloads and response decoders for the llama-server HTTP API."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from worker import constants
from worker.errors import RequestFailed, ResponseMalformed


def effective_max_tokens(max_tokens: int | None, default: int = constants.DEFAULT_MAX_TOKENS) -> int:
    if max_tokens is None or max_tokens <= 0:
        return default
    return int(max_tokens)


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    @classmethod
    def coerce(cls, value: "ChatMessage | Mapping[str, Any]") -> "ChatMessage":
        if isinstance(value, ChatMessage):
            return value
        return cls(role=str(value["role"]), content=str(value["content"]))

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ChatRequest:
    messages: tuple[ChatMessage, ...]
    max_tokens: int = constants.DEFAULT_MAX_TOKENS
    stop: tuple[str, ...] = constants.STOP_SEQUENCES

    @classmethod
    def build(
        cls,
        messages: Iterable[ChatMessage | Mapping[str, Any]],
        max_tokens: int | None = None,
        *,
        default_max_tokens: int = constants.DEFAULT_MAX_TOKENS,
        stop: Iterable[str] = constants.STOP_SEQUENCES,
    ) -> "ChatRequest":
        return cls(
            messages=tuple(ChatMessage.coerce(message) for message in messages),
            max_tokens=effective_max_tokens(max_tokens, default_max_tokens),
            stop=tuple(stop),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "messages": [message.to_payload() for message in self.messages],
            "max_tokens": self.max_tokens,
            "stop": list(self.stop),
        }


@dataclass(frozen=True)
class CompletionRequest:
    prompt: str
    max_tokens: int = constants.DEFAULT_MAX_TOKENS
    stop: tuple[str, ...] = constants.STOP_SEQUENCES

    @classmethod
    def build(
        cls,
        prompt: str,
        max_tokens: int | None = None,
        *,
        default_max_tokens: int = constants.DEFAULT_MAX_TOKENS,
        stop: Iterable[str] = constants.STOP_SEQUENCES,
    ) -> "CompletionRequest":
        return cls(
            prompt=prompt,
            max_tokens=effective_max_tokens(max_tokens, default_max_tokens),
            stop=tuple(stop),
        )

    def to_payload(self) -> dict[str, Any]:
        # llama-server's native endpoint names the token limit n_predict.
        return {
            "prompt": self.prompt,
            "n_predict": self.max_tokens,
            "stop": list(self.stop),
        }


def decode_body(body: bytes, status_code: int = 200) -> dict[str, Any]:
    """Decode a worker reply into a JSON object.

    Anything that does not start with ``{`` is the worker's plain-text error
    output and is raised verbatim as RequestFailed.
    """
    if not body:
        raise ResponseMalformed("body", f"empty response body (status {status_code})")
    text = body.decode("utf-8", errors="replace")
    if not body.startswith(b"{"):
        raise RequestFailed(text)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ResponseMalformed("body", f"json parsing failure: {exc}") from exc
    if not isinstance(payload, dict):
        raise ResponseMalformed("body", "json parsing failure, expected an object")
    if status_code >= 400:
        raise RequestFailed(_error_message(payload, status_code))
    return payload


def _error_message(payload: Mapping[str, Any], status_code: int) -> str:
    error = payload.get("error")
    if isinstance(error, Mapping):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    elif isinstance(error, str) and error:
        return error
    return f"llama-server returned status {status_code}: {json.dumps(payload, ensure_ascii=False)}"


@dataclass(frozen=True)
class ChatResponse:
    content: str
    raw: Mapping[str, Any]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChatResponse":
        choices = payload.get("choices")
        if not isinstance(choices, list):
            raise ResponseMalformed("choices", "json parsing failure, missing choices field")
        if not choices:
            raise ResponseMalformed("choices", "json parsing failure, field choices is empty")
        choice = choices[0]
        if not isinstance(choice, Mapping):
            raise ResponseMalformed("choice", "json parsing failure, failed to get choice")
        message = choice.get("message")
        if not isinstance(message, Mapping):
            raise ResponseMalformed("message", "json parsing failure, missing message field")
        content = message.get("content")
        if not isinstance(content, str):
            raise ResponseMalformed("content", "json parsing failure, missing content field")
        return cls(content=content.strip(), raw=payload)


@dataclass(frozen=True)
class CompletionResponse:
    content: str
    raw: Mapping[str, Any]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CompletionResponse":
        content = payload.get("content")
        if not isinstance(content, str):
            raise ResponseMalformed("content", "json parsing failure, missing content field")
        return cls(content=content.strip(), raw=payload)


__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "CompletionRequest",
    "CompletionResponse",
    "decode_body",
    "effective_max_tokens",
]
