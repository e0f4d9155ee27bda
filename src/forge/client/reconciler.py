"""Folding streamed fragment snapshots into conversation state.

Snapshots are cumulative: each one is the whole best-known fragment, so the
newest simply replaces what is tracked. The only exception is a field that a
snapshot leaves out (or sends as null): the last known value is kept, so the
fragment only ever grows.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..domain.models import CodePart, ContentPart, Fragment, Message, SandboxResult, TextPart

_RATE_LIMIT_HINT = re.compile(r"429|rate.?limit|too many", re.IGNORECASE)
_LIMIT_WORD = re.compile(r"limit", re.IGNORECASE)


@dataclass
class Conversation:
    messages: List[Message] = field(default_factory=list)
    fragment: Optional[Dict[str, Any]] = None
    result: Optional[SandboxResult] = None

    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def add_message(self, message: Message) -> List[Message]:
        self.messages.append(message)
        return list(self.messages)

    def update_last(self, **changes: Any) -> None:
        self.messages[-1] = self.messages[-1].model_copy(update=changes)


def merge_snapshot(previous: Any, snapshot: Any) -> Any:
    if snapshot is None:
        return previous
    if isinstance(previous, dict) and isinstance(snapshot, dict):
        merged = dict(previous)
        for key, value in snapshot.items():
            merged[key] = merge_snapshot(previous.get(key), value)
        return merged
    if isinstance(previous, list) and isinstance(snapshot, list):
        merged_list = [merge_snapshot(p, s) for p, s in zip(previous, snapshot)]
        if len(snapshot) > len(previous):
            merged_list.extend(snapshot[len(previous):])
        else:
            merged_list.extend(previous[len(snapshot):])
        return merged_list
    return snapshot


def serialize_code(code: Any) -> str:
    if isinstance(code, str):
        return code
    if isinstance(code, list):
        parts = []
        for f in code:
            if not isinstance(f, dict):
                continue
            path = f.get("file_path") or ""
            body = f.get("file_content") or ""
            parts.append(f"// {path}\n{body}" if path else body)
        return "\n\n".join(parts)
    return ""


def assistant_content(snapshot: Dict[str, Any]) -> List[ContentPart]:
    return [
        TextPart(text=snapshot.get("commentary") or ""),
        CodePart(text=serialize_code(snapshot.get("code"))),
    ]


class PartialObjectReconciler:
    def __init__(self, conversation: Conversation) -> None:
        self.conversation = conversation
        self._state: Dict[str, Any] = {}

    @property
    def state(self) -> Dict[str, Any]:
        return self._state

    def apply(self, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        merged = merge_snapshot(self._state, snapshot)
        self._state = merged
        self.conversation.fragment = merged

        content = assistant_content(merged)
        last = self.conversation.last_message()
        if last is None or last.role != "assistant":
            self.conversation.add_message(Message(role="assistant", content=content, object=merged))
        else:
            self.conversation.update_last(content=content, object=merged)
        return merged

    def freeze(self) -> Fragment:
        return Fragment.model_validate(self._state)


@dataclass(frozen=True)
class ClientError:
    code: Optional[str]
    message: str
    rate_limited: bool


def describe_error(raw: Optional[str]) -> ClientError:
    """Turn transport error text into something the UI can show.

    The structured ``{"error", "message"}`` body is tried first. Transports
    that collapse errors into plain strings still get rate limits recognised
    by pattern.
    """

    raw = raw or "Something went wrong. Please try again."
    message = raw
    code: Optional[str] = None
    if raw.strip().startswith("{"):
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            if isinstance(parsed.get("message"), str):
                message = parsed["message"]
            if isinstance(parsed.get("error"), str):
                code = parsed["error"]

    if not code and _RATE_LIMIT_HINT.search(raw):
        code = "rate_limited"

    rate_limited = code == "rate_limited" or bool(_LIMIT_WORD.search(message))
    return ClientError(code=code, message=message, rate_limited=rate_limited)
