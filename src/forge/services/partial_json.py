"""Best-effort parsing of a JSON object that is still being streamed.

:func:`complete_json` scans the text received so far once, remembers the last
prefix that can be closed into valid JSON, and returns that prefix with the
missing closers appended. Partially received string *values* are kept (so
commentary and code grow character by character); partially received keys,
dangling commas and half-written literals are cut back to the last safe
point.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

_WS = " \t\r\n"
_PARTIAL_UNICODE = re.compile(r"(\\+)u[0-9a-fA-F]{0,3}$")


class _Frame:
    __slots__ = ("kind", "expect")

    def __init__(self, kind: str) -> None:
        self.kind = kind
        # first -> key/value -> colon -> value -> comma, per container slot
        self.expect = "first"


def _closers(stack: List[_Frame]) -> str:
    return "".join("}" if f.kind == "{" else "]" for f in reversed(stack))


def _valid_scalar(token: str) -> bool:
    try:
        value = json.loads(token)
    except ValueError:
        return False
    return not isinstance(value, (str, list, dict))


def _numeric_prefix(token: str) -> Optional[str]:
    """Longest prefix of a number cut off mid-stream that is still valid JSON."""

    if not token or token[0] not in "-0123456789":
        return None
    while token and not _valid_scalar(token):
        token = token[:-1]
    return token or None


def _close_string(body: str, escape_pending: bool) -> str:
    if escape_pending:
        return body[:-1]
    match = _PARTIAL_UNICODE.search(body)
    if match and len(match.group(1)) % 2 == 1:
        return body[: match.end(1) - 1]
    return body


def complete_json(text: str) -> Optional[str]:
    start = text.find("{")
    if start < 0:
        return None
    s = text[start:]
    stack: List[_Frame] = []
    safe: Optional[str] = None
    in_string = False
    string_is_key = False
    escape = False
    scalar_start = -1

    i = 0
    n = len(s)
    while i < n:
        ch = s[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
                if string_is_key:
                    stack[-1].expect = "colon"
                else:
                    stack[-1].expect = "comma"
                    safe = s[: i + 1] + _closers(stack)
            i += 1
            continue

        if scalar_start >= 0:
            if ch not in _WS and ch not in ",}]":
                i += 1
                continue
            if not _valid_scalar(s[scalar_start:i]):
                return safe
            scalar_start = -1
            stack[-1].expect = "comma"
            safe = s[:i] + _closers(stack)

        if ch in _WS:
            i += 1
            continue

        if not stack:
            if ch != "{":
                return safe
            stack.append(_Frame("{"))
            safe = s[: i + 1] + _closers(stack)
        elif ch in "}]":
            frame = stack[-1]
            if (ch == "}") != (frame.kind == "{") or frame.expect not in ("first", "comma"):
                return safe
            stack.pop()
            if not stack:
                return s[: i + 1]
            stack[-1].expect = "comma"
            safe = s[: i + 1] + _closers(stack)
        elif ch == ",":
            stack[-1].expect = "key" if stack[-1].kind == "{" else "value"
        elif ch == ":":
            stack[-1].expect = "value"
        elif ch == '"':
            frame = stack[-1]
            in_string = True
            escape = False
            string_is_key = frame.kind == "{" and frame.expect in ("first", "key")
        elif ch in "{[":
            stack.append(_Frame(ch))
            safe = s[: i + 1] + _closers(stack)
        else:
            scalar_start = i
        i += 1

    if in_string:
        if string_is_key:
            return safe
        return _close_string(s, escape) + '"' + _closers(stack)
    if scalar_start >= 0:
        token: Optional[str] = s[scalar_start:]
        if not _valid_scalar(token):
            token = _numeric_prefix(token)
        if token is not None:
            return s[:scalar_start] + token + _closers(stack)
        return safe
    if stack and stack[-1].expect in ("first", "comma"):
        return s.rstrip() + _closers(stack)
    return safe


def parse_partial(text: str) -> Optional[Dict[str, Any]]:
    """Return the best-known object for ``text``, or None if nothing is usable yet."""

    completed = complete_json(text)
    if completed is None:
        return None
    try:
        value = json.loads(completed)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None
