from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple

import requests

from ..domain.models import Fragment, SandboxResult

logger = logging.getLogger("forge.client")


class TransportError(Exception):
    """Failure as seen by the consumer: often just the raw response text."""


class GenerationTransport(Protocol):
    def open(self, payload: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        """Yield cumulative fragment snapshots; raise TransportError on failure."""
        ...


class SandboxClient(Protocol):
    def create(
        self,
        fragment: Fragment,
        *,
        user_id: Optional[str] = None,
        team_id: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> SandboxResult: ...


class HttpGenerationTransport:
    """Reads the gateway's NDJSON snapshot stream."""

    def __init__(self, url: str, session: Optional[requests.Session] = None, timeout: Tuple[int, int] = (5, 300)) -> None:
        self.url = url
        self._session = session or requests.Session()
        self._timeout = timeout

    def open(self, payload: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        try:
            resp = self._session.post(self.url, json=payload, stream=True, timeout=self._timeout)
        except requests.exceptions.RequestException as exc:
            raise TransportError(str(exc)) from exc
        with resp:
            if resp.status_code >= 400:
                raise TransportError(resp.text or f"HTTP {resp.status_code} {resp.reason}")
            try:
                for raw_line in resp.iter_lines():
                    if not raw_line:
                        continue
                    line = raw_line.decode("utf-8") if isinstance(raw_line, bytes) else raw_line
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug("skipping_malformed_line", extra={"line": line[:200]})
                        continue
                    if isinstance(data, dict) and "error" in data:
                        raise TransportError(line)
                    if isinstance(data, dict):
                        yield data
            except requests.exceptions.RequestException as exc:
                raise TransportError(str(exc)) from exc


class HttpSandboxClient:
    """Calls the sandbox materialization endpoint (one non-streaming POST)."""

    def __init__(self, url: str, session: Optional[requests.Session] = None, timeout: Tuple[int, int] = (5, 120)) -> None:
        self.url = url
        self._session = session or requests.Session()
        self._timeout = timeout

    def create(
        self,
        fragment: Fragment,
        *,
        user_id: Optional[str] = None,
        team_id: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> SandboxResult:
        body: Dict[str, Any] = {"fragment": fragment.model_dump(exclude_none=True)}
        if user_id:
            body["userID"] = user_id
        if team_id:
            body["teamID"] = team_id
        if access_token:
            body["accessToken"] = access_token
        resp = self._session.post(self.url, json=body, timeout=self._timeout)
        resp.raise_for_status()
        return SandboxResult.model_validate(resp.json())
