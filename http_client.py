"""Small async facade over a ``requests.Session`` for REST and GraphQL APIs."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any
from urllib.parse import urljoin

import requests

from errors import GraphQLError, RemoteError

REQUEST_TIMEOUT_SECONDS = 60

LOGGER = logging.getLogger(__name__)


class ApiClient:
    """HTTP client bound to one API.

    Each call runs the blocking ``requests`` request in a worker thread, so
    several calls can be awaited concurrently. Every worker thread gets its
    own ``requests.Session``; a ``session`` passed in explicitly is shared by
    all threads. Non-2xx responses raise ``requests.HTTPError`` (the retry
    guard inspects its status code).
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self.auth = auth
        self._shared_session = self._configure(session) if session is not None else None
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._lock = threading.Lock()

    def _configure(self, session: requests.Session) -> requests.Session:
        if self.headers:
            session.headers.update(self.headers)
        if self.auth:
            session.auth = self.auth
        return session

    @property
    def session(self) -> requests.Session:
        """The session for the calling thread."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._configure(requests.Session())
            self._local.session = session
            with self._lock:
                self._sessions.append(session)
        return session

    def _url(self, path: str) -> str:
        if not self.base_url or path.startswith(("http://", "https://")):
            return path
        if not path:
            return self.base_url
        return urljoin(self.base_url.rstrip("/") + "/", path.lstrip("/"))

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self._url(path)
        LOGGER.debug("%s %s", method, url)
        response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response

    async def request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self.request("GET", path, params=params)
        return _decode_json(response)

    async def get_text(self, path: str, params: dict[str, Any] | None = None) -> str:
        response = await self.request("GET", path, params=params)
        return response.text

    async def post_json(self, path: str, payload: dict[str, Any]) -> Any:
        response = await self.request("POST", path, json=payload)
        return _decode_json(response)

    async def graphql(self, query: str, variables: dict[str, Any] | None = None, path: str = "") -> dict[str, Any]:
        """POST a GraphQL query and return its ``data`` object."""
        body = await self.post_json(path, {"query": query, "variables": variables or {}})
        if not isinstance(body, dict):
            raise RemoteError("Unexpected GraphQL response shape: expected an object")

        errors = body.get("errors")
        if errors:
            messages = [
                str(error.get("message", error)) if isinstance(error, dict) else str(error)
                for error in errors
            ]
            raise GraphQLError(messages)

        data = body.get("data")
        if not isinstance(data, dict):
            raise RemoteError("GraphQL response has no data object")
        return data

    def close(self) -> None:
        if self._shared_session is not None:
            self._shared_session.close()
        with self._lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()


def _decode_json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise RemoteError(f"Expected JSON from {response.url}: {exc}") from exc
