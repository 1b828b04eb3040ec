"""HTTP client for the conversation service."""

from __future__ import annotations

import json
import logging

import aiohttp

from parley.errors import ParleyHTTPError
from parley.utils import get_service_url

log = logging.getLogger("client")

# Turns can take minutes (count-based kinds wait up to 120s per reply).
DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=600)


class ParleyClient:
    """Thin JSON wrapper around the service routes."""

    def __init__(
        self,
        server_url: str | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ):
        self.server_url = (server_url or get_service_url()).rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ParleyClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=DEFAULT_TIMEOUT)
        return self

    async def __aexit__(self, *exc) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _make_url(self, path: str) -> str:
        return f"{self.server_url}{path}"

    async def request_json(self, method: str, path: str, **kwargs) -> dict:
        if self._session is None:
            raise RuntimeError("ParleyClient used outside 'async with'")
        url = self._make_url(path)
        async with self._session.request(method, url, **kwargs) as resp:
            text = await resp.text()
            data: object = None
            if text:
                try:
                    data = json.loads(text)
                except json.JSONDecodeError:
                    data = None
            if resp.status >= 400:
                detail = None
                if isinstance(data, dict):
                    detail = data.get("error")
                raise ParleyHTTPError(
                    resp.status,
                    method=method,
                    url=url,
                    detail=detail or text.strip() or resp.reason,
                )
            return data if isinstance(data, dict) else {}

    async def open_conversation(self, kind: str) -> str:
        data = await self.request_json("POST", "/conversation", json={"kind": kind})
        conversation_id = data.get("conversationId")
        if not isinstance(conversation_id, str) or not conversation_id:
            raise RuntimeError("Service did not return a conversation id")
        return conversation_id

    async def close_conversation(self, conversation_id: str) -> None:
        await self.request_json("DELETE", f"/conversation/{conversation_id}")

    async def send_message(self, conversation_id: str, message: str) -> str:
        data = await self.request_json(
            "POST",
            f"/conversation/{conversation_id}/message",
            json={"message": message},
        )
        return str(data.get("response") or "")

    async def list_conversations(self) -> list[dict]:
        data = await self.request_json("GET", "/conversation")
        items = data.get("conversations")
        return [x for x in items if isinstance(x, dict)] if isinstance(items, list) else []

    async def set_headless(self, headless: bool) -> None:
        await self.request_json("PUT", "/config", json={"headless": headless})

    async def stop_service(self) -> None:
        await self.request_json("POST", "/service/stop")
