"""Infrastructure layer: directory and stores backed by the HTTP server.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import quote
from collections.abc import Awaitable, Callable, Hashable
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import requests
from pydantic import TypeAdapter

from sealedchat.common.exceptions import (
    ERRORS_BY_NAME,
    ChatError,
    ConversationNotFound,
    RecordNotFound,
    StorageUnavailable,
)
from sealedchat.common.models import (
    AppendMessageResponse,
    Conversation,
    CreateConversationResponse,
    DirectoryEntry,
    StoredMessage,
)

if TYPE_CHECKING:
    from datetime import datetime

    from sealedchat.common.interfaces import (
        ConversationListHandler,
        MessageBatchHandler,
        Unsubscribe,
    )
    from sealedchat.common.models import (
        ConversationRecord,
        MessageRecord,
        PublicKeyRecord,
    )

logger = logging.getLogger(__name__)

HTTP_ERROR = 400

T = TypeVar("T")

_entries = TypeAdapter(list[DirectoryEntry])
_conversations = TypeAdapter(list[Conversation])
_messages = TypeAdapter(list[StoredMessage])


def _segment(value: str) -> str:
    """Escape an id for use as a single URL path segment."""
    return quote(value, safe="")


class HttpTransport:
    """Blocking JSON calls to the backend, run off the event loop."""

    def __init__(
        self,
        server_url: str,
        timeout: float = 10,
        session: Any | None = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request_sync(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            r = self.session.request(
                method,
                f"{self.server_url}{path}",
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as err:
            msg = f"Backend unreachable: {err}"
            raise StorageUnavailable(msg) from err

        if r.status_code >= HTTP_ERROR:
            raise self._error_from_response(r)
        try:
            return r.json()
        except ValueError as err:
            msg = f"Backend returned a non-JSON response for {path}"
            raise StorageUnavailable(msg) from err

    @staticmethod
    def _error_from_response(r: Any) -> ChatError:
        try:
            body = r.json()
        except ValueError:
            body = None
        detail = body.get("detail") if isinstance(body, dict) else None
        if isinstance(detail, dict) and detail.get("error") in ERRORS_BY_NAME:
            return ERRORS_BY_NAME[detail["error"]](detail.get("message", ""))
        if r.status_code >= 500:  # noqa: PLR2004
            return StorageUnavailable(f"Backend error {r.status_code}")
        return ChatError(f"Backend rejected request: {r.status_code} {detail}", r.status_code)

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await asyncio.to_thread(self._request_sync, method, path, json, params)


class _Poller(Generic[T]):
    """Re-fetches a snapshot periodically and reports it when it changes."""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[list[T]]],
        deliver: Callable[[list[T]], Awaitable[None]],
        fingerprint: Callable[[list[T]], Hashable],
        interval: float,
    ):
        self.fetch = fetch
        self.deliver = deliver
        self.fingerprint = fingerprint
        self.interval = interval
        self._last: Hashable = None
        self._task: asyncio.Task | None = None

    async def start(self) -> Unsubscribe:
        snapshot = await self.fetch()
        self._last = self.fingerprint(snapshot)
        await self.deliver(snapshot)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self.stop

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                snapshot = await self.fetch()
            except ChatError as err:
                logger.warning("Polling failed: %s", err)
                continue
            except Exception:
                logger.exception("Polling failed")
                continue
            current = self.fingerprint(snapshot)
            if current != self._last:
                self._last = current
                try:
                    await self.deliver(snapshot)
                except Exception:
                    logger.exception("Subscriber callback failed")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None


class HttpDirectory:
    def __init__(self, transport: HttpTransport):
        self.transport = transport

    async def register(self, user_id: str, display_name: str | None) -> None:
        await self.transport.request(
            "POST", "/users", json={"user_id": user_id, "display_name": display_name}
        )

    async def get(self, user_id: str) -> DirectoryEntry | None:
        try:
            data = await self.transport.request("GET", f"/users/{_segment(user_id)}")
        except RecordNotFound:
            return None
        return DirectoryEntry.model_validate(data)

    async def set_public_key(self, user_id: str, record: PublicKeyRecord) -> None:
        await self.transport.request(
            "PUT",
            f"/users/{_segment(user_id)}/public-key",
            json=record.model_dump(mode="json"),
        )

    async def list_entries(self) -> list[DirectoryEntry]:
        return _entries.validate_python(await self.transport.request("GET", "/users"))


class HttpConversationStore:
    def __init__(self, transport: HttpTransport, poll_interval: float = 1.0):
        self.transport = transport
        self.poll_interval = poll_interval

    async def create(self, record: ConversationRecord) -> str:
        data = await self.transport.request(
            "POST", "/conversations", json=record.model_dump(mode="json")
        )
        return CreateConversationResponse.model_validate(data).id

    async def get(self, conversation_id: str) -> Conversation | None:
        try:
            data = await self.transport.request(
                "GET", f"/conversations/{_segment(conversation_id)}"
            )
        except ConversationNotFound:
            return None
        return Conversation.model_validate(data)

    async def list_for_participant(self, user_id: str) -> list[Conversation]:
        data = await self.transport.request(
            "GET", "/conversations", params={"participant": user_id}
        )
        return _conversations.validate_python(data)

    async def touch(self, conversation_id: str, when: datetime) -> None:
        await self.transport.request(
            "POST",
            f"/conversations/{_segment(conversation_id)}/touch",
            json={"when": when.isoformat()},
        )

    async def subscribe_for_participant(
        self, user_id: str, on_change: ConversationListHandler
    ) -> Unsubscribe:
        poller = _Poller(
            fetch=lambda: self.list_for_participant(user_id),
            deliver=on_change,
            fingerprint=lambda cs: tuple((c.id, c.last_message_at) for c in cs),
            interval=self.poll_interval,
        )
        return await poller.start()


class HttpMessageStore:
    def __init__(self, transport: HttpTransport, poll_interval: float = 1.0):
        self.transport = transport
        self.poll_interval = poll_interval

    async def append(self, conversation_id: str, record: MessageRecord) -> str:
        data = await self.transport.request(
            "POST",
            f"/conversations/{_segment(conversation_id)}/messages",
            json=record.model_dump(mode="json"),
        )
        return AppendMessageResponse.model_validate(data).id

    async def list_messages(
        self, conversation_id: str, limit: int
    ) -> list[StoredMessage]:
        data = await self.transport.request(
            "GET",
            f"/conversations/{_segment(conversation_id)}/messages",
            params={"limit": limit},
        )
        return _messages.validate_python(data)

    async def subscribe(
        self, conversation_id: str, on_batch: MessageBatchHandler, limit: int
    ) -> Unsubscribe:
        poller = _Poller(
            fetch=lambda: self.list_messages(conversation_id, limit),
            deliver=on_batch,
            fingerprint=lambda ms: tuple(m.id for m in ms),
            interval=self.poll_interval,
        )
        return await poller.start()
