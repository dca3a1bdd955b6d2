"""
Routes for the chat backend.
"""

from typing import Any

from fastapi import FastAPI, HTTPException, Query

from sealedchat.common.exceptions import ChatError
from sealedchat.common.models import (
    AppendMessageResponse,
    Conversation,
    ConversationRecord,
    CreateConversationResponse,
    DirectoryEntry,
    MessageRecord,
    PublicKeyRecord,
    RegisterUserRequest,
    StoredMessage,
    TouchRequest,
)

from .services import ChatBackendService


def to_http_error(err: ChatError) -> HTTPException:
    """Carry the error class name so clients can re-raise the same type."""
    return HTTPException(
        err.status_code, {"error": type(err).__name__, "message": str(err)}
    )


class ChatRoutes:
    """Handles FastAPI routes for the chat backend."""

    def __init__(self, service: ChatBackendService):
        self.service = service

    def setup_routes(self, app: FastAPI) -> None:
        """Setup API routes on the FastAPI app."""

        app.get("/health")(self.health)
        app.post("/users")(self.register_user)
        app.get("/users")(self.list_users)
        app.get("/users/{user_id}")(self.get_user)
        app.put("/users/{user_id}/public-key")(self.set_public_key)
        app.post("/conversations")(self.create_conversation)
        app.get("/conversations")(self.list_conversations)
        app.get("/conversations/{conversation_id}")(self.get_conversation)
        app.post("/conversations/{conversation_id}/touch")(self.touch_conversation)
        app.post("/conversations/{conversation_id}/messages")(self.append_message)
        app.get("/conversations/{conversation_id}/messages")(self.list_messages)

    async def health(self) -> dict[str, Any]:
        """Handle /health endpoint."""
        return self.service.health()

    async def register_user(self, req: RegisterUserRequest) -> dict[str, bool]:
        await self.service.register_user(req.user_id, req.display_name)
        return {"ok": True}

    async def list_users(self) -> list[DirectoryEntry]:
        return await self.service.list_users()

    async def get_user(self, user_id: str) -> DirectoryEntry:
        try:
            return await self.service.get_user(user_id)
        except ChatError as e:
            raise to_http_error(e)

    async def set_public_key(self, user_id: str, req: PublicKeyRecord) -> dict[str, bool]:
        try:
            await self.service.set_public_key(user_id, req)
        except ChatError as e:
            raise to_http_error(e)
        return {"ok": True}

    async def create_conversation(
        self, req: ConversationRecord
    ) -> CreateConversationResponse:
        try:
            conversation_id = await self.service.create_conversation(req)
        except ChatError as e:
            raise to_http_error(e)
        return CreateConversationResponse(id=conversation_id)

    async def list_conversations(
        self, participant: str = Query(min_length=1)
    ) -> list[Conversation]:
        return await self.service.list_conversations(participant)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        try:
            return await self.service.get_conversation(conversation_id)
        except ChatError as e:
            raise to_http_error(e)

    async def touch_conversation(
        self, conversation_id: str, req: TouchRequest
    ) -> dict[str, bool]:
        try:
            await self.service.touch_conversation(conversation_id, req.when)
        except ChatError as e:
            raise to_http_error(e)
        return {"ok": True}

    async def append_message(
        self, conversation_id: str, req: MessageRecord
    ) -> AppendMessageResponse:
        try:
            message_id = await self.service.append_message(conversation_id, req)
        except ChatError as e:
            raise to_http_error(e)
        return AppendMessageResponse(id=message_id)

    async def list_messages(
        self, conversation_id: str, limit: int | None = Query(default=None, gt=0)
    ) -> list[StoredMessage]:
        try:
            return await self.service.list_messages(conversation_id, limit)
        except ChatError as e:
            raise to_http_error(e)
