"""Per-tenant chat sessions stored in Firestore."""

import uuid
from dataclasses import dataclass, field

from sitekb.core.firestore import FirestoreClient, get_firestore_client

from .models import ContextSource

USER = "user"
ASSISTANT = "assistant"


@dataclass
class ChatSession:
    """An open session and the turns replayed to the model."""
    conversation_id: str
    session_id: str
    history: list[dict[str, str]] = field(default_factory=list)


class ConversationMemory:
    """Store and replay the turns of each tenant session."""

    def __init__(self, firestore: FirestoreClient, history_limit: int = 6):
        self.firestore = firestore
        self.history_limit = history_limit

    async def open_session(self, tenant_id: str, session_id: str | None = None) -> ChatSession:
        """
        Resume a tenant's session, or start a new one.

        Session ids are looked up within the tenant only, so two tenants
        using the same id never see each other's turns.
        """
        session_id = session_id or str(uuid.uuid4())
        conversation = await self.firestore.get_conversation_by_session(tenant_id, session_id)
        if conversation is None:
            conversation = await self.firestore.create_conversation(tenant_id, session_id)
            return ChatSession(conversation["id"], session_id)

        messages = await self.firestore.get_messages(conversation["id"], self.history_limit)
        history = [{"role": m["role"], "content": m["content"]} for m in messages]
        return ChatSession(conversation["id"], session_id, history)

    async def record_question(self, session: ChatSession, text: str) -> None:
        await self.firestore.add_message(session.conversation_id, USER, text)

    async def record_answer(
        self, session: ChatSession, text: str, sources: list[ContextSource]
    ) -> None:
        await self.firestore.add_message(
            session.conversation_id,
            ASSISTANT,
            text,
            sources=[s.model_dump() for s in sources],
        )


def get_conversation_memory() -> ConversationMemory:
    return ConversationMemory(firestore=get_firestore_client())
