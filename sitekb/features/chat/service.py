"""Chat service: retrieval plus generation over a tenant's knowledge base."""

import logging

from .assembler import ResponseAssembler, get_response_assembler
from .memory import ConversationMemory, get_conversation_memory
from .models import ChatResponse, ConversationTurn
from .retrieval import RetrievalEngine, get_retrieval_engine

logger = logging.getLogger(__name__)


class ChatService:
    """Service for knowledge-base chat."""

    def __init__(
        self,
        retrieval: RetrievalEngine,
        assembler: ResponseAssembler,
        memory: ConversationMemory,
    ):
        self.retrieval = retrieval
        self.assembler = assembler
        self.memory = memory

    async def chat(
        self,
        tenant_id: str,
        message: str,
        session_id: str | None = None,
        system_prompt: str | None = None,
        model_id: str | None = None,
    ) -> ChatResponse:
        """
        Answer a message using the tenant's knowledge base.

        The user message is stored before generation, so it survives a
        generation failure.

        Args:
            tenant_id: Tenant whose knowledge base is searched
            message: User's message
            session_id: Session ID for conversation continuity
            system_prompt: Custom system prompt
            model_id: Gemini model to use

        Returns:
            Chat response with sources

        Raises:
            GenerationError: The reply could not be generated
        """
        session = await self.memory.open_session(tenant_id, session_id)
        await self.memory.record_question(session, message)

        context = await self.retrieval.retrieve_context(tenant_id, message)
        logger.info(
            f"[{session.conversation_id}] Retrieved {len(context.sources)} sources "
            f"({len(context.text)} chars)"
        )

        turn = ConversationTurn(
            message=message,
            history=session.history,
            system_prompt=system_prompt,
            model_id=model_id,
        )
        reply = await self.assembler.generate(turn, context)
        await self.memory.record_answer(session, reply, context.sources)

        return ChatResponse(
            message=reply,
            sources=context.sources,
            session_id=session.session_id,
        )


def get_chat_service() -> ChatService:
    """Get chat service instance."""
    return ChatService(
        retrieval=get_retrieval_engine(),
        assembler=get_response_assembler(),
        memory=get_conversation_memory(),
    )
