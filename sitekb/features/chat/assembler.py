"""Packages a conversation turn and retrieved context for the model."""

import logging

from sitekb.core.errors import GenerationError
from sitekb.core.gemini import GeminiClient, get_gemini_client

from .models import ContextBlob, ConversationTurn

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant for this organization's website. "
    "Answer questions based on the provided context and mention the source page when you use it. "
    "Always respond in the same language as the user's question."
)

NO_CONTEXT_NOTE = (
    "No information from the knowledge base matched this question. "
    "If you cannot answer from general knowledge about the conversation, say so."
)


class ResponseAssembler:
    """Generate a reply for a turn and its context."""

    def __init__(self, gemini: GeminiClient):
        self.gemini = gemini

    async def generate(self, turn: ConversationTurn, context: ContextBlob) -> str:
        """
        Generate the assistant reply.

        Raises:
            GenerationError: The model failed or returned no text
        """
        system_prompt = turn.system_prompt or DEFAULT_SYSTEM_PROMPT
        if context.is_empty:
            system_prompt = f"{system_prompt}\n\n{NO_CONTEXT_NOTE}"

        try:
            reply = await self.gemini.chat(
                message=turn.message,
                system_prompt=system_prompt,
                context=None if context.is_empty else context.text,
                history=turn.history or None,
                model_id=turn.model_id,
            )
        except Exception as e:
            logger.error(f"Generation failed: {type(e).__name__}: {e}")
            raise GenerationError(str(e)) from e

        if not reply or not reply.strip():
            raise GenerationError("Model returned an empty reply")
        return reply


def get_response_assembler() -> ResponseAssembler:
    """Get response assembler instance."""
    return ResponseAssembler(gemini=get_gemini_client())
