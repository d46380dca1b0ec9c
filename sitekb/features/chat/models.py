"""Pydantic models for chat feature."""

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Chat request model."""

    message: str = Field(..., min_length=1, max_length=4000)
    session_id: str | None = None
    system_prompt: str | None = None
    model_id: str | None = None


class ContextSource(BaseModel):
    """A page or document that contributed to the context."""

    kind: str  # "page", "document" or "resource"
    title: str | None = None
    url: str | None = None
    document_id: str | None = None
    score: int


class ContextBlob(BaseModel):
    """Text assembled from the knowledge base for one query."""

    text: str = ""
    sources: list[ContextSource] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text


class ConversationTurn(BaseModel):
    """A user message with the conversation so far."""

    message: str
    history: list[dict[str, str]] = Field(default_factory=list)
    system_prompt: str | None = None
    model_id: str | None = None


class ChatResponse(BaseModel):
    """Chat response model."""

    message: str
    sources: list[ContextSource]
    session_id: str

