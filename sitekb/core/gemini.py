"""Gemini API client using Vertex AI."""

import vertexai
from vertexai.generative_models import Content, GenerativeModel, Part

from sitekb.config import get_settings


class GeminiClient:
    """Wrapper for Gemini text generation using Vertex AI."""

    _instance: "GeminiClient | None" = None
    _initialized: bool = False

    def __new__(cls) -> "GeminiClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def _ensure_initialized(self) -> None:
        """Initialize Vertex AI if not already done."""
        if not self._initialized:
            settings = get_settings()
            try:
                vertexai.init(
                    project=settings.google_cloud_project or None,
                    location=settings.gemini_region,
                )
                self._initialized = True
            except Exception as e:
                raise RuntimeError(f"Vertex AI initialization failed: {e}")

    async def chat(
        self,
        message: str,
        system_prompt: str | None = None,
        context: str | None = None,
        history: list[dict[str, str]] | None = None,
        model_id: str | None = None,
    ) -> str:
        """
        Generate a chat response.

        Args:
            message: User's message
            system_prompt: System instructions for the model
            context: Retrieved knowledge base context
            history: Previous conversation messages
            model_id: Specific Gemini model to use

        Returns:
            Model's response text
        """
        self._ensure_initialized()

        system_instruction = system_prompt or "You are a helpful assistant."
        if context:
            system_instruction += f"\n\nUse the following context to answer questions:\n\n{context}"

        model = GenerativeModel(
            model_id or get_settings().gemini_model,
            system_instruction=system_instruction,
        )

        contents = []
        if history:
            for msg in history:
                role = "user" if msg["role"] == "user" else "model"
                contents.append(Content(role=role, parts=[Part.from_text(msg["content"])]))

        contents.append(Content(role="user", parts=[Part.from_text(message)]))

        response = model.generate_content(
            contents,
            generation_config={
                "temperature": 0.7,
                "max_output_tokens": 2048,
            }
        )

        return response.text


def get_gemini_client() -> GeminiClient:
    """Get Gemini client instance (dependency injection)."""
    return GeminiClient()
