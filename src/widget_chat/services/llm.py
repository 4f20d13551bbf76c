"""Text generation collaborator backed by Google's Gemini models."""

import time
from dataclasses import dataclass, field
from typing import List, Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions

from ..domain.errors import GenerationFailed
from ..domain.models import ChatMessage, MessageRole, Widget

logger = structlog.get_logger()

FALLBACK_REPLY = "Sorry, I could not generate a response at this time."


@dataclass
class GenerationResult:
    """Reply text plus bookkeeping stored in the assistant message metadata."""

    content: str
    model: Optional[str] = None
    processing_time: Optional[float] = None
    knowledge_base_ids: List[str] = field(default_factory=list)


class GenerationService:
    """Generate assistant replies through Gemini."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = "gemini-1.5-flash",
        history_window: int = 10,
    ):
        """Initialize the service; without an API key every call fails fast."""
        self.model_name = model_name
        self.history_window = history_window
        self.model = None
        if api_key:
            genai.configure(api_key=api_key)
            self.model = genai.GenerativeModel(model_name)
        logger.info("generation_service_init", model=model_name, enabled=self.model is not None)

    @property
    def enabled(self) -> bool:
        return self.model is not None

    def _format_prompt(
        self,
        message: str,
        history: List[ChatMessage],
        widget: Optional[Widget] = None,
    ) -> str:
        """Build the prompt from widget context and recent turns."""
        lines = ["You are a helpful assistant embedded in a website chat widget."]
        if widget is not None:
            if widget.title:
                lines.append(f"Widget: {widget.title}")
            if widget.context_rule_id:
                lines.append(f"Context rule: {widget.context_rule_id}")
        for turn in history[-self.history_window:]:
            if turn.role == MessageRole.SYSTEM:
                lines.append(f"System: {turn.content}")
            elif turn.role == MessageRole.ASSISTANT:
                lines.append(f"Assistant: {turn.content}")
            else:
                lines.append(f"User: {turn.content}")
        lines.append(f"User: {message}")
        lines.append("Assistant:")
        return "\n".join(lines)

    async def generate(
        self,
        message: str,
        history: Optional[List[ChatMessage]] = None,
        widget: Optional[Widget] = None,
        session_id: Optional[str] = None,
    ) -> GenerationResult:
        """Generate a reply; raises GenerationFailed on any provider error."""
        if self.model is None:
            raise GenerationFailed("Generation provider is not configured")

        history = history or []
        prompt = self._format_prompt(message, history, widget)
        started = time.monotonic()
        try:
            response = await self.model.generate_content_async(prompt)
            text = (response.text or "").strip()
        except exceptions.ResourceExhausted as e:
            logger.warning("gemini_quota_exhausted", session_id=session_id)
            raise GenerationFailed("Generation quota exhausted") from e
        except Exception as e:
            logger.error("response_generation_error", session_id=session_id, error=str(e))
            raise GenerationFailed("Generation failed") from e

        if not text:
            raise GenerationFailed("Generation returned an empty reply")

        return GenerationResult(
            content=text,
            model=self.model_name,
            processing_time=round(time.monotonic() - started, 3),
            knowledge_base_ids=list(widget.knowledge_base_ids) if widget else [],
        )
