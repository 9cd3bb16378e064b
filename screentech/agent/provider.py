"""Streaming completion provider built on LangChain chat models."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, List, Optional, Tuple

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_groq import ChatGroq

from screentech.app.config import Settings

logger = logging.getLogger(__name__)

PLACEHOLDER_API_KEY = "dummy-key-for-build"
DEFAULT_IMAGE_MIME = "image/jpeg"


@dataclass
class ProviderSession:
    """Context of one provider chat: the system prompt plus the replayed history."""

    system_prompt: str
    history: List[BaseMessage] = field(default_factory=list)


def decode_image(image: str) -> Tuple[str, str]:
    """Split a data URI into ``(mime_type, base64_payload)``; bare base64 is assumed JPEG."""
    if image.startswith("data:"):
        header, _, payload = image.partition(",")
        mime_type = header[len("data:"):].split(";")[0] or DEFAULT_IMAGE_MIME
        return mime_type, payload
    return DEFAULT_IMAGE_MIME, image


def _chunk_text(chunk: Any) -> str:
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


class ChatProvider:
    def __init__(self, model: BaseChatModel) -> None:
        self.model = model

    def start_session(self, system_prompt: str, history: List[BaseMessage]) -> ProviderSession:
        return ProviderSession(system_prompt=system_prompt, history=list(history))

    def build_user_message(self, text: str, image: Optional[str] = None) -> HumanMessage:
        if not image:
            return HumanMessage(content=text)
        mime_type, payload = decode_image(image)
        return HumanMessage(
            content=[
                {"type": "text", "text": text},
                {"type": "image", "source_type": "base64", "data": payload, "mime_type": mime_type},
            ]
        )

    async def stream_reply(
        self, session: ProviderSession, text: str, image: Optional[str] = None
    ) -> AsyncIterator[str]:
        """Yield reply text deltas in generation order.

        The turn is recorded in the session history only when the stream
        completes, so a failed turn is never replayed to the model.
        """
        user_message = self.build_user_message(text, image)
        messages = [SystemMessage(content=session.system_prompt), *session.history, user_message]
        parts: List[str] = []
        async for chunk in self.model.astream(messages):
            delta = _chunk_text(chunk)
            if delta:
                parts.append(delta)
                yield delta
        session.history.extend([user_message, AIMessage(content="".join(parts))])


class LocalEchoModel:
    """Offline stand-in that streams the operator's words back."""

    async def astream(self, messages):
        content = ""
        if messages:
            content = _chunk_text(messages[-1])
        for word in f"[mock-response] {content}".split(" "):
            yield AIMessageChunk(content=word + " ")


def build_chat_model(settings: Settings) -> Any:
    if settings.llm_provider == "echo":
        logger.warning("LLM provider set to echo; replies are mocked")
        return LocalEchoModel()

    if settings.llm_provider == "groq":
        api_key = settings.groq_api_key
        if not api_key:
            logger.error("GROQ_API_KEY is not set; every reply will fail until it is configured")
        logger.info("Using Groq model %s", settings.groq_model)
        return ChatGroq(
            groq_api_key=api_key or PLACEHOLDER_API_KEY,
            model_name=settings.groq_model,
            temperature=settings.temperature,
        )

    api_key = settings.gemini_api_key
    if not api_key:
        logger.error("GEMINI_API_KEY is not set; every reply will fail until it is configured")
    logger.info("Using Google Gemini model %s", settings.gemini_model)
    return ChatGoogleGenerativeAI(
        google_api_key=api_key or PLACEHOLDER_API_KEY,
        model=settings.gemini_model,
        temperature=settings.temperature,
    )


def build_provider(settings: Settings) -> ChatProvider:
    return ChatProvider(build_chat_model(settings))
