"""
AI dispatch for the StudyPal tutor.

Sends a transcript to the configured LLM provider with the tutor system
prompt and turns provider failures into user-presentable errors.
"""
import logging
import random
from functools import lru_cache
from typing import List, Dict, Any, Optional

import openai

from studypal.core.config import (
    OPENAI_API_KEY,
    OPENAI_MODEL,
    OPENAI_MAX_TOKENS,
    OPENAI_TEMPERATURE,
)
from studypal.llm.provider import LLMProvider
from studypal.schemas.chat import ChatMessage

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are StudyPal AI, a helpful study assistant. You help students with:
- Answering academic questions
- Explaining concepts clearly
- Providing study tips and strategies
- Helping with homework and assignments
- Breaking down complex topics into understandable parts

Be friendly, encouraging, and educational in your responses. Keep answers concise but thorough.
When a photo of homework is attached, read it carefully and explain the steps rather than only giving the final answer."""

DEMO_RESPONSES = [
    "I'm StudyPal AI! I'd love to help you study, but I'm currently in demo mode.",
    "Hello! I'm your study companion. To enable full AI responses, please configure the OpenAI integration.",
    "Hi there! I'm StudyPal AI. While I'm in demo mode, I can still offer a study tip: break down complex topics into smaller parts!",
]

DEMO_TIP = "\n\nStudy Tip: Always review your notes within 24 hours to improve retention!"


class AIServiceError(Exception):
    """AI call failed; ``user_message`` is safe to show in the chat."""

    def __init__(self, user_message: str):
        super().__init__(user_message)
        self.user_message = user_message


@lru_cache(maxsize=1)
def get_provider() -> Optional[LLMProvider]:
    """Get the shared provider, or None when no API key is configured (demo mode)."""
    if not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not configured - AI responses run in demo mode")
        return None

    from studypal.llm.openai_provider import OpenAIProvider
    return OpenAIProvider(api_key=OPENAI_API_KEY)


def to_provider_messages(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    """
    Build the provider payload: system prompt first, local notices dropped,
    image attachments sent as multi-part content.
    """
    payload: List[Dict[str, Any]] = [{"role": "system", "content": SYSTEM_PROMPT}]

    for message in messages:
        if message.local_only:
            continue

        if message.image is not None:
            parts: List[Dict[str, Any]] = []
            if message.content:
                parts.append({"type": "text", "text": message.content})
            else:
                parts.append({"type": "text", "text": "Please help me with the homework in this photo."})
            parts.append({"type": "image_url", "image_url": {"url": message.image.data_url}})
            payload.append({"role": message.role, "content": parts})
        else:
            payload.append({"role": message.role, "content": message.content})

    return payload


def _describe_failure(error: Exception) -> str:
    if isinstance(error, openai.AuthenticationError):
        return "The AI service is misconfigured (invalid API key). Please contact support."
    if isinstance(error, openai.RateLimitError):
        if getattr(error, "code", None) == "insufficient_quota":
            return "The AI service has run out of quota. Please try again later."
        return "The AI service is busy right now. Please try again in a moment."
    if isinstance(error, (openai.APIConnectionError, openai.APITimeoutError)):
        return "Unable to connect to the AI service. Please check your connection and try again."
    return "Failed to get a response from the AI. Please try again."


async def send_message(messages: List[ChatMessage], provider: Optional[LLMProvider] = None) -> str:
    """
    Send the transcript to the AI and return the assistant reply.

    Args:
        messages: Transcript, oldest first
        provider: Provider override (defaults to the configured OpenAI provider)

    Returns:
        Assistant reply text

    Raises:
        AIServiceError: If the provider fails or returns an empty reply
    """
    provider = provider or get_provider()
    if provider is None:
        return random.choice(DEMO_RESPONSES) + DEMO_TIP

    payload = to_provider_messages(messages)
    logger.info(f"Dispatching AI request: messages={len(payload)}")

    try:
        response = await provider.chat(
            payload,
            model=OPENAI_MODEL,
            temperature=OPENAI_TEMPERATURE,
            max_tokens=OPENAI_MAX_TOKENS,
        )
    except openai.OpenAIError as e:
        logger.error(f"AI request failed: {e}")
        raise AIServiceError(_describe_failure(e)) from e

    if not response.content.strip():
        logger.error("AI returned an empty response")
        raise AIServiceError("No response from the AI. Please try again.")

    logger.info(
        f"AI response received: chars={len(response.content)}, "
        f"tokens_in={response.tokens_in}, tokens_out={response.tokens_out}"
    )
    return response.content
