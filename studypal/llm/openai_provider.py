"""
OpenAI provider implementation.
"""
import logging
from typing import Optional, Dict, Any, List
from openai import AsyncOpenAI, APIError

from studypal.core.config import OPENAI_API_KEY
from studypal.llm.provider import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI provider using the official async OpenAI SDK."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[AsyncOpenAI] = None):
        """Initialize OpenAI client."""
        self.api_key = api_key or OPENAI_API_KEY
        if client is None and not self.api_key:
            raise ValueError("OPENAI_API_KEY not configured")
        self.client = client or AsyncOpenAI(api_key=self.api_key)
        logger.info("OpenAI provider initialized")

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        """Generate a chat completion."""
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens or 500,
                **kwargs
            )
        except APIError as e:
            logger.error(f"OpenAI API error: {e}", exc_info=True)
            raise

        choice = response.choices[0]
        usage = response.usage
        return LLMResponse(
            content=choice.message.content or "",
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
            model=model,
            metadata={
                "finish_reason": choice.finish_reason,
            }
        )
