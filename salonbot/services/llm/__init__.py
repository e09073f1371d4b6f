from typing import Optional

from salonbot.config import settings
from salonbot.services.llm.base import LLMError, LLMProvider, LLMResponse
from salonbot.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider", "get_llm_provider"]

_llm_provider: Optional[LLMProvider] = None


def get_llm_provider() -> Optional[LLMProvider]:
    """Shared provider, or None when no API key is configured."""
    global _llm_provider
    if not settings.openai_api_key:
        return None
    if _llm_provider is None:
        _llm_provider = OpenAIProvider(
            api_key=settings.openai_api_key,
            default_model=settings.openai_model,
            base_url=settings.openai_base_url,
        )
    return _llm_provider
