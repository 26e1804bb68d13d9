"""LLM factory: builds the chat model for the configured LLM_PROVIDER."""

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from warroom.config import Settings


def create_llm(
    settings: Settings,
    temperature: float = 0.0,
    model_override: str | None = None,
    max_tokens: int = 1024,
) -> BaseChatModel:
    """Create a chat model instance based on the configured provider.

    Args:
        settings: Application settings (provider, keys, model names).
        temperature: LLM temperature.
        model_override: Use this model name instead of the one from settings.
        max_tokens: Completion token cap.

    Returns:
        A ChatAnthropic or ChatOpenAI instance.
    """
    if settings.llm_provider == "anthropic":
        return ChatAnthropic(  # pyright: ignore[reportCallIssue]
            model=model_override or settings.anthropic_model,  # pyright: ignore[reportCallIssue]
            temperature=temperature,
            max_tokens=max_tokens,  # pyright: ignore[reportCallIssue]
            api_key=SecretStr(settings.anthropic_api_key),
        )

    return ChatOpenAI(
        model=model_override or settings.openai_model,
        temperature=temperature,
        max_tokens=max_tokens,  # pyright: ignore[reportCallIssue]
        api_key=SecretStr(settings.openai_api_key),
        base_url=settings.openai_base_url or None,
    )
