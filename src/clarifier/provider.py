from typing import Protocol, runtime_checkable


@runtime_checkable
class LLMProvider(Protocol):
    def is_configured(self) -> bool:
        """True when a credential is present; checked before any network call."""
        ...

    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
    ) -> str:
        """Non-streaming completion over role-tagged messages.

        Raises ProviderError classified by kind (network, timeout, auth,
        rate limit, server, bad request).
        """
        ...


def create_provider(provider_name: str, api_key: str, *, base_url: str | None = None) -> LLMProvider:
    """Factory: create an LLMProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from clarifier.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key)
    if name in ("openai", "openrouter"):
        from clarifier.providers.openai_provider import OPENROUTER_BASE_URL, OpenAIProvider
        if name == "openrouter" and not base_url:
            base_url = OPENROUTER_BASE_URL
        return OpenAIProvider(api_key, base_url=base_url)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'openrouter', 'openai', 'anthropic'")
