import anthropic
from loguru import logger

from clarifier.errors import ProviderError, ProviderErrorKind
from clarifier.providers.common import status_to_kind


def classify_anthropic_error(ex: Exception) -> ProviderError:
    if isinstance(ex, anthropic.APITimeoutError):
        return ProviderError(f"Anthropic request timed out: {ex}", ProviderErrorKind.TIMEOUT)
    if isinstance(ex, anthropic.APIConnectionError):
        return ProviderError(f"Network error connecting to Anthropic: {ex}", ProviderErrorKind.NETWORK)
    if isinstance(ex, anthropic.APIStatusError):
        kind = status_to_kind(ex.status_code)
        return ProviderError(f"Anthropic API error ({ex.status_code}): {ex}", kind, status_code=ex.status_code)
    return ProviderError(f"Anthropic API error: {ex}", ProviderErrorKind.BAD_REQUEST)


class AnthropicProvider:
    def __init__(self, api_key: str):
        self._api_key = api_key
        self._client: anthropic.AsyncAnthropic | None = None

    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_key.strip())

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if not self.is_configured():
            raise ProviderError("Anthropic API key is not configured", ProviderErrorKind.MISSING_API_KEY)
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key, max_retries=0)
        return self._client

    async def create_message(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
    ) -> str:
        client = self._get_client()
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(messages)}")
        kwargs: dict = dict(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": m["role"], "content": m["content"]} for m in messages],
        )
        if system_prompt:
            kwargs["system"] = system_prompt
        try:
            response = await client.messages.create(**kwargs)
        except anthropic.AnthropicError as ex:
            raise classify_anthropic_error(ex) from ex

        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        return "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
