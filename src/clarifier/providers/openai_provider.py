import openai
from loguru import logger

from clarifier.errors import ProviderError, ProviderErrorKind
from clarifier.providers.common import status_to_kind

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def _to_openai_messages(system_prompt: str, messages: list[dict]) -> list[dict]:
    """Prepend the system prompt and pass role/content pairs through."""
    out: list[dict] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})
    for msg in messages:
        out.append({"role": msg["role"], "content": str(msg.get("content", ""))})
    return out


def classify_openai_error(ex: Exception) -> ProviderError:
    if isinstance(ex, openai.APITimeoutError):
        return ProviderError(f"OpenAI request timed out: {ex}", ProviderErrorKind.TIMEOUT)
    if isinstance(ex, openai.APIConnectionError):
        return ProviderError(f"Network error connecting to provider: {ex}", ProviderErrorKind.NETWORK)
    if isinstance(ex, openai.APIStatusError):
        kind = status_to_kind(ex.status_code)
        return ProviderError(f"Provider API error ({ex.status_code}): {ex}", kind, status_code=ex.status_code)
    return ProviderError(f"Provider API error: {ex}", ProviderErrorKind.BAD_REQUEST)


class OpenAIProvider:
    """OpenAI chat completions; also serves OpenRouter through ``base_url``."""

    def __init__(self, api_key: str, *, base_url: str | None = None):
        self._api_key = api_key
        self._base_url = base_url
        self._client: openai.AsyncOpenAI | None = None

    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_key.strip())

    def _get_client(self) -> openai.AsyncOpenAI:
        if not self.is_configured():
            raise ProviderError("Provider API key is not configured", ProviderErrorKind.MISSING_API_KEY)
        if self._client is None:
            # Retries are owned by the callers' policies.
            self._client = openai.AsyncOpenAI(api_key=self._api_key, base_url=self._base_url, max_retries=0)
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
        oai_messages = _to_openai_messages(system_prompt, messages)
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(oai_messages)}")
        try:
            response = await client.chat.completions.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=oai_messages,
            )
        except openai.OpenAIError as ex:
            raise classify_openai_error(ex) from ex

        if not response.choices:
            return ""
        text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                f"API response: model={model}, prompt_tokens={usage.prompt_tokens}, "
                f"completion_tokens={usage.completion_tokens}"
            )
        else:
            logger.debug(f"API response: model={model}, len={len(text)}")
        return text
