"""
LLM client used by the summarizer.

Uses the OpenAI Python SDK for both providers: Anthropic exposes an
OpenAI-compatible endpoint, so one code path serves either.
"""

from typing import Optional
from openai import OpenAI
from utils.logger import setup_logger

logger = setup_logger(name=__name__)


PROVIDER_BASE_URLS = {
    "anthropic": "https://api.anthropic.com/v1",
    "openai": None,
}


class LLMClient:
    """Thin text-in/text-out wrapper around chat completions."""

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str,
        temperature: float = 0.3,
        max_tokens: int = 500
    ):
        """
        Initialize LLM client.

        Args:
            provider: LLM provider - 'anthropic' or 'openai'
            model: Model name (e.g., 'claude-3-5-haiku-20241022', 'gpt-4o-mini')
            api_key: API key for the provider
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response. Summaries are a paragraph,
                        so the default is small.

        Raises:
            ValueError: If provider is not supported or API key is missing
        """
        self.provider = provider.lower()
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

        if self.provider not in PROVIDER_BASE_URLS:
            raise ValueError(f"Unsupported provider: {provider}. Must be 'anthropic' or 'openai'")

        if not api_key:
            raise ValueError(f"{provider} API key is required but not provided")

        base_url = PROVIDER_BASE_URLS[self.provider]
        if base_url:
            self.client = OpenAI(api_key=api_key, base_url=base_url)
        else:
            self.client = OpenAI(api_key=api_key)

        logger.info(f"Initialized LLMClient: provider={self.provider}, model={model}")

    def send_prompt(self, prompt: str, system: Optional[str] = None, max_tokens: Optional[int] = None) -> str:
        """
        Send a prompt and return the reply text ("" if the model returned nothing).

        Raises:
            Exception: If API call fails (auth, rate limit, etc.)
        """
        messages = [{"role": "user", "content": prompt}]
        if system:
            messages.insert(0, {"role": "system", "content": system})

        try:
            logger.debug(f"Sending prompt to {self.provider} ({len(prompt)} chars)")
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=max_tokens or self.max_tokens,
            )
        except Exception as e:
            logger.error(f"LLM API call failed: {e}")
            raise

        response_text = response.choices[0].message.content or ""

        if getattr(response, "usage", None):
            logger.debug(
                f"LLM usage: {response.usage.prompt_tokens} prompt + "
                f"{response.usage.completion_tokens} completion tokens"
            )

        return response_text
