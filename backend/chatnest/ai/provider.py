"""Chat-completion providers behind the ask-gpt function.

Usage:
    provider = OpenRouterProvider(api_key="sk-or-...")
    reply = await provider.complete("Hello there")
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """The upstream completion API failed.

    Attributes:
        status_code: HTTP status to hand back to the caller (upstream status
            when there was one, 502 otherwise).
    """

    def __init__(self, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


class CompletionProvider(ABC):
    """Abstract base class for single-turn chat completion."""

    @abstractmethod
    async def complete(self, message: str) -> str:
        """Return the assistant's reply to ``message``.

        Raises:
            CompletionError: If the upstream call fails or returns no reply.
        """


class OpenRouterProvider(CompletionProvider):
    """CompletionProvider talking to OpenRouter through the OpenAI SDK.

    OpenRouter exposes an OpenAI-compatible API, so the official client is
    pointed at its base URL.

    Attributes:
        api_key: OpenRouter API key.
        model: Model slug (default: openai/gpt-4o).
        base_url: API base URL.
    """

    DEFAULT_MODEL = "openai/gpt-4o"
    DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
    DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        system_prompt: Optional[str] = None,
        max_tokens: int = 800,
        timeout: float = 60.0,
    ) -> None:
        self.api_key = api_key
        self.model = model or self.DEFAULT_MODEL
        self.base_url = base_url or self.DEFAULT_BASE_URL
        self.system_prompt = system_prompt or self.DEFAULT_SYSTEM_PROMPT
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client: Optional[object] = None

    def _get_client(self) -> object:
        """Get or create the async OpenAI client.

        Raises:
            ImportError: If openai package is not installed.
        """
        if self._client is None:
            try:
                import openai
                self._client = openai.AsyncOpenAI(
                    api_key=self.api_key,
                    base_url=self.base_url,
                    timeout=self.timeout,
                )
            except ImportError:
                raise ImportError(
                    "openai package is required for OpenRouterProvider. "
                    "Install it with: pip install openai"
                )
        return self._client

    async def complete(self, message: str) -> str:
        import openai

        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": message},
                ],
            )
        except openai.APIStatusError as e:
            logger.warning(f"OpenRouter returned {e.status_code}: {e.message}")
            raise CompletionError(e.message, status_code=e.status_code)
        except openai.APIError as e:
            logger.warning(f"OpenRouter call failed: {e}")
            raise CompletionError(str(e))

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content or not content.strip():
            raise CompletionError("Empty reply from model")
        return content.strip()


_provider: Optional[CompletionProvider] = None


def get_provider() -> Optional[CompletionProvider]:
    return _provider


def set_provider(provider: Optional[CompletionProvider]) -> None:
    global _provider
    _provider = provider


def create_provider_from_config(config) -> Optional[CompletionProvider]:
    """Build the provider described by ``config`` (an AppSettings).

    Returns None when AI is disabled or no API key is configured.
    """
    if not config.ai.enabled:
        return None
    api_key = config.secrets.openrouter.api_key
    if not api_key:
        logger.warning("AI enabled but no OpenRouter API key configured")
        return None
    return OpenRouterProvider(
        api_key=api_key,
        model=config.ai.model,
        base_url=config.ai.base_url,
        system_prompt=config.ai.system_prompt,
        max_tokens=config.ai.max_tokens,
        timeout=config.ai.timeout_seconds,
    )
