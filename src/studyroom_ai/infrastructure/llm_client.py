"""
Hosted text generation client using LangChain.

OpenAI, Perplexity and OpenRouter all expose the OpenAI chat completions
protocol, so a single ChatOpenAI client pointed at the provider's base URL
serves every hosted provider.
"""

from typing import Any, Dict, List, Optional
from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage, BaseMessage
from pydantic import SecretStr

from ..config import HostedAPIConfig
from ..config_constants import HostedProvider
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..utils.token_utils import InputValidator
from ..domain.errors import ConfigurationError, ProviderAuthError, ProviderError, RateLimitError


logger = get_module_logger()


def _is_rate_limited(error: Exception) -> bool:
    if getattr(error, "status_code", None) == 429:
        return True
    text = str(error).lower()
    return "429" in text or "rate limit" in text or "quota" in text


def _is_auth_failure(error: Exception) -> bool:
    if getattr(error, "status_code", None) in (401, 403):
        return True
    text = str(error).lower()
    return "401" in text or "invalid api key" in text or "incorrect api key" in text


class LLMClient:
    """
    Hosted LLM client using LangChain's ChatOpenAI.

    This is a thin infrastructure layer; prompt construction lives in the
    repository layer and provider fallback in the orchestrator.

    Usage:
        client = LLMClient(config)
        await client.connect()

        response = await client.generate(
            "Convert to SQL: how many students?",
            system_prompt=SYSTEM_PROMPT,
            temperature=0.1,
            max_tokens=512
        )

        # Switch provider; returns a new, unconnected client
        perplexity = client.with_options(provider=HostedProvider.PERPLEXITY)
    """

    def __init__(
        self,
        config: HostedAPIConfig,
        provider: Optional[HostedProvider] = None,
        model: Optional[str] = None
    ):
        """
        Initialize LLM client with configuration.

        Args:
            config: Hosted API configuration
            provider: Provider override (defaults to config.provider)
            model: Model override (defaults to the provider's configured model)
        """
        self.config = config
        self.provider = provider or config.provider
        self.model = model or config.model_for(self.provider)
        self._llm: Optional[ChatOpenAI] = None
        self._is_connected = False

        logger.info(
            "LLMClient initialized",
            provider=self.provider.value,
            model=self.model,
            base_url=config.base_url_for(self.provider),
            temperature=config.temperature,
            max_tokens=config.max_tokens
        )

    def with_options(
        self,
        provider: Optional[HostedProvider] = None,
        model: Optional[str] = None
    ) -> "LLMClient":
        """Build a client for another provider/model sharing this configuration."""
        target = provider or self.provider
        if model is None and target == self.provider:
            model = self.model
        return LLMClient(self.config, provider=target, model=model)

    @property
    def has_api_key(self) -> bool:
        return bool(self.config.api_key_for(self.provider))

    async def connect(self) -> None:
        """
        Initialize LangChain ChatOpenAI client.

        Note: This creates the client configuration but doesn't make any API calls.

        Raises:
            ConfigurationError: If the provider has no API key
            ProviderError: If initialization fails
        """
        if self._is_connected:
            logger.warning("LLM client already connected")
            return

        trace_id = current_trace_id()
        api_key = self.config.api_key_for(self.provider)
        if not api_key:
            error_msg = f"No API key configured for provider '{self.provider.value}'"
            logger.error(error_msg, trace_id=trace_id)
            raise ConfigurationError(error_msg, details={"provider": self.provider.value})

        logger.info("Initializing LLM client", provider=self.provider.value, trace_id=trace_id)

        try:
            self._llm = ChatOpenAI(
                model=self.model,
                api_key=SecretStr(api_key),
                base_url=self.config.base_url_for(self.provider),
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                timeout=self.config.timeout_seconds,
                # Retries are owned by the per-request retry budget
                max_retries=0
            )

            self._is_connected = True
            logger.info("LLM client initialized successfully", trace_id=trace_id)

        except Exception as e:
            error_msg = f"Failed to initialize LLM client: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise ProviderError(error_msg) from e

    async def close(self) -> None:
        """Close LLM client and release resources."""
        self._is_connected = False
        self._llm = None
        logger.info("LLM client closed", provider=self.provider.value, trace_id=current_trace_id())

    def is_connected(self) -> bool:
        """Check if LLM client is connected."""
        return self._is_connected and self._llm is not None

    def describe(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "model": self.model,
            "has_api_key": self.has_api_key,
            "connected": self.is_connected(),
        }

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> str:
        """
        Generate text response from the hosted provider.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt for context
            temperature: Optional temperature override
            max_tokens: Optional max tokens override

        Returns:
            Generated text response

        Raises:
            RateLimitError: Provider reported quota exhaustion
            ProviderError: Any other failure, including oversized input
        """
        if not self.is_connected() or not self._llm:
            raise ProviderError("LLM client is not connected", details={"provider": self.provider.value})

        try:
            InputValidator.validate_total_chars(
                prompt=prompt,
                system_prompt=system_prompt,
                max_chars=self.config.max_input_chars
            )
        except ValueError as e:
            raise ProviderError(str(e)) from e

        trace_id = current_trace_id()

        logger.info(
            "Generating LLM response",
            provider=self.provider.value,
            model=self.model,
            prompt_length=len(prompt),
            has_system_prompt=system_prompt is not None,
            temperature=temperature if temperature is not None else self.config.temperature,
            trace_id=trace_id
        )

        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))

        llm = self._llm
        if temperature is not None or max_tokens is not None:
            bind_kwargs: Dict[str, Any] = {}
            if temperature is not None:
                bind_kwargs["temperature"] = temperature
            if max_tokens is not None:
                bind_kwargs["max_tokens"] = max_tokens
            llm = llm.bind(**bind_kwargs)

        try:
            response = await llm.ainvoke(messages)
        except Exception as e:
            if _is_rate_limited(e):
                error_msg = f"Rate limit reached for provider '{self.provider.value}': {e}"
                logger.warning(error_msg, trace_id=trace_id)
                raise RateLimitError(error_msg, details={"provider": self.provider.value}) from e

            if _is_auth_failure(e):
                error_msg = f"API key rejected by provider '{self.provider.value}'"
                logger.error(error_msg, trace_id=trace_id)
                raise ProviderAuthError(error_msg, details={"provider": self.provider.value}) from e

            error_msg = f"LLM generation failed: {e}"
            logger.error(
                error_msg,
                error_type=type(e).__name__,
                prompt_length=len(prompt),
                trace_id=trace_id
            )
            raise ProviderError(error_msg, details={"provider": self.provider.value}) from e

        content = str(response.content).strip() if response is not None and response.content else ""
        if not content:
            raise ProviderError("LLM returned empty response", details={"provider": self.provider.value})

        logger.info(
            "LLM response generated successfully",
            response_length=len(content),
            trace_id=trace_id
        )
        return content
