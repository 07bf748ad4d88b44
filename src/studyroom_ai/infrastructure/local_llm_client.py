"""
Local inference client for self-hosted model servers.

Supports Ollama (recommended), llama.cpp, GPT4All and LM Studio through
their HTTP APIs using httpx.
"""

from typing import Any, Dict, List, Optional
import httpx

from ..config import LocalLLMConfig
from ..config_constants import (
    LOCAL_DEFAULT_MODELS,
    LOCAL_GENERATE_ENDPOINTS,
    LOCAL_HEALTH_ENDPOINTS,
    LocalBackend,
    SYSTEM_PROMPT,
)
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..domain.errors import ProviderError


logger = get_module_logger()


class LocalLLMClient:
    """
    Async client for one local inference backend.

    Each backend has its own request body and response shape; everything
    else (timeouts, logging, error mapping) is shared.

    Usage:
        client = LocalLLMClient(config)
        await client.connect()

        if await client.check_available():
            text = await client.generate("Convert to SQL: ...", max_tokens=512)

        await client.close()
    """

    def __init__(
        self,
        config: LocalLLMConfig,
        backend: Optional[LocalBackend] = None,
        model: Optional[str] = None
    ):
        self.config = config
        self.backend = backend or config.backend
        self.model = model or config.model
        self.base_url = config.url_for(self.backend).rstrip("/")
        self._client: Optional[httpx.AsyncClient] = None

        logger.info(
            "LocalLLMClient initialized",
            backend=self.backend.value,
            model=self.model,
            base_url=self.base_url
        )

    def with_options(
        self,
        backend: Optional[LocalBackend] = None,
        model: Optional[str] = None
    ) -> "LocalLLMClient":
        """Build a client for another backend/model sharing this configuration."""
        target = backend or self.backend
        if model is None and target == self.backend:
            model = self.model
        return LocalLLMClient(self.config, backend=target, model=model)

    async def connect(self) -> None:
        """Create the HTTP client. No request is made until first use."""
        if self._client is not None:
            logger.warning("Local LLM client already connected")
            return

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(self.config.timeout_seconds)
        )
        logger.info("Local LLM client connected", backend=self.backend.value, trace_id=current_trace_id())

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        if self._client is not None:
            await self._client.aclose()
        self._client = None
        logger.info("Local LLM client closed", backend=self.backend.value, trace_id=current_trace_id())

    def is_connected(self) -> bool:
        return self._client is not None

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.backend.value,
            "model": self.model,
            "url": self.base_url,
            "connected": self.is_connected(),
        }

    async def check_available(self) -> bool:
        """
        Probe the backend's liveness endpoint.

        Never raises; any failure reads as unavailable.
        """
        if self._client is None:
            await self.connect()
        assert self._client is not None

        endpoint = LOCAL_HEALTH_ENDPOINTS[self.backend]
        try:
            response = await self._client.get(endpoint, timeout=self.config.probe_timeout_seconds)
            available = response.is_success
        except httpx.HTTPError as e:
            logger.warning(
                "Local backend probe failed",
                backend=self.backend.value,
                error=str(e),
                trace_id=current_trace_id()
            )
            available = False

        logger.info("Local backend probed", backend=self.backend.value, available=available, trace_id=current_trace_id())
        return available

    async def list_models(self) -> List[str]:
        """
        Models the backend reports, or the configured defaults when it cannot say.
        """
        defaults = list(LOCAL_DEFAULT_MODELS[self.backend])
        if self.backend == LocalBackend.LLAMACPP:
            return defaults
        if self._client is None:
            await self.connect()
        assert self._client is not None

        try:
            response = await self._client.get(LOCAL_HEALTH_ENDPOINTS[self.backend], timeout=self.config.probe_timeout_seconds)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not load model list, using defaults", error=str(e), trace_id=current_trace_id())
            return defaults

        if self.backend == LocalBackend.OLLAMA:
            models = [m.get("name") for m in data.get("models", []) if m.get("name")]
        else:
            models = [m.get("id") for m in data.get("data", []) if m.get("id")]
        return models or defaults

    def _build_request(self, prompt: str, temperature: float, max_tokens: int) -> Dict[str, Any]:
        if self.backend == LocalBackend.OLLAMA:
            return {
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "options": {
                    "temperature": temperature,
                    "num_predict": max_tokens,
                    "top_p": self.config.top_p,
                    "top_k": self.config.top_k,
                },
            }
        if self.backend == LocalBackend.LLAMACPP:
            return {
                "prompt": prompt,
                "n_predict": max_tokens,
                "temperature": temperature,
                "top_p": self.config.top_p,
                "top_k": self.config.top_k,
                "stream": False,
            }
        if self.backend == LocalBackend.GPT4ALL:
            return {
                "model": self.model,
                "prompt": prompt,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "top_p": self.config.top_p,
                "stream": False,
            }
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": False,
        }

    def _extract_text(self, data: Dict[str, Any]) -> str:
        if self.backend == LocalBackend.OLLAMA:
            return data.get("response") or ""
        if self.backend == LocalBackend.LLAMACPP:
            return data.get("content") or ""

        choices = data.get("choices") or []
        if not choices:
            return ""
        if self.backend == LocalBackend.GPT4ALL:
            return choices[0].get("text") or ""
        return (choices[0].get("message") or {}).get("content") or ""

    async def generate(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> str:
        """
        Generate text with the configured backend.

        Raises:
            ProviderError: Network failure, non-2xx status or empty completion
        """
        if self._client is None:
            await self.connect()
        assert self._client is not None

        trace_id = current_trace_id()
        body = self._build_request(
            prompt,
            temperature if temperature is not None else self.config.temperature,
            max_tokens or self.config.max_tokens,
        )

        logger.info(
            "Generating text with local LLM",
            backend=self.backend.value,
            model=self.model,
            prompt_length=len(prompt),
            trace_id=trace_id
        )

        try:
            response = await self._client.post(LOCAL_GENERATE_ENDPOINTS[self.backend], json=body)
            response.raise_for_status()
            data = response.json()

        except httpx.HTTPStatusError as e:
            error_msg = f"{self.backend.value} API error: {e.response.status_code}"
            logger.error(error_msg, trace_id=trace_id)
            raise ProviderError(error_msg, details={"backend": self.backend.value}) from e

        except (httpx.HTTPError, ValueError) as e:
            error_msg = f"Local LLM generation failed: {e}"
            logger.error(error_msg, error_type=type(e).__name__, backend=self.backend.value, trace_id=trace_id)
            raise ProviderError(error_msg, details={"backend": self.backend.value}) from e

        text = self._extract_text(data).strip()
        if not text:
            raise ProviderError(
                f"{self.backend.value} returned empty response",
                details={"backend": self.backend.value}
            )

        logger.info(
            "Local LLM generation completed",
            backend=self.backend.value,
            response_length=len(text),
            trace_id=trace_id
        )
        return text
