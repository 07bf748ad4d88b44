"""
Unit tests for LocalLLMClient request shapes and response parsing.

HTTP is served by httpx.MockTransport; no model server is needed.
"""

import json

import httpx
import pytest

from studyroom_ai.config import LocalLLMConfig
from studyroom_ai.config_constants import LocalBackend
from studyroom_ai.domain.errors import ProviderError
from studyroom_ai.infrastructure.local_llm_client import LocalLLMClient


def mocked_client(backend: LocalBackend, handler) -> LocalLLMClient:
    client = LocalLLMClient(LocalLLMConfig(model="codellama"), backend=backend)
    client._client = httpx.AsyncClient(base_url=client.base_url, transport=httpx.MockTransport(handler))
    return client


class Recorder:
    def __init__(self, status: int = 200, payload=None):
        self.status = status
        self.payload = payload or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.payload)

    @property
    def body(self):
        return json.loads(self.requests[-1].content)


class TestGenerate:

    @pytest.mark.parametrize("backend,path,payload", [
        (LocalBackend.OLLAMA, "/api/generate", {"response": " SELECT 1 FROM t "}),
        (LocalBackend.LLAMACPP, "/completion", {"content": "SELECT 1 FROM t"}),
        (LocalBackend.GPT4ALL, "/v1/completions", {"choices": [{"text": "SELECT 1 FROM t"}]}),
        (LocalBackend.LMSTUDIO, "/v1/chat/completions", {"choices": [{"message": {"content": "SELECT 1 FROM t"}}]}),
    ])
    async def test_endpoint_and_extraction(self, backend, path, payload):
        recorder = Recorder(payload=payload)
        client = mocked_client(backend, recorder)

        text = await client.generate("prompt", temperature=0.2, max_tokens=64)

        assert text == "SELECT 1 FROM t"
        assert recorder.requests[0].url.path == path
        await client.close()

    async def test_ollama_request_body(self):
        recorder = Recorder(payload={"response": "ok"})
        client = mocked_client(LocalBackend.OLLAMA, recorder)

        await client.generate("prompt", temperature=0.2, max_tokens=64)

        assert recorder.body["model"] == "codellama"
        assert recorder.body["stream"] is False
        assert recorder.body["options"]["num_predict"] == 64
        assert recorder.body["options"]["temperature"] == 0.2

    async def test_lmstudio_sends_system_message(self):
        recorder = Recorder(payload={"choices": [{"message": {"content": "ok"}}]})
        client = mocked_client(LocalBackend.LMSTUDIO, recorder)

        await client.generate("prompt")

        roles = [message["role"] for message in recorder.body["messages"]]
        assert roles == ["system", "user"]

    async def test_http_error_maps_to_provider_error(self):
        client = mocked_client(LocalBackend.OLLAMA, Recorder(status=500))

        with pytest.raises(ProviderError, match="500"):
            await client.generate("prompt")

    async def test_empty_response_is_provider_error(self):
        client = mocked_client(LocalBackend.OLLAMA, Recorder(payload={"response": "  "}))

        with pytest.raises(ProviderError, match="empty response"):
            await client.generate("prompt")

    async def test_network_error_maps_to_provider_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = mocked_client(LocalBackend.OLLAMA, refuse)

        with pytest.raises(ProviderError):
            await client.generate("prompt")


class TestProbeAndModels:

    async def test_probe_success(self):
        recorder = Recorder(payload={"models": []})
        client = mocked_client(LocalBackend.OLLAMA, recorder)

        assert await client.check_available()
        assert recorder.requests[0].url.path == "/api/tags"

    async def test_probe_failure_never_raises(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        assert not await mocked_client(LocalBackend.LLAMACPP, refuse).check_available()

    async def test_ollama_models(self):
        client = mocked_client(LocalBackend.OLLAMA, Recorder(payload={"models": [{"name": "mistral"}]}))
        assert await client.list_models() == ["mistral"]

    async def test_models_default_when_unreachable(self):
        client = mocked_client(LocalBackend.GPT4ALL, Recorder(status=404))
        assert await client.list_models() == ["gpt4all-j", "vicuna-7b", "wizard-13b"]

    def test_with_options_switches_backend(self):
        client = LocalLLMClient(LocalLLMConfig(model="codellama"))
        other = client.with_options(backend=LocalBackend.LMSTUDIO)

        assert other.backend == LocalBackend.LMSTUDIO
        assert other.model == "codellama"
        assert other.base_url == "http://localhost:1234"
