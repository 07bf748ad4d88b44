from enum import Enum


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class HostedProvider(str, Enum):
    OPENAI = "openai"
    PERPLEXITY = "perplexity"
    OPENROUTER = "openrouter"


class LocalBackend(str, Enum):
    OLLAMA = "ollama"
    LLAMACPP = "llamacpp"
    GPT4ALL = "gpt4all"
    LMSTUDIO = "lmstudio"


OPENAI_API_URL = "https://api.openai.com/v1"
PERPLEXITY_API_URL = "https://api.perplexity.ai"
OPEN_ROUTER_API_URL = "https://openrouter.ai/api/v1"

OPENAI_DEFAULT_MODEL = "gpt-3.5-turbo"
PERPLEXITY_DEFAULT_MODEL = "llama-3.1-sonar-small-128k-online"
OPENROUTER_DEFAULT_MODEL = "openai/gpt-4o-mini"

# -------------------------
# Local inference backends
# -------------------------

# Generation endpoint per backend (relative to the backend base URL)
LOCAL_GENERATE_ENDPOINTS = {
    LocalBackend.OLLAMA: "/api/generate",
    LocalBackend.LLAMACPP: "/completion",
    LocalBackend.GPT4ALL: "/v1/completions",
    LocalBackend.LMSTUDIO: "/v1/chat/completions",
}

# Liveness probe per backend
LOCAL_HEALTH_ENDPOINTS = {
    LocalBackend.OLLAMA: "/api/tags",
    LocalBackend.LLAMACPP: "/health",
    LocalBackend.GPT4ALL: "/v1/models",
    LocalBackend.LMSTUDIO: "/v1/models",
}

# Models assumed present when the backend cannot list its own
LOCAL_DEFAULT_MODELS = {
    LocalBackend.OLLAMA: ["llama2", "codellama", "mistral", "llama2:13b"],
    LocalBackend.LLAMACPP: ["llama-2-7b", "llama-2-13b", "codellama"],
    LocalBackend.GPT4ALL: ["gpt4all-j", "vicuna-7b", "wizard-13b"],
    LocalBackend.LMSTUDIO: ["local-model"],
}

# System prompt shared by every chat-style backend
SYSTEM_PROMPT = (
    "You are a helpful assistant specializing in database queries and data "
    "analysis for a study room management system."
)
