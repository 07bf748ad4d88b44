"""
Infrastructure layer for the AI chat service.

This package contains low-level clients for external services:
- DatabaseClient: PostgreSQL via asyncpg
- LLMClient: hosted providers via LangChain ChatOpenAI
- LocalLLMClient: local inference servers via httpx
"""

from .database_client import DatabaseClient
from .llm_client import LLMClient
from .local_llm_client import LocalLLMClient

__all__ = [
    "DatabaseClient",
    "LLMClient",
    "LocalLLMClient",
]
