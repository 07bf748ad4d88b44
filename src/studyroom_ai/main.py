"""
Main FastAPI application for the study room AI chat service.

This module wires the clients, repositories and AIChatService together
during startup and exposes the thin HTTP adapter over the service.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Union

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.dependencies import (
    ChatServiceDep,
    CurrentUserDep,
    OptionalChatServiceDep,
    OptionalDatabaseClientDep,
    SettingsDep,
)
from .api.middleware import (
    ERROR_RESPONSES,
    logging_middleware,
    register_exception_handlers,
    security_headers_middleware,
    trace_id_middleware,
)
from .config import Settings, get_settings
from .domain.requests import ChatQueryRequest, SwitchModeRequest
from .domain.responses import (
    AIStatusResponse,
    ChatAnswer,
    ClearHistoryResponse,
    HealthResponse,
    HistoryResponse,
    SchemaResponse,
    SuggestionsResponse,
    SwitchModeResponse,
)
from .infrastructure.database_client import DatabaseClient
from .infrastructure.llm_client import LLMClient
from .infrastructure.local_llm_client import LocalLLMClient
from .repositories.conversation_store import ConversationMemory
from .repositories.provider_orchestrator import ProviderOrchestrator
from .repositories.query_frequency import QueryFrequencyRepository
from .repositories.schema_repository import SchemaRepository, SchemaSnapshotLoader
from .repositories.sql_execution import QueryExecutor
from .services.chat_service import AIChatService
from .utils.logging import configure_logging, get_module_logger
from .utils.tracing import get_trace_id

APP_VERSION = "0.1.0"

configure_logging()
logger = get_module_logger()


def build_chat_service(settings: Settings, db_client: DatabaseClient) -> AIChatService:
    """Assemble the AIChatService and its repositories from settings."""
    chat_config = settings.ai_chat

    orchestrator = ProviderOrchestrator(
        chat_config,
        hosted_client=LLMClient(settings.hosted_api),
        local_client=LocalLLMClient(settings.local_llm),
    )
    schema_loader = SchemaSnapshotLoader(
        SchemaRepository(db_client, settings.database.default_schema),
        ttl_seconds=chat_config.schema_cache_seconds,
    )
    executor = QueryExecutor(
        db_client,
        default_row_limit=chat_config.default_row_limit,
        timeout_seconds=settings.database.query_timeout_seconds,
    )
    memory = ConversationMemory(
        max_turns=chat_config.max_context_messages,
        expiry_seconds=chat_config.context_expiry_seconds,
    )
    frequency_store = None
    if chat_config.track_query_frequency:
        frequency_store = QueryFrequencyRepository(db_client, retention=chat_config.frequency_retention)

    return AIChatService(
        config=chat_config,
        schema_loader=schema_loader,
        orchestrator=orchestrator,
        executor=executor,
        memory=memory,
        frequency_store=frequency_store,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting AI chat API server", version=APP_VERSION)

    settings = get_settings()
    app.state.settings = settings

    db_client = DatabaseClient(settings.database)
    try:
        await db_client.connect()
        logger.info("Database client connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect database client: {e}")
        # Continue without database - answers will report a schema failure

    app.state.db_client = db_client
    app.state.chat_service = build_chat_service(settings, db_client)

    yield

    logger.info("Shutting down AI chat API server")

    if getattr(app.state, "chat_service", None) is not None:
        await app.state.chat_service.close()
        logger.info("Chat service closed")

    if hasattr(app.state, "db_client"):
        await app.state.db_client.close()
        logger.info("Database client closed")


app = FastAPI(
    title="Study Room AI Chat API",
    description="Natural language questions over the study room database",
    version=APP_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last registered = first executed
app.middleware("http")(security_headers_middleware)
app.middleware("http")(logging_middleware)
app.middleware("http")(trace_id_middleware)

register_exception_handlers(app)


@app.get("/", tags=["Root"])
async def root(settings: SettingsDep) -> Dict[str, Union[str, None]]:
    trace_id = get_trace_id()
    logger.info("Root endpoint accessed", trace_id=trace_id)

    return {
        "message": "Study Room AI Chat API",
        "version": APP_VERSION,
        "trace_id": trace_id,
        "log_level": settings.app.log_level
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health(
    db_client: OptionalDatabaseClientDep,
    chat_service: OptionalChatServiceDep,
) -> HealthResponse:
    """
    Health check with database and provider status.

    **Response Model**: `HealthResponse`
    - status: healthy when the database is reachable, degraded otherwise
    - generation_status: provider currently answering SQL generation
    """
    trace_id = get_trace_id()
    logger.info("Health check endpoint accessed", trace_id=trace_id)

    database_status = "not_configured"
    if db_client:
        db_health = await db_client.health_check()
        database_status = db_health.get("status", "unknown")

    generation_status = "not_configured"
    if chat_service:
        ai_status = await chat_service.status()
        generation_status = ai_status.active_generation.value

    return HealthResponse(
        status="healthy" if database_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=APP_VERSION,
        database_status=database_status,
        generation_status=generation_status
    )


# -------------------------
# AI Chat Endpoints
# -------------------------

@app.post(
    "/ai-chat/query",
    response_model=ChatAnswer,
    tags=["AI Chat"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [401, 422, 503]},
)
async def ai_chat_query(
    request: ChatQueryRequest,
    chat_service: ChatServiceDep,
    user_id: CurrentUserDep,
) -> ChatAnswer:
    """
    Answer a natural language question.

    Pipeline failures are returned as `success=false` with a readable
    `presentation`; the metadata carries the correlation id.
    """
    trace_id = get_trace_id()
    logger.info("AI chat query received", query_length=len(request.query), trace_id=trace_id)

    return await chat_service.answer(request.query, user_id)


@app.get("/ai-chat/history", response_model=HistoryResponse, tags=["AI Chat"])
async def get_history(chat_service: ChatServiceDep, user_id: CurrentUserDep) -> HistoryResponse:
    return chat_service.history(user_id)


@app.delete("/ai-chat/history", response_model=ClearHistoryResponse, tags=["AI Chat"])
async def clear_history(chat_service: ChatServiceDep, user_id: CurrentUserDep) -> ClearHistoryResponse:
    logger.info("Clearing conversation history", trace_id=get_trace_id())
    return chat_service.clear_history(user_id)


@app.get("/ai-chat/suggestions", response_model=SuggestionsResponse, tags=["AI Chat"])
async def get_suggestions(chat_service: ChatServiceDep, user_id: CurrentUserDep) -> SuggestionsResponse:
    return await chat_service.suggestions(user_id)


@app.get(
    "/ai-chat/schema",
    response_model=SchemaResponse,
    tags=["AI Chat"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [401, 503]},
)
async def get_schema(chat_service: ChatServiceDep, user_id: CurrentUserDep) -> SchemaResponse:
    """
    Current schema snapshot.

    **Possible Errors**:
    - 503: Schema could not be loaded
    """
    return await chat_service.schema()


@app.get("/ai-chat/llm/status", response_model=AIStatusResponse, tags=["AI Providers"])
async def get_llm_status(chat_service: ChatServiceDep, user_id: CurrentUserDep) -> AIStatusResponse:
    return await chat_service.status()


@app.post(
    "/ai-chat/llm/switch",
    response_model=SwitchModeResponse,
    tags=["AI Providers"],
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in [400, 401, 422, 503]},
)
async def switch_llm_mode(
    request: SwitchModeRequest,
    chat_service: ChatServiceDep,
    user_id: CurrentUserDep,
) -> SwitchModeResponse:
    """
    Switch the primary provider.

    **Possible Errors**:
    - 400: Unknown provider or backend
    - 503: Candidate provider not available (previous mode kept)
    """
    trace_id = get_trace_id()
    logger.info("AI mode switch requested", mode=request.mode.value, trace_id=trace_id)

    return await chat_service.switch_mode(
        request.mode,
        provider=request.provider,
        backend=request.backend,
        model=request.model,
    )
