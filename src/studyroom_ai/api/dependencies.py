"""
FastAPI dependencies for dependency injection.

Routes depend on the AIChatService built during startup (stored on
app.state) and on the authenticated user id set by the upstream
authentication layer.
"""

from typing import Annotated

from fastapi import Depends, Header, Request

from ..config import Settings
from ..domain.errors import ServiceUnavailableError, UnauthorizedError
from ..infrastructure.database_client import DatabaseClient
from ..services.chat_service import AIChatService


def get_settings(request: Request) -> Settings:
    """
    Settings from app state.

    Raises:
        RuntimeError: If settings are not initialized
    """
    if not hasattr(request.app.state, "settings"):
        raise RuntimeError("Settings not initialized")

    return request.app.state.settings


def get_db_client_optional(request: Request) -> DatabaseClient | None:
    """Database client if available, None otherwise (health checks)."""
    return getattr(request.app.state, "db_client", None)


def get_chat_service(request: Request) -> AIChatService:
    """
    The AIChatService built in the lifespan handler.

    Raises:
        ServiceUnavailableError: If startup could not build the service
    """
    service = getattr(request.app.state, "chat_service", None)
    if service is None:
        raise ServiceUnavailableError("AI chat service is not initialized")
    return service


def get_chat_service_optional(request: Request) -> AIChatService | None:
    return getattr(request.app.state, "chat_service", None)


def get_current_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """
    Authenticated user id from the X-User-ID header.

    Raises:
        UnauthorizedError: Header missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError("Authentication required")
    return x_user_id.strip()


SettingsDep = Annotated[Settings, Depends(get_settings)]
ChatServiceDep = Annotated[AIChatService, Depends(get_chat_service)]
CurrentUserDep = Annotated[str, Depends(get_current_user_id)]

OptionalDatabaseClientDep = Annotated[DatabaseClient | None, Depends(get_db_client_optional)]
OptionalChatServiceDep = Annotated[AIChatService | None, Depends(get_chat_service_optional)]
