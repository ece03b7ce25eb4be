"""FastAPI dependency providers. Tests swap these out via ``app.dependency_overrides``."""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from openai import OpenAI
from supabase import AuthError, Client, create_client

from .config import Settings, get_settings
from .errors import AuthenticationRequired, ServerConfigurationError
from .history import HistoryStore
from .processor import create_llm_client
from .session import GUEST_USAGE_KEY, AuthUser, GuestUsage, SessionContext

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign in again."
SIGN_IN_REQUIRED_MESSAGE = "Please sign in to use saved analyses."


def get_llm_client(settings: Settings = Depends(get_settings)) -> OpenAI:
    return create_llm_client(settings)


@lru_cache(maxsize=4)
def _supabase_client(url: str, key: str) -> Client:
    return create_client(url, key)


def get_supabase(settings: Settings = Depends(get_settings)) -> Optional[Client]:
    if not settings.supabase_configured:
        return None
    return _supabase_client(settings.supabase_url, settings.supabase_key)


def get_history_store(client: Optional[Client] = Depends(get_supabase)) -> Optional[HistoryStore]:
    return HistoryStore(client) if client is not None else None


def require_history_store(store: Optional[HistoryStore] = Depends(get_history_store)) -> HistoryStore:
    if store is None:
        logger.error("SUPABASE_URL / SUPABASE_KEY are not set.")
        raise ServerConfigurationError(detail="Supabase is not configured")
    return store


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_user(token: Optional[str], client: Optional[Client]) -> Optional[AuthUser]:
    """Look the access token up with Supabase Auth. No token means a guest."""
    if token is None:
        return None
    if client is None:
        logger.error("Received an access token but Supabase is not configured.")
        raise ServerConfigurationError(detail="Supabase is not configured")
    try:
        response = client.auth.get_user(token)
    except AuthError as e:
        logger.info(f"Rejected access token: {e}")
        raise AuthenticationRequired(SESSION_EXPIRED_MESSAGE) from e
    if response is None or response.user is None:
        raise AuthenticationRequired(SESSION_EXPIRED_MESSAGE)
    return AuthUser.from_supabase(response.user)


def get_current_user(request: Request, client: Optional[Client] = Depends(get_supabase)) -> Optional[AuthUser]:
    return resolve_user(bearer_token(request), client)


def require_user(user: Optional[AuthUser] = Depends(get_current_user)) -> AuthUser:
    if user is None:
        raise AuthenticationRequired(SIGN_IN_REQUIRED_MESSAGE)
    return user


def get_session_context(
    request: Request,
    settings: Settings = Depends(get_settings),
    user: Optional[AuthUser] = Depends(get_current_user),
) -> SessionContext:
    return SessionContext(
        user=user,
        guest_usage=GuestUsage.from_dict(request.session.get(GUEST_USAGE_KEY)),
        guest_limit=settings.guest_analysis_limit,
    )
