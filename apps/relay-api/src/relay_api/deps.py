"""Request dependencies: database session, caller identity and engine services."""

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from messaging_engine.auth import AuthContext
from messaging_engine.realtime.publisher import EventPublisher, NullEventPublisher
from messaging_engine.service.enforcement import CreditEnforcementService
from messaging_engine.streams.producer import StreamProducer
from relaycore.db import get_db
from relaycore.redis import get_redis_client
from relaycore.security import decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


def context_from_token(token: str | None) -> AuthContext | None:
    """AuthContext for a bearer token, or None if it is missing or invalid."""
    if not token:
        return None

    claims = decode_access_token(token)
    if claims is None:
        return None

    try:
        return AuthContext.from_claims(claims)
    except (KeyError, ValueError):
        return None


def get_auth_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthContext:
    """Require a valid bearer token."""
    ctx = context_from_token(credentials.credentials if credentials else None)
    if ctx is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing access token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ctx


def get_publisher(request: Request) -> EventPublisher:
    """Publisher installed at startup; events are dropped when none is."""
    return getattr(request.app.state, "publisher", None) or NullEventPublisher()


def get_enforcement(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
) -> CreditEnforcementService:
    return CreditEnforcementService(db, publisher=publisher)


def get_stream_producer() -> StreamProducer:
    return StreamProducer(get_redis_client())
