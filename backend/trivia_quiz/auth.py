"""Authentication helpers and FastAPI security dependencies.

This module decodes the JWT bearer token issued at login and resolves
it to the calling user and that user's server-side session. A token is
only accepted while its session (`sid` claim) still exists in the
session store, so logging out or session expiry invalidates it.

Token verification raises HTTPExceptions on failure so the helpers can
be used directly inside route dependencies.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .config import settings
from .database import get_session
from .session_store import SessionStore
from . import models, repositories

bearer_scheme = HTTPBearer()
optional_bearer = HTTPBearer(auto_error=False)

session_store = SessionStore(ttl_seconds=settings.SESSION_TTL_SECONDS)


@dataclass
class Caller:
    user: models.User
    sid: str


def get_session_store() -> SessionStore:
    return session_store


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def _resolve(token: str, db: Session, sessions: SessionStore) -> Caller:
    payload = decode_token(token)
    user_id = payload.get('user_id')
    sid = payload.get('sid')
    if not user_id or not sid:
        raise HTTPException(status_code=401, detail='invalid token payload')
    if sessions.owner(sid) != user_id:
        raise HTTPException(status_code=401, detail='session expired')
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    return Caller(user=user, sid=sid)


def get_current_caller(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
    sessions: SessionStore = Depends(get_session_store),
) -> Caller:
    """FastAPI dependency returning the authenticated user and session id.

    Raises HTTPException(401) for any authentication issue.
    """
    return _resolve(credentials.credentials, db, sessions)


def get_optional_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_bearer),
    db: Session = Depends(get_session),
    sessions: SessionStore = Depends(get_session_store),
) -> Optional[Caller]:
    """Like `get_current_caller` but returns None for anonymous requests."""
    if credentials is None:
        return None
    try:
        return _resolve(credentials.credentials, db, sessions)
    except HTTPException:
        return None
