"""
Identity binding and session handling

Passwords are bcrypt hashed, sessions are JWTs. The token travels in the
"__session" cookie, as a Bearer header, or (WebSockets) as ?token=.
"""
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.responses import RedirectResponse
from jose import JWTError, jwt
from passlib.context import CryptContext

import database
from database import DocumentStore

logger = logging.getLogger(__name__)

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))  # 7 days

SESSION_COOKIE = "__session"
LOGIN_PATH = "/login"
PROTECTED_PAGES = ("/dashboard", "/profile", "/discover", "/chats")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_token(token: Optional[str]) -> Optional[str]:
    """Return the user id in the token, or None if it is missing or invalid."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub")


def token_from_request(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization")
    if auth:
        parts = auth.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]
    return request.cookies.get(SESSION_COOKIE)


def token_from_websocket(websocket: WebSocket) -> Optional[str]:
    return websocket.query_params.get("token") or websocket.cookies.get(SESSION_COOKIE)


@dataclass
class AuthContext:
    """The signed-in principal, built per request from the session token."""
    user_id: str
    profile: Dict[str, Any] = field(default_factory=dict)

    @property
    def needs_onboarding(self) -> bool:
        return not self.profile.get("onboardingCompleted", False)


def get_store() -> DocumentStore:
    if database.store is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.store


def context_for_token(store: DocumentStore, token: Optional[str]) -> Optional[AuthContext]:
    user_id = decode_token(token)
    if user_id is None:
        return None
    profile = store.get_document("user", user_id)
    if profile is None:
        return None
    profile.pop("password", None)
    return AuthContext(user_id=user_id, profile=profile)


def get_auth_context(request: Request, store: DocumentStore = Depends(get_store)) -> AuthContext:
    ctx = context_for_token(store, token_from_request(request))
    if ctx is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return ctx


async def session_gate(request: Request, call_next):
    """Send page requests without a session cookie to the login page."""
    path = request.url.path
    if path.startswith(PROTECTED_PAGES) and not request.cookies.get(SESSION_COOKIE):
        logger.debug("No session for %s, redirecting to %s", path, LOGIN_PATH)
        return RedirectResponse(url=LOGIN_PATH, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    return await call_next(request)
