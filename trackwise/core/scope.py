"""Caller scope resolution for the analytics endpoints.

A scope is the set of domain ids a caller may read. How it is derived is an
authentication concern owned by the dashboard; the default resolver decodes
the dashboard's JWT and treats its subject as the owner of the domains.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import Depends, Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .aggregation_service import Scope
from .config import settings
from .database import SessionLocal
from .errors import ScopeResolutionError
from ..crud import domains as domains_crud

TOKEN_COOKIE = "token"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Verify and decode a JWT token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def extract_token(request: Request) -> Optional[str]:
    """Bearer header first, then the dashboard's session cookie."""
    authorization = request.headers.get("authorization")
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return request.cookies.get(TOKEN_COOKIE) or None


class ScopeResolver(ABC):
    """Maps an incoming request to the domain ids its caller may read."""

    @abstractmethod
    def resolve(self, request: Request) -> Scope:
        """Raise ScopeResolutionError when the caller cannot be identified."""


class BearerScopeResolver(ScopeResolver):
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def resolve(self, request: Request) -> Scope:
        token = extract_token(request)
        if not token:
            raise ScopeResolutionError("Unauthorized")

        payload = verify_token(token)
        if not payload:
            raise ScopeResolutionError("Unauthorized")

        owner_id = payload.get("sub") or payload.get("userId")
        if owner_id is None:
            raise ScopeResolutionError("Unauthorized")

        db = self._session_factory()
        try:
            return frozenset(domains_crud.get_domain_ids_for_owner(db, str(owner_id)))
        finally:
            db.close()


# Global resolver instance
scope_resolver = BearerScopeResolver(SessionLocal)


def get_scope_resolver() -> ScopeResolver:
    return scope_resolver


def get_domain_scope(request: Request, resolver: ScopeResolver = Depends(get_scope_resolver)) -> Scope:
    """Dependency yielding a non-empty scope for the current caller."""
    scope = resolver.resolve(request)
    if not scope:
        raise ScopeResolutionError("No domains found", http_status=404)
    return scope
