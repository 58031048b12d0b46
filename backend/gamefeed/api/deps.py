from __future__ import annotations

from collections.abc import Generator
import json
import time
import urllib.request

from fastapi import Depends, Header
from jose import jwt
from jose.exceptions import JWTError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamefeed.core.errors import Unauthorized
from gamefeed.core.settings import settings
from gamefeed.db.session import SessionLocal
from gamefeed.models.profile import Profile
from gamefeed.services.library_pipeline import LoggingOutbox, OutboxHook


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_profile(db: Session, external_id: str) -> Profile:
    external_id = (external_id or "").strip()
    if not external_id:
        raise Unauthorized("Missing user identity")

    profile = db.execute(select(Profile).where(Profile.external_id == external_id)).scalars().one_or_none()
    if profile:
        return profile

    profile = Profile(external_id=external_id)
    db.add(profile)
    try:
        db.commit()
    except IntegrityError:
        # Another request created it first.
        db.rollback()
        return db.execute(select(Profile).where(Profile.external_id == external_id)).scalars().one()
    db.refresh(profile)
    return profile


_JWKS_CACHE: dict | None = None
_JWKS_CACHE_UNTIL: float = 0


def _get_jwks() -> dict:
    global _JWKS_CACHE, _JWKS_CACHE_UNTIL

    if _JWKS_CACHE and time.time() < _JWKS_CACHE_UNTIL:
        return _JWKS_CACHE

    if not settings.AUTH0_DOMAIN:
        raise RuntimeError("AUTH0_DOMAIN not configured")

    url = f"https://{settings.AUTH0_DOMAIN}/.well-known/jwks.json"
    with urllib.request.urlopen(url, timeout=5) as resp:
        data = json.loads(resp.read().decode("utf-8"))

    _JWKS_CACHE = data
    _JWKS_CACHE_UNTIL = time.time() + 3600
    return data


def get_current_user_id(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> str:
    # Dev fallback until Auth0 is configured.
    auth0_configured = bool(settings.AUTH0_DOMAIN and settings.AUTH0_AUDIENCE)
    if not auth0_configured:
        if not x_user_id:
            raise Unauthorized("Missing X-User-Id header")
        return x_user_id

    # Auth0 is configured: require a real Bearer token.
    if not authorization:
        raise Unauthorized("Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthorized("Invalid Authorization header")

    token = parts[1]

    try:
        unverified_header = jwt.get_unverified_header(token)
        kid = unverified_header.get("kid")
        jwks = _get_jwks()
        key = next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)
        if not key:
            raise Unauthorized("Unable to find signing key")

        payload = jwt.decode(
            token,
            key,
            algorithms=["RS256"],
            audience=settings.AUTH0_AUDIENCE,
            issuer=f"https://{settings.AUTH0_DOMAIN}/",
        )
    except JWTError:
        raise Unauthorized("Invalid token")

    sub = payload.get("sub")
    if not sub:
        raise Unauthorized("Token missing sub")
    return str(sub)


def get_current_profile(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> Profile:
    return ensure_profile(db, user_id)


def get_outbox() -> OutboxHook:
    return LoggingOutbox()
