"""Authentication helpers integrating AWS Cognito JWTs.

The identity provider owns sign-in and token lifecycle; this module only turns
an ``Authorization: Bearer <id_token>`` header into a ``schemas.Identity``:

1. Downloads / caches the JSON Web Key Set (JWKS) for the Cognito User Pool.
2. Verifies signature, expiration, audience and issuer.
3. Maps the token claims onto an identity (sub, name, email, picture).

Whether that identity is onboarded (has a User document) or an admin is
decided against the database by the dependencies further down.

Settings used at runtime (see ``settings.py``):
    AUTH_ENABLED             - when false a fixed local identity is used
    COGNITO_USER_POOL_ID     - e.g. "us-east-1_abcd1234"
    COGNITO_APP_CLIENT_ID    - the user-pool client facing ID (audience)
    AWS_REGION               - pool region (falls back to us-east-1)
"""
from __future__ import annotations

import structlog
from functools import lru_cache
from typing import Annotated, Optional

import httpx
from fastapi import Depends, HTTPException, status, Request
from jose import jwt, JWTError
from pydantic import BaseModel
from sqlalchemy.orm import Session

import crud
import models
import schemas
from database import get_db
from errors import NotAuthorized, ProfileRequired
from settings import get_settings

logger = structlog.get_logger(__name__)

LOCAL_IDENTITY = schemas.Identity(
    id="local-dev",
    name="Local Developer",
    email="local@example.com",
    avatar_url=None,
)


class TokenPayload(BaseModel):
    sub: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    exp: int
    aud: str

    def to_identity(self) -> schemas.Identity:
        return schemas.Identity(id=self.sub, name=self.name, email=self.email, avatar_url=self.picture)


class AuthSettings(BaseModel):
    region: str
    user_pool_id: str
    client_id: str

    @property
    def issuer(self) -> str:  # cognito issuer URL
        return f"https://cognito-idp.{self.region}.amazonaws.com/{self.user_pool_id}"

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}/.well-known/jwks.json"


@lru_cache
def _load_settings() -> AuthSettings:
    settings = get_settings()
    if not settings.cognito_user_pool_id or not settings.cognito_app_client_id:
        raise RuntimeError("Cognito user pool and client id must be configured when auth is enabled")
    return AuthSettings(
        region=settings.aws_region or "us-east-1",
        user_pool_id=settings.cognito_user_pool_id,
        client_id=settings.cognito_app_client_id,
    )


@lru_cache
def _get_jwks():
    settings = _load_settings()
    logger.info("Fetching JWKS", jwks_url=settings.jwks_url)
    resp = httpx.get(settings.jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def verify_token(token: str) -> schemas.Identity:
    """Verify a Cognito JWT and return the identity it carries.

    Raises HTTPException(401) on failure. With auth disabled every token maps
    to the local identity.
    """
    if not get_settings().auth_enabled:
        return LOCAL_IDENTITY

    settings = _load_settings()
    jwks = _get_jwks()

    try:
        payload = jwt.decode(
            token,
            jwks,
            algorithms=["RS256"],
            audience=settings.client_id,
            issuer=settings.issuer,
            options={"verify_at_hash": False},
        )
        return TokenPayload.model_validate(payload).to_identity()
    except JWTError as exc:
        logger.warning("JWT verification failed", exc=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


# Helper to extract Authorization header (works with FastAPI DI)
def _get_authorization_header(request: Request) -> Optional[str]:
    return request.headers.get("Authorization")


# --- FastAPI dependencies ---
async def get_optional_identity(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
) -> Optional[schemas.Identity]:
    """The caller's identity, or None for anonymous visitors."""
    if not get_settings().auth_enabled:
        return LOCAL_IDENTITY

    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return verify_token(authorization.split(" ", 1)[1])


async def get_current_identity(
    identity: Optional[schemas.Identity] = Depends(get_optional_identity),
) -> schemas.Identity:
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return identity


async def get_current_user(
    identity: schemas.Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> models.User:
    """The caller's User document; absent until the profile form is completed."""
    user = crud.get_user(db, identity.id)
    if user is None:
        raise ProfileRequired()
    return user


async def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if not user.is_admin:
        logger.warning("Admin route denied", user_id=user.id)
        raise NotAuthorized("Administrator access required")
    return user
