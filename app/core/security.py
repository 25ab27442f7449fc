import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import httpx
from jose import jwt, JWTError
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.config import settings

logger = logging.getLogger(__name__)

# Bearer token extractor (auto_error=False so we control the 401 body)
security = HTTPBearer(auto_error=False)

ALLOWED_ALGORITHMS = ["RS256", "ES256", "EdDSA", "HS256"]


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller, taken from the Supabase JWT."""
    id: str
    email: Optional[str] = None


@lru_cache(maxsize=1)
def get_jwks() -> dict:
    """Fetch Supabase JWKS for JWT verification (cached)."""
    jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
    response = httpx.get(jwks_url, timeout=10.0)
    response.raise_for_status()
    return response.json()


def _find_key(kid: Optional[str]) -> Optional[dict]:
    for k in get_jwks().get("keys", []):
        if k.get("kid") == kid:
            return k
    return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_jwt(token: str) -> dict:
    """Verify a Supabase JWT and return the payload.

    HS256 tokens are checked against the project JWT secret; asymmetric
    tokens against the project JWKS.
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
        alg = unverified_header.get("alg")
        kid = unverified_header.get("kid")

        if alg not in ALLOWED_ALGORITHMS:
            logger.warning(f"JWT unsupported algorithm: {alg}")
            raise _unauthorized(f"Invalid token: unsupported algorithm {alg}")

        if alg == "HS256":
            if not settings.supabase_jwt_secret:
                raise _unauthorized("Invalid token: HS256 tokens are not accepted")
            key = settings.supabase_jwt_secret
        else:
            key = _find_key(kid)
            if not key:
                # JWKS might be stale, refresh once
                logger.warning(f"JWT kid={kid} not found in cached JWKS, refreshing...")
                get_jwks.cache_clear()
                key = _find_key(kid)
            if not key:
                logger.error(f"JWT kid={kid} not found even after JWKS refresh")
                raise _unauthorized(f"Invalid token: key not found for kid={kid}")

        return jwt.decode(
            token,
            key,
            algorithms=[alg],
            audience="authenticated",
            options={"verify_aud": True},
        )

    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise _unauthorized(f"Invalid token: {str(e)}")


def require_auth(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> dict:
    """Require authentication - raises 401 if not authenticated."""
    if not credentials:
        logger.warning("Auth required but no Bearer token provided")
        raise _unauthorized("Not authenticated")
    return verify_jwt(credentials.credentials)


def get_caller_identity(auth_payload: dict = Depends(require_auth)) -> CallerIdentity:
    """Resolve the authenticated caller from the JWT payload.

    Raises:
        HTTPException 401 if the token carries no subject
    """
    user_id = auth_payload.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token payload: missing sub claim")
    return CallerIdentity(id=user_id, email=auth_payload.get("email"))
