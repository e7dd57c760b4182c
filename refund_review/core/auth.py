"""
Auth0 JWT verification and principal resolution.

A request is served only once its bearer token verifies against the
tenant's JWKS and the token subject resolves to a stored reviewer
profile. Anything less raises ``UnauthorizedError``.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

import httpx
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError, jwt

from refund_review.core.config import Settings, get_settings
from refund_review.core.errors import UnauthorizedError
from refund_review.domain.models.reviewer import Reviewer
from refund_review.services.reviewer_directory import ReviewerDirectory

logger = logging.getLogger(__name__)

INVALID_OR_EXPIRED_TOKEN_MSG = "Invalid or expired token"

_async_http: httpx.AsyncClient | None = None


def get_async_http_client() -> httpx.AsyncClient:
    global _async_http
    if _async_http is None or _async_http.is_closed:
        _async_http = httpx.AsyncClient(timeout=httpx.Timeout(10.0))
    return _async_http


async def close_async_http_client() -> None:
    global _async_http
    if _async_http is not None:
        try:
            if not _async_http.is_closed:
                await _async_http.aclose()
        except RuntimeError:
            # Event loop already closed
            pass
        finally:
            _async_http = None


class JWKSCache:
    """Async JWKS cache with TTL. Falls back to the stale copy when a refresh fails."""

    def __init__(self, ttl_seconds: int = 600):
        self._cache: dict[str, Any] | None = None
        self._cache_time: datetime | None = None
        self.ttl_seconds = ttl_seconds
        self._lock = asyncio.Lock()

    def _is_cache_valid(self, now: datetime) -> bool:
        return (
            self._cache is not None
            and self._cache_time is not None
            and (now - self._cache_time).total_seconds() < self.ttl_seconds
        )

    async def get_jwks(self, jwks_url: str) -> dict[str, Any]:
        now = datetime.now(UTC)
        async with self._lock:
            if self._is_cache_valid(now):
                return self._cache

            try:
                logger.info("Fetching JWKS", extra={"jwks_url": jwks_url})
                response = await get_async_http_client().get(jwks_url)
                response.raise_for_status()
                self._cache = response.json()
                self._cache_time = now
                return self._cache
            except (httpx.HTTPError, ValueError) as e:
                logger.error("Failed to fetch JWKS", extra={"error": str(e)})
                if self._cache is not None:
                    logger.warning("Using stale JWKS cache")
                    return self._cache
                raise UnauthorizedError(
                    "Unable to verify token: authentication service unavailable"
                ) from e

    def clear(self) -> None:
        self._cache = None
        self._cache_time = None


_jwks_cache = JWKSCache()


def get_jwks_cache() -> JWKSCache:
    return _jwks_cache


def find_signing_key(jwks: dict[str, Any], token: str) -> dict[str, Any]:
    """Pick the JWKS key matching the token's ``kid``."""
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as e:
        logger.warning("Invalid JWT header", extra={"error": str(e)})
        raise UnauthorizedError(INVALID_OR_EXPIRED_TOKEN_MSG) from None

    for key in jwks.get("keys", []):
        if key.get("kid") == header.get("kid"):
            return {name: key[name] for name in ("kty", "kid", "use", "n", "e") if name in key}

    logger.error("No JWKS key matches token", extra={"kid": header.get("kid")})
    raise UnauthorizedError(INVALID_OR_EXPIRED_TOKEN_MSG)


def decode_token(token: str, key: dict[str, Any], settings: Settings) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            key,
            algorithms=settings.auth0.algorithms_list,
            audience=settings.auth0.audience,
            issuer=settings.auth0.issuer_url,
        )
    except jwt.ExpiredSignatureError:
        logger.warning("Token has expired")
        raise UnauthorizedError(INVALID_OR_EXPIRED_TOKEN_MSG) from None
    except JWTError as e:
        logger.warning("JWT verification failed", extra={"error": str(e)})
        raise UnauthorizedError(INVALID_OR_EXPIRED_TOKEN_MSG) from None


async def verify_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    settings = settings or get_settings()
    cache = get_jwks_cache()
    cache.ttl_seconds = settings.auth0.jwks_cache_ttl
    jwks = await cache.get_jwks(settings.auth0.jwks_url)
    return decode_token(token, find_signing_key(jwks, token), settings)


def get_token_subject(payload: dict[str, Any]) -> str:
    sub = payload.get("sub")
    if not sub:
        logger.error("JWT payload missing 'sub' claim")
        raise UnauthorizedError("Invalid token - missing user identifier")
    return sub


async def resolve_principal(
    credentials: HTTPAuthorizationCredentials | None,
    directory: ReviewerDirectory,
    settings: Settings | None = None,
) -> Reviewer:
    """Turn request credentials into a reviewer profile, or raise ``UnauthorizedError``.

    In local bypass mode the configured development reviewer is loaded
    instead; it must still exist in the reviewers table.
    """
    settings = settings or get_settings()

    if settings.security.skip_jwt_validation is True:
        reviewer_id = settings.security.dev_reviewer_id
        logger.info("JWT validation bypassed", extra={"reviewer_id": reviewer_id})
    else:
        if credentials is None:
            logger.warning("Missing Authorization header")
            raise UnauthorizedError("Missing authorization header")
        payload = await verify_token(credentials.credentials, settings)
        reviewer_id = get_token_subject(payload)

    reviewer = await directory.get(reviewer_id)
    if reviewer is None:
        logger.warning("No reviewer profile for subject", extra={"reviewer_id": reviewer_id})
        raise UnauthorizedError("No reviewer profile for this account")
    return reviewer
