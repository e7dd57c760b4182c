"""
FastAPI dependency injection utilities.

The store, change feed and notification fanout live on ``app.state`` and
are created once in the application lifespan. Services are cheap and are
built per request around them.
"""

import logging
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from refund_review.core.auth import resolve_principal
from refund_review.core.config import Settings, get_settings
from refund_review.core.errors import AccessDeniedError
from refund_review.core.logging import bind_reviewer
from refund_review.domain.models.reviewer import Reviewer
from refund_review.domain.roles import capabilities_for
from refund_review.persistence.store import Store
from refund_review.services.ingestion_service import IngestionService
from refund_review.services.notification_fanout import NotificationFanout
from refund_review.services.review_service import ReviewService
from refund_review.services.reviewer_directory import ReviewerDirectory

logger = logging.getLogger(__name__)

# Authorization header is optional so bypass mode works without one
_optional_security = HTTPBearer(auto_error=False)


def get_settings_dep() -> Settings:
    return get_settings()


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_fanout(request: Request) -> NotificationFanout:
    return request.app.state.fanout


def get_reviewer_directory(store: Store = Depends(get_store)) -> ReviewerDirectory:
    return ReviewerDirectory(store)


def get_review_service(
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
) -> ReviewService:
    return ReviewService(store, atomic=settings.database.atomic_audit_writes)


def get_ingestion_service(store: Store = Depends(get_store)) -> IngestionService:
    return IngestionService(store)


async def get_current_reviewer(
    credentials: HTTPAuthorizationCredentials | None = Depends(_optional_security),
    directory: ReviewerDirectory = Depends(get_reviewer_directory),
    settings: Settings = Depends(get_settings_dep),
) -> Reviewer:
    """
    Resolve the calling reviewer.

    Raises:
        UnauthorizedError: If no token is present, it fails verification, or
            its subject has no reviewer profile
    """
    reviewer = await resolve_principal(credentials, directory, settings)
    bind_reviewer(reviewer)
    return reviewer


def require_capability(capability: str):
    """Dependency factory that enforces one role capability.

    Usage:
        @router.post("/transactions")
        async def ingest(reviewer: Reviewer = Depends(require_capability("can_override"))):
            ...
    """

    def capability_checker(reviewer: Reviewer = Depends(get_current_reviewer)) -> Reviewer:
        if not getattr(capabilities_for(reviewer.role), capability):
            logger.warning(
                "Access denied - reviewer lacks capability",
                extra={"reviewer_id": reviewer.id, "capability": capability},
            )
            raise AccessDeniedError(
                "Insufficient permissions",
                details={"capability": capability, "role": reviewer.role.value},
            )
        return reviewer

    return capability_checker


CurrentReviewer = Annotated[Reviewer, Depends(get_current_reviewer)]
RequireOverride = Annotated[Reviewer, Depends(require_capability("can_override"))]
