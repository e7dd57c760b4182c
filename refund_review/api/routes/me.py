"""Current reviewer route."""

from dataclasses import asdict

from fastapi import APIRouter

from refund_review.core.dependencies import CurrentReviewer
from refund_review.domain.roles import capabilities_for
from refund_review.schemas.notification import CapabilitiesResponse, MeResponse

router = APIRouter(prefix="/me", tags=["me"])


@router.get("", response_model=MeResponse)
async def get_me(reviewer: CurrentReviewer) -> MeResponse:
    """Return the calling reviewer and what their role allows."""
    caps = asdict(capabilities_for(reviewer.role))
    caps["scope"] = caps["scope"].value
    return MeResponse(reviewer=reviewer, capabilities=CapabilitiesResponse(**caps))
