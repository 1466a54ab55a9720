"""Development-only routes that drive the simulated snapshot provider.

Lets a developer change what a simulated profile shows (bio text, header
image, outages) while agreements are being verified. Every route answers 403
unless the runtime uses the simulated provider.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from billboard_keeper.api.deps import get_simulated_provider
from billboard_keeper.domain.interfaces import normalize_handle
from billboard_keeper.infrastructure.snapshot.simulated import (  # noqa: TC001
    SimulatedProfile,
    SimulatedSnapshotProvider,
)
from billboard_keeper.logging_config import get_logger
from billboard_keeper.schemas.agreement import DevProfileResponse, DevProfileUpdate

router = APIRouter(prefix="/dev", tags=["Dev"])
logger = get_logger(__name__)


def _to_response(handle: str, profile: SimulatedProfile) -> DevProfileResponse:
    return DevProfileResponse(
        handle=normalize_handle(handle),
        image_url=profile.image_url,
        text=profile.text,
        display_name=profile.display_name,
        available=profile.available,
        failure_reason=profile.failure_reason,
    )


@router.get("/profiles", response_model=list[str], summary="List simulated handles")
async def list_profiles(
    provider: SimulatedSnapshotProvider = Depends(get_simulated_provider),
) -> list[str]:
    return provider.handles()


@router.get(
    "/profiles/{handle}",
    response_model=DevProfileResponse,
    summary="Get a simulated profile",
)
async def get_profile(
    handle: str,
    provider: SimulatedSnapshotProvider = Depends(get_simulated_provider),
) -> DevProfileResponse:
    profile = provider.get(handle)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"No simulated profile for @{handle}")
    return _to_response(handle, profile)


@router.put(
    "/profiles/{handle}",
    response_model=DevProfileResponse,
    summary="Create or update a simulated profile",
)
async def put_profile(
    handle: str,
    update: DevProfileUpdate,
    provider: SimulatedSnapshotProvider = Depends(get_simulated_provider),
) -> DevProfileResponse:
    """Apply the given fields; omitted fields keep their current value."""
    changes = update.model_dump(exclude_none=True, exclude={"fail_next"})
    profile = provider.update(handle, **changes)
    if update.fail_next:
        provider.fail_next(handle, update.fail_next)

    logger.info(
        "dev.profile_updated",
        handle=normalize_handle(handle),
        fields=sorted(changes),
        fail_next=update.fail_next,
    )
    return _to_response(handle, profile)
