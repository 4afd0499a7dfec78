from fastapi import APIRouter, HTTPException
import logging

from paygate.api.models.resource import AuditStatsResponse, SupportedKindModel, SupportedResponse
from paygate.x402 import audit
from paygate.x402.errors import FacilitatorUnavailable
from paygate.x402.facilitator import get_facilitator_client

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/supported", response_model=SupportedResponse)
async def get_supported() -> SupportedResponse:
    """
    Relay the payment kinds supported by the facilitator.

    Raises:
        HTTPException: 503 if the facilitator is unavailable
    """
    try:
        kinds = await get_facilitator_client().supported()
    except FacilitatorUnavailable as e:
        logger.error(f"Failed to fetch supported payment kinds: {e}")
        raise HTTPException(
            status_code=503,
            detail="Payment facilitator unavailable"
        )

    return SupportedResponse(
        kinds=[
            SupportedKindModel(x402Version=k.x402_version, scheme=k.scheme, network=k.network)
            for k in kinds
        ]
    )


@router.get("/audit/stats", response_model=AuditStatsResponse)
async def get_audit_stats() -> AuditStatsResponse:
    """Event counts from the payment audit log."""
    return AuditStatsResponse(**audit.get_audit_stats())
