from fastapi import APIRouter, HTTPException
import logging

from paygate.api.models.resource import ResourceResponse

logger = logging.getLogger(__name__)

router = APIRouter()

# Demo catalogue; access is priced by the x402 middleware, not here
CATALOGUE = {
    "weather": "Clear skies, 21C, wind 8 km/h NW.",
    "quote": "Simplicity is prerequisite for reliability.",
}


@router.get("/{name}", response_model=ResourceResponse)
async def get_resource(name: str) -> ResourceResponse:
    """
    Return a paid resource.

    Raises:
        HTTPException: 404 if the resource does not exist
    """
    content = CATALOGUE.get(name)
    if content is None:
        raise HTTPException(status_code=404, detail=f"Resource '{name}' not found")

    logger.info(f"Serving resource '{name}'")
    return ResourceResponse(name=name, content=content)
