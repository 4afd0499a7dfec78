from contextlib import asynccontextmanager

from fastapi import FastAPI
from paygate.core.config import settings
from paygate.api.endpoints import resources, x402
from paygate.x402.facilitator import get_facilitator_client
from paygate.x402.middleware import X402Middleware
import logging

# Configure basic logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Release the facilitator connection pool
    await get_facilitator_client().aclose()
    get_facilitator_client.cache_clear()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json", # Standard location for OpenAPI spec
    lifespan=lifespan,
)

app.add_middleware(X402Middleware)

# Include the API router(s)
# The prefix ensures all routes start with /api/v1
app.include_router(resources.router, prefix=f"{settings.API_V1_STR}/resources", tags=["resources"])
app.include_router(x402.router, prefix=f"{settings.API_V1_STR}/x402", tags=["x402"])

@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """ Basic health check endpoint. """
    logger.info("Root endpoint '/' accessed.")
    return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}
