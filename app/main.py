# app/main.py
from fastapi import FastAPI
from app.core.config import settings
from app.api.endpoints import premium, credits
from app.x402.middleware import X402Middleware
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_PREFIX}/openapi.json"
)

# Payment gate for the routes listed in app.x402.middleware.PROTECTED_ENDPOINTS
app.add_middleware(X402Middleware)

app.include_router(premium.router, prefix=settings.API_PREFIX, tags=["premium"])
app.include_router(credits.router, prefix=settings.API_PREFIX, tags=["credits"])

if settings.DEVELOPMENT_MODE:
    logger.warning("DEVELOPMENT_MODE is enabled: x402 payment bypass is active")


@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """ Basic health check endpoint. """
    logger.info("Root endpoint '/' accessed.")
    return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}
