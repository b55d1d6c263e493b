"""FastAPI application entrypoint."""
import logging
import sys

from fastapi import FastAPI
from pydantic import BaseModel

from riskguard import __version__
from riskguard.config import Config
from riskguard.notifier import Notifier
from riskguard.portfolio.api import router as portfolio_router
from riskguard.risk.api import router as risk_router
from riskguard.services import RiskGuardServices, current_services, set_services
from riskguard.storage import db

# Configure logging
logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Validate config on startup
try:
    Config.validate()
except ValueError as e:
    logger.error(f"Configuration error: {e}")
    sys.exit(1)

app = FastAPI(title="RiskGuard", version=__version__)


class MessageResponse(BaseModel):
    """Standard response model."""
    message: str


app.include_router(risk_router)
app.include_router(portfolio_router)


@app.on_event("startup")
async def startup_event() -> None:
    """Initialize the database and start the background ticks."""
    logger.info("Initializing risk engine...")
    try:
        await db.init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise

    services = RiskGuardServices.build(
        db.AsyncSessionLocal,
        notifier=Notifier(webhook_url=Config.ALERT_WEBHOOK_URL),
    )
    await services.register_strategies()
    services.start()
    set_services(services)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    """Cleanup on shutdown."""
    logger.info("Shutting down...")

    services = current_services()
    if services is not None:
        logger.info("Stopping background ticks...")
        await services.stop()
        set_services(None)

    logger.info("Closing database connections...")
    try:
        await db.close_db()
    except Exception as e:
        logger.warning(f"Error closing database: {e}")


@app.get("/health")
async def health_check() -> MessageResponse:
    """Health check endpoint."""
    return MessageResponse(message="OK")


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting {Config.SERVICE_NAME} v{__version__} on 0.0.0.0:8000")
    logger.info(f"Alert webhook: {Config.ALERT_WEBHOOK_URL or 'disabled'}")

    uvicorn.run(
        "riskguard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False
    )
