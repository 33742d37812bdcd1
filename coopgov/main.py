from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coopgov.api import community, coop_config, experts, proposals
from coopgov.config import config
from coopgov.lib.logger import configure_logger, setup_uvicorn_logging
from coopgov.middleware.logging import LoggingMiddleware

# Configure module logger
logger = configure_logger(__name__)

# Define app
app = FastAPI(
    title="Coop Governance",
    description="Proposal evaluation and governance API for cooperatives",
    version="0.1.0",
)

# Add logging middleware first
app.add_middleware(LoggingMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Simple health check endpoint
@app.get("/")
async def health_check():
    """Simple health check endpoint."""
    return {"status": "healthy"}


# Load API routes
app.include_router(coop_config.router)
app.include_router(proposals.router)
app.include_router(experts.router)
app.include_router(community.router)


@app.on_event("startup")
async def startup_event():
    """Run web server startup tasks."""
    # Configure JSON logging after uvicorn is fully initialized
    setup_uvicorn_logging()
    logger.info(
        "Web server startup complete",
        extra={"db_backend": config.db.backend},
    )


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Web server shutdown complete")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.api.host, port=config.api.port)
