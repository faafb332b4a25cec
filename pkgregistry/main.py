import logging

from fastapi import FastAPI

from pkgregistry.api.packages import router as packages_router
from pkgregistry.api.publish import router as publish_router
from pkgregistry.core.dependencies import get_services

# Configure logging; the level is raised or lowered from registry.json on startup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Package Registry",
    version="0.1.0",
    description="FastAPI-based package registry with versioned publishing and latest/next tags.",
)


@app.on_event("startup")
async def startup_event() -> None:
    """
    Load registry configuration, apply its log level and prepare the
    document store.
    """
    services = get_services()
    logging.getLogger().setLevel(services.config.log_level.upper())
    await services.initialize()
    logger.info(f"Registry '{services.config.display_name}' serving data from {services.data_dir}")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    # Let pending search notifications finish before the loop goes away.
    await get_services().indexing.wait_for_search_indexing()


@app.get("/health")
async def health() -> dict:
    """
    Lightweight health check endpoint.
    """
    return {"status": "ok"}


app.include_router(packages_router, prefix="/api/v2", tags=["packages"])
app.include_router(publish_router, prefix="/api/v2", tags=["publish"])


if __name__ == "__main__":
    """
    Allow running `python -m pkgregistry.main` to start the Uvicorn
    development server.
    """
    import uvicorn

    uvicorn.run(
        "pkgregistry.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
