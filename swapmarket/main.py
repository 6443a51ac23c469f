from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from .api.v1.api import router as api_router
from .core.config import get_settings
from .core.exceptions import CouplingInconsistency, SwapMarketError
from dotenv import load_dotenv
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
import asyncio
import logging
import uvicorn
from .core.dependencies import get_store
from .core.scheduler import run_scheduled_tasks

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting up in {settings.environment} environment")

    # Connect the store's change relay so live views see writes from other instances
    store = get_store()
    await store.start()

    # Start scheduler in a background task
    task = None
    if settings.environment == "production":
        task = asyncio.create_task(run_scheduled_tasks())
        logger.info("Started scheduler for background tasks")

    yield

    logger.info("Shutting down")

    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Scheduler task cancelled")

    await store.close()

app = FastAPI(
    title=settings.app_name,
    description="""
    API for the SwapMarket barter marketplace: trade offers between users,
    direct messages and notifications.

    ## Authentication

    Every endpoint expects a bearer token issued by the identity service.
    Websocket endpoints take the token as a `token` query parameter.
    """,
    version="1.0.0",
    debug=settings.debug,
    lifespan=lifespan,
    swagger_ui_parameters={"persistAuthorization": True},
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[*settings.cors_origins, settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)

# Custom OpenAPI schema
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "Enter the token without the 'Bearer' prefix"
        }
    }

    for path, operations in openapi_schema.get("paths", {}).items():
        if path in ("/", "/health"):
            continue
        for method in operations:
            if method != "parameters":
                operations[method]["security"] = [{"bearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

@app.get("/")
async def root():
    return {"message": f"Welcome to the {settings.app_name}", "environment": settings.environment}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.environment}

@app.exception_handler(SwapMarketError)
async def swapmarket_exception_handler(request: Request, exc: SwapMarketError):
    if isinstance(exc, CouplingInconsistency):
        logger.error(f"Trade offer {exc.trade_offer_id} needs reconciliation: {exc.__cause__}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors())}
    )

if __name__ == "__main__":
    uvicorn.run("swapmarket.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
