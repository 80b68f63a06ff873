from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from .database import engine, Base
from .routers import deployments, repositories
from .config import get_settings
from .exceptions import ControlPlaneError
from .services.task_manager import get_task_manager
import logging

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title=f"{settings.product_name} control plane API")


@app.exception_handler(ControlPlaneError)
async def control_plane_error_handler(request: Request, exc: ControlPlaneError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content={"code": exc.code, "detail": exc.message},
    )


# Create tables
@app.on_event("startup")
async def startup():
    import asyncio

    # Retry database connection up to 5 times with exponential backoff
    max_retries = 5
    for attempt in range(max_retries):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")
            break
        except Exception as e:
            if attempt < max_retries - 1:
                wait_time = 2 ** attempt  # 1, 2, 4, 8 seconds
                logger.warning(f"Database connection attempt {attempt + 1} failed: {type(e).__name__}: {e}")
                logger.info(f"Retrying in {wait_time} seconds...")
                await asyncio.sleep(wait_time)
            else:
                logger.error(f"Failed to connect to database after {max_retries} attempts: {type(e).__name__}: {e}")
                raise


@app.on_event("shutdown")
async def shutdown():
    await get_task_manager().shutdown()


app.include_router(repositories.router)
app.include_router(deployments.router)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": f"{settings.product_name}-control-plane"}
