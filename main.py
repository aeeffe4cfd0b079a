import asyncio
import os
import time
from contextlib import asynccontextmanager, suppress

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database

from cache import ProductCache, get_cache
from database import db, ensure_indexes, get_db
from logging_config import configure_logging, get_logger, set_request_id
from mailer import mailer
from routers import admin, auth, payments, products, users
from settings import settings
from stock_alerts import run_daily_digest

logger = get_logger("shopsmart.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    logger.info("ShopSmart backend starting", database=settings.DATABASE_NAME)

    try:
        await asyncio.to_thread(ensure_indexes, db)
    except Exception:
        logger.exception("Could not create indexes")

    digest_task = None
    if settings.SCHEDULER_ENABLED:
        digest_task = asyncio.create_task(run_daily_digest(db, mailer, settings.STOCK_DIGEST_HOUR))
        logger.info("Low stock digest scheduled", hour=settings.STOCK_DIGEST_HOUR)

    yield

    if digest_task:
        digest_task.cancel()
        with suppress(asyncio.CancelledError):
            await digest_task
    logger.info("ShopSmart backend stopped")


app = FastAPI(title=settings.API_TITLE, version=settings.API_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled error", method=request.method, path=request.url.path)
        response = JSONResponse(status_code=500, content={"detail": "Internal server error"})
    logger.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(auth.router)
app.include_router(products.router)
app.include_router(users.router)
app.include_router(payments.router)
app.include_router(admin.router)

if settings.STORAGE_PROVIDER.lower() == "local":
    app.mount("/uploads", StaticFiles(directory=settings.LOCAL_UPLOAD_DIR, check_dir=False), name="uploads")


@app.get("/")
def read_root():
    return {"message": "E-commerce backend is running"}


@app.get("/health")
def health(database: Database = Depends(get_db), cache: ProductCache = Depends(get_cache)):
    response = {"backend": "ok", "database": "degraded", "cache": "degraded", "collections": []}
    try:
        database.command("ping")
        response["database"] = "ok"
        response["collections"] = database.list_collection_names()[:10]
    except Exception as e:
        logger.warning("Database health check failed", error=str(e))
    if cache.ping():
        response["cache"] = "ok"
    response["status"] = "ok" if response["database"] == response["cache"] == "ok" else "degraded"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.PORT))
    uvicorn.run(app, host="0.0.0.0", port=port)
