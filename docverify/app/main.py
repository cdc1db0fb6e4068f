import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .routes.admin import router as admin_router
from .routes.ai import router as ai_router
from .routes.auth import router as auth_router
from .routes.blockchain import router as blockchain_router
from .routes.certificates import router as certificates_router
from .routes.verify import router as verify_router
from .services.ai_service import ai_service
from .services.blockchain_service import BlockchainUnavailableError, blockchain_service
from .services.cache_service import cache_service
from .utils.logging import logger
from .utils.mongo import mongo_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.log_step("starting_docverify_service", {
        "host": settings.APP_HOST,
        "port": settings.APP_PORT,
        "debug": settings.DEBUG,
        "python_version": sys.version,
        "upload_dir": str(settings.upload_path)
    })

    settings.upload_path.mkdir(parents=True, exist_ok=True)
    if not mongo_manager.is_connected:
        mongo_manager.connect()

    anchored = blockchain_service.initialize()
    logger.log_step("service_dependencies_ready", {
        "mongodb": mongo_manager.is_connected,
        "blockchain": anchored,
        "ai": ai_service.is_available()
    })

    yield

    mongo_manager.close()
    logger.log_step("docverify_service_shutdown")


app = FastAPI(
    title=settings.SERVICE_NAME,
    description="Document issuance and tiered verification with optional blockchain anchoring.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    logger.log_step("request_completed", {
        "method": request.method,
        "url": str(request.url),
        "status_code": response.status_code,
        "process_time": process_time
    })

    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail, "data": None},
        headers=exc.headers,
    )


@app.exception_handler(BlockchainUnavailableError)
async def blockchain_unavailable_handler(request: Request, exc: BlockchainUnavailableError):
    logger.log_error("blockchain_unavailable", {
        "method": request.method,
        "url": str(request.url)
    })
    return JSONResponse(
        status_code=503,
        content={"success": False, "message": str(exc), "data": None}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.log_error("unhandled_exception", {
        "method": request.method,
        "url": str(request.url),
        "error": str(exc)
    })

    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "data": None}
    )


app.include_router(auth_router)
app.include_router(certificates_router)
app.include_router(verify_router)
app.include_router(admin_router)
app.include_router(ai_router)
app.include_router(blockchain_router)


@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "service": settings.SERVICE_NAME,
        "mongodb": mongo_manager.is_connected,
        "blockchain": blockchain_service.is_connected,
        "ai": ai_service.is_available(),
        "cache": cache_service.get_stats()
    }


@app.get("/")
async def root():
    return {
        "message": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "endpoints": {
            "health": "/api/health",
            "auth": "/api/auth",
            "upload": "/api/upload",
            "certificates": "/api/certificates",
            "verify": "/api/verify",
            "admin": "/api/admin",
            "ai": "/api/ai",
            "blockchain": "/api/blockchain",
            "docs": "/docs"
        }
    }
