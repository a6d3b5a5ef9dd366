"""
Main FastAPI application for the audit-script storefront API.
Serves health, auth, captcha, catalog, purchases, checkout and metrics.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import UpstreamUnavailableError
from app.core.logging import configure_logging
from app.api.routes import admin, auth, captcha, checkout, health, products, purchases
from app.db.session import init_db
from app.utils.metrics import router as metrics_router


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Storefront API",
    description="Captcha-gated accounts, entitlements and checkout for audit scripts",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = [settings.public_base_url, "http://localhost:5173", "http://127.0.0.1:5173"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(UpstreamUnavailableError)
async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailableError) -> JSONResponse:
    logger.warning(
        "upstream_unavailable",
        extra={"path": request.url.path, "method": request.method, "error": str(exc)},
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Service temporarily unavailable, please retry"},
        headers={"Retry-After": "5"},
    )


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(captcha.router)
app.include_router(products.router)
app.include_router(purchases.router)
app.include_router(checkout.router)
app.include_router(admin.router)
app.include_router(metrics_router)
