import logging

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest
from sqlalchemy.exc import SQLAlchemyError

from . import otel
from .billing import routers as billing_routers
from .billing.errors import BillingFeatureDisabled, UsageLimitExceeded, UsageStoreError
from .billing.guard import limit_exceeded_body
from .db import init_db
from .logging_utils import install_redaction
from .middleware import auth_middleware
from .routers import companies, health, invoices, quotes

logging.basicConfig(level=logging.INFO)
install_redaction()
logger = logging.getLogger(__name__)

app = FastAPI(title="Invoicer", version="0.1.0")
otel.instrument(app)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Usage-Used", "X-Usage-Remaining", "X-Usage-Limit", "X-Usage-Warn", "Location"],
)

# Auth middleware (runs after CORS)
app.middleware("http")(auth_middleware)

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by method and path",
    ["method", "path", "status"],
)

INTERNAL_ERROR = {"error": "internal_error", "code": "INTERNAL_ERROR"}


@app.on_event("startup")
def startup() -> None:
    init_db()


@app.middleware("http")
async def record_requests(request: Request, call_next):
    response = await call_next(request)
    http_requests_total.labels(
        method=request.method, path=request.url.path, status=str(response.status_code)
    ).inc()
    return response


@app.exception_handler(UsageLimitExceeded)
async def usage_limit_exceeded_handler(request: Request, exc: UsageLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=402, content=limit_exceeded_body(exc.result))


@app.exception_handler(UsageStoreError)
async def usage_store_error_handler(request: Request, exc: UsageStoreError) -> JSONResponse:
    logger.error("Usage store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content=INTERNAL_ERROR)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc.__class__.__name__)
    return JSONResponse(status_code=500, content=INTERNAL_ERROR)


@app.exception_handler(BillingFeatureDisabled)
async def feature_disabled_handler(request: Request, exc: BillingFeatureDisabled) -> JSONResponse:
    return JSONResponse(
        status_code=501,
        content={"error": "feature_disabled", "code": exc.code.value, "feature": exc.feature},
    )


@app.get("/metrics")
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(health.router)
app.include_router(companies.router)
app.include_router(quotes.router)
app.include_router(invoices.router)
app.include_router(billing_routers.router)
