from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import time
import structlog

from prepadi.db import init_db
from prepadi.routers import auth as auth_router
from prepadi.routers import admin as admin_router
from prepadi.routers import quiz as quiz_router
from prepadi.services.logging import configure_logging, log_api_request
from prepadi.services.monitoring import health_checker, get_metrics, REQUEST_COUNT, REQUEST_DURATION
from prepadi.middleware.rate_limit import limiter

# Configure logging
configure_logging()
logger = structlog.get_logger()

app = FastAPI(
    title="Prepadi",
    description="Exam preparation API: question bank, practice quizzes and offline sync",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def observe_requests(request: Request, call_next):
    start_time = time.perf_counter()
    log_api_request(request)

    try:
        response = await call_next(request)
    except Exception as e:
        log_api_request(request, error=e, duration=time.perf_counter() - start_time)
        raise

    process_time = time.perf_counter() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    # route template keeps label cardinality bounded
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()
    REQUEST_DURATION.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(process_time)

    log_api_request(request, response, duration=process_time)

    return response


# ----------------- Health & Monitoring Endpoints -----------------
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return health_checker.get_health_status()


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return get_metrics()


# ----------------- Startup -----------------
@app.on_event("startup")
def on_startup():
    init_db()
    logger.info("application_started")


# ----------------- Routers -----------------
app.include_router(auth_router.router)
app.include_router(admin_router.router)
app.include_router(quiz_router.router)
