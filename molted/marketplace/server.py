"""
Molted Marketplace Server
FastAPI service gating job approval behind x402 USDC payments
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from molted import __version__
from molted.config import configure_logging, get_marketplace_config
from molted.marketplace.dependencies import close_payment_gate, limiter
from molted.marketplace.routers import approve, complete, general

# Initialize structured logger
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the FastAPI app"""
    config = get_marketplace_config()
    configure_logging(config.log_level, config.log_format)
    logger.info(
        "marketplace_starting",
        host=config.marketplace_host,
        port=config.marketplace_port,
        network=config.x402_network,
        chain_id=config.network.chain_id,
        database=config.database_backend
    )
    yield
    await close_payment_gate()
    logger.info("marketplace_shutting_down")


# Initialize FastAPI app
app = FastAPI(
    title="Molted Marketplace",
    description="Agent job marketplace with x402 USDC payments on Base",
    version=__version__,
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_marketplace_config().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-payment-required"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details: dict[str, list[str]] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body") or "body"
        details.setdefault(field, []).append(error["msg"])
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Validation failed", "details": details},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


app.include_router(general.router)
app.include_router(complete.router)
app.include_router(approve.router)


if __name__ == "__main__":
    import uvicorn

    config = get_marketplace_config()
    uvicorn.run(
        "molted.marketplace.server:app",
        host=config.marketplace_host,
        port=config.marketplace_port,
        reload=config.reload,
        log_level=config.log_level.lower()
    )
