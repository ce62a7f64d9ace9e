import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import health, query
from .config import settings
from .core.errors import GatewayError, InternalError, InvalidRequest
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .types import error_envelope

setup_logging()
logger = structlog.stdlib.get_logger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Multi-Chain Query Gateway",
    description="Balances, fees, prices, history and NFT data across chains behind one asset identifier scheme",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(error: GatewayError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=error_envelope(error).model_dump(mode="json"),
    )


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        {"loc": list(err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return _error_response(InvalidRequest("Request validation failed", details={"errors": problems}))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", path=request.url.path, exc_info=exc)
    return _error_response(InternalError())


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(query.router, tags=["Query"])


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "Multi-Chain Query Gateway",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/healthz",
        "networks": "/api/networks",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
