"""Main FastAPI application."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from beatthemarket import __version__
from beatthemarket.config import settings
from beatthemarket.rate_limiter import limiter
from beatthemarket.schemas.common import ErrorDetail, ErrorResponse
from beatthemarket.services.brokers.ibkr.flex_client import FlexClientError
from beatthemarket.services.brokers.ibkr.parser import ReportParseError
from beatthemarket.services.portfolio_analysis_service import NoPortfolioDataError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="BeatTheMarket API",
    description="Brokerage report reconciliation and benchmark performance analysis",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add rate limiter to app state and exception handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: list[ErrorDetail] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, details=details, path=request.url.path)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(ReportParseError)
async def report_parse_error_handler(request: Request, exc: ReportParseError) -> JSONResponse:
    details = None
    if exc.broker_error_code:
        details = [ErrorDetail(field="broker_error_code", message=exc.broker_error_code)]
    logger.warning(f"Rejected report ({exc.code.value}): {exc.message}")
    return _error_response(
        request, status.HTTP_422_UNPROCESSABLE_ENTITY, exc.code.value, exc.message, details
    )


@app.exception_handler(FlexClientError)
async def flex_client_error_handler(request: Request, exc: FlexClientError) -> JSONResponse:
    details = None
    if exc.error_code:
        details = [ErrorDetail(field="broker_error_code", message=exc.error_code)]
    return _error_response(
        request, status.HTTP_400_BAD_REQUEST, "FlexClientError", exc.message, details
    )


@app.exception_handler(NoPortfolioDataError)
async def no_data_error_handler(request: Request, exc: NoPortfolioDataError) -> JSONResponse:
    return _error_response(request, status.HTTP_400_BAD_REQUEST, "NoPortfolioData", str(exc))


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "BeatTheMarket API", "version": __version__, "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers
from beatthemarket.routers import portfolio, reports  # noqa: E402

app.include_router(portfolio.router)
app.include_router(reports.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
