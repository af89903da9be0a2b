"""Pydantic schemas for API validation."""

from beatthemarket.schemas.common import ErrorDetail, ErrorResponse
from beatthemarket.schemas.portfolio import PortfolioAnalysisRequest, PortfolioAnalysisResponse
from beatthemarket.schemas.report import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    ParsedReportResponse,
)

__all__ = [
    "ConnectionTestRequest",
    "ConnectionTestResponse",
    "ErrorDetail",
    "ErrorResponse",
    "ParsedReportResponse",
    "PortfolioAnalysisRequest",
    "PortfolioAnalysisResponse",
]
