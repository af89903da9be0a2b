"""Portfolio analysis API router."""

import logging
from collections.abc import Iterator

from fastapi import APIRouter, Depends, Request

from beatthemarket.config import settings
from beatthemarket.rate_limiter import limiter
from beatthemarket.schemas.portfolio import PortfolioAnalysisRequest, PortfolioAnalysisResponse
from beatthemarket.services.portfolio_analysis_service import PortfolioAnalysisService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/portfolio", tags=["portfolio"])


def get_analysis_service() -> Iterator[PortfolioAnalysisService]:
    """
    A fresh service per request so caches never outlive the request.

    Its market data worker pool is shut down once the response is sent.
    """
    service = PortfolioAnalysisService()
    try:
        yield service
    finally:
        service.close()


@router.post("", response_model=PortfolioAnalysisResponse)
@limiter.limit(settings.portfolio_rate_limit)
def analyze_portfolio(
    request: Request,
    data: PortfolioAnalysisRequest,
    service: PortfolioAnalysisService = Depends(get_analysis_service),
) -> PortfolioAnalysisResponse:
    """Reconcile the given reports and compare them against the benchmark.

    Manual documents and reports are used first; live Flex queries are fetched
    when a token and query id are present. Failing sources become warnings as
    long as some usable data remains.
    """
    logger.info(
        f"Analyzing portfolio: {len(data.manual_documents)} documents, "
        f"{len(data.manual_reports)} reports, live={bool(data.token and data.query_id)}"
    )
    analysis = service.analyze(
        token=data.token,
        query_id=data.query_id,
        manual_documents=data.manual_documents,
        manual_reports=data.manual_reports,
        display_currency=data.display_currency,
    )
    return PortfolioAnalysisResponse.from_analysis(analysis)
