"""Report parsing and broker connectivity API router."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from beatthemarket.schemas.report import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    ParsedReportResponse,
)
from beatthemarket.services.broker_parser_registry import BrokerParserRegistry
from beatthemarket.services.brokers.ibkr.flex_client import IBKRFlexClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])


def get_flex_client() -> IBKRFlexClient:
    return IBKRFlexClient()


@router.post("/parse", response_model=ParsedReportResponse)
async def parse_report(
    request: Request,
    broker: str = Query("ibkr", description="Broker type of the uploaded document"),
) -> ParsedReportResponse:
    """Parse a raw broker document sent as the request body.

    Unusable documents are rejected with 422 and the parse error code.
    """
    if not BrokerParserRegistry.is_supported(broker):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported broker type: {broker}",
        )

    parser = BrokerParserRegistry.get_parser(broker)
    report = parser.parse(await request.body())

    logger.info(
        f"Parsed {broker} report {report.account_id}: {len(report.cash_transactions)} "
        f"transactions, {len(report.equity_summary)} NAV rows"
    )
    return ParsedReportResponse(broker_type=parser.broker_type(), report=report)


@router.post("/test-connection", response_model=ConnectionTestResponse)
def check_connection(
    data: ConnectionTestRequest,
    client: IBKRFlexClient = Depends(get_flex_client),
) -> ConnectionTestResponse:
    """Fetch one statement to check a token and query id."""
    client.test_connection(data.token, data.query_id)
    return ConnectionTestResponse(success=True, message="Connection successful! Report retrieved.")
