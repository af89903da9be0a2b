"""Pydantic schemas for report parsing and broker connectivity."""

from pydantic import BaseModel, Field

from beatthemarket.services.brokers.base_broker_parser import ParsedReport


class ParsedReportResponse(BaseModel):
    """A parsed report, ready to be sent back later as manual history.

    Decimal amounts serialize as strings so they survive the round trip exactly.
    """

    broker_type: str
    report: ParsedReport


class ConnectionTestRequest(BaseModel):
    """Flex Web Service credentials to check."""

    token: str = Field(..., min_length=1, description="IBKR Flex Web Service token")
    query_id: str = Field(..., min_length=1, description="Flex Query ID")


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
