"""Interactive Brokers Flex reports: parsing, mapping and live retrieval."""

from .flex_client import FlexClientError, IBKRFlexClient
from .parser import IBKRParser, ParseErrorCode, ReportParseError
from .provider import IbkrProvider

__all__ = [
    "FlexClientError",
    "IBKRFlexClient",
    "IBKRParser",
    "IbkrProvider",
    "ParseErrorCode",
    "ReportParseError",
]
