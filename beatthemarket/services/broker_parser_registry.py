"""Parser registry for broker report parsers.

Maps broker types to their parser implementations and provides
factory methods for getting parser instances.
"""

import logging
from dataclasses import dataclass

from beatthemarket.services.brokers.base_broker_parser import BaseBrokerParser

logger = logging.getLogger(__name__)


@dataclass
class BrokerInfo:
    """Information about a supported broker."""

    type: str
    name: str
    supported_formats: list[str]
    has_api: bool


class BrokerParserRegistry:
    """Registry for broker report parsers.

    Example usage:
        parser = BrokerParserRegistry.get_parser('ibkr')
        report = parser.parse(xml_bytes)
    """

    _parsers: dict[str, type[BaseBrokerParser]] = {}
    _initialized: bool = False

    @classmethod
    def _ensure_initialized(cls) -> None:
        """Lazily initialize the parser registry."""
        if cls._initialized:
            return

        # Import parsers here to avoid circular imports
        from beatthemarket.services.brokers.ibkr.parser import IBKRParser

        cls._parsers = {"ibkr": IBKRParser, **cls._parsers}
        cls._initialized = True
        logger.info("Parser registry initialized with %d parsers", len(cls._parsers))

    @classmethod
    def get_parser(cls, broker_type: str) -> BaseBrokerParser:
        """Get a parser instance for the specified broker type.

        Args:
            broker_type: Broker type identifier (e.g., 'ibkr'), case-insensitive

        Returns:
            Parser instance for the broker

        Raises:
            ValueError: If broker type is not supported
        """
        cls._ensure_initialized()

        key = broker_type.lower()
        if key not in cls._parsers:
            supported = list(cls._parsers.keys())
            raise ValueError(f"Unsupported broker type '{broker_type}'. Supported: {supported}")

        return cls._parsers[key]()

    @classmethod
    def is_supported(cls, broker_type: str) -> bool:
        cls._ensure_initialized()
        return broker_type.lower() in cls._parsers

    @classmethod
    def get_supported_brokers(cls) -> list[BrokerInfo]:
        """List every registered broker with its capabilities."""
        cls._ensure_initialized()
        return [
            BrokerInfo(
                type=broker_type,
                name=parser_class.broker_name(),
                supported_formats=parser_class.supported_extensions(),
                has_api=parser_class.has_api(),
            )
            for broker_type, parser_class in cls._parsers.items()
        ]

    @classmethod
    def register_parser(cls, broker_type: str, parser_class: type[BaseBrokerParser]) -> None:
        """Register a parser at runtime (e.g., for tests or plugins)."""
        cls._ensure_initialized()
        cls._parsers[broker_type.lower()] = parser_class
        logger.info("Registered parser for broker type '%s'", broker_type)
