"""Business logic: parsing, reconciliation, market data and analysis."""
