"""BeatTheMarket - brokerage report reconciliation and benchmark comparison."""

__version__ = "0.1.0"
