"""Portfolio reconciliation, merging, benchmark and allocation."""
