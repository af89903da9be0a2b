"""Market data lookups (Yahoo Finance) behind a bounded request pool."""
