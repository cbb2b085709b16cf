"""Plan normalization and query analysis."""
