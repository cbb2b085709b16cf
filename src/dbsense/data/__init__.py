"""Table-level data profiling for relational connections."""
