"""Command-line interface for cqlrepro."""
